"""FastAPI dependencies providing the shared price engine."""

import threading

from src.database.db import SessionLocal
from src.services.price_engine import PriceEngine, build_price_engine
from src.utils.config import config
from src.utils.event_store import EventStore
from src.utils.time_utils import utc_now

# Process-wide event store shared by the engine and the debug endpoints
event_store = EventStore()
started_at = utc_now()

_engine: PriceEngine | None = None
_engine_lock = threading.Lock()


def get_price_engine() -> PriceEngine:
    """
    FastAPI dependency returning the process-wide price engine.

    The engine holds the live cache and subscriptions, so it is created once
    and shared by every request. Tests replace it via ``dependency_overrides``.
    """
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = build_price_engine(config, SessionLocal, event_store=event_store)
        return _engine

