"""API routes for price ingestion, aggregation and price reads."""

import asyncio
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field

from src.api.dependencies import get_price_engine, started_at
from src.api.error_handlers import (
    ErrorResponse,
    PriceApiError,
    create_no_data_error,
    handle_service_error,
)
from src.models.price_data import PriceSource
from src.services.price_engine import PriceEngine
from src.services.snapshot_store import period_change_pct
from src.utils.metrics import MetricsCalculator

router = APIRouter()


class ObservationRequest(BaseModel):
    """Request model for submitting a raw price observation."""
    item_id: str = Field(min_length=1)
    source: PriceSource
    amount: float = Field(gt=0)
    currency: str = Field(pattern=r"^[A-Za-z]{3}$")
    observed_at: datetime
    source_event_id: Optional[str] = None


class AggregationRunRequest(BaseModel):
    """Request model for triggering an aggregation run."""
    item_ids: Optional[list[str]] = None
    window_days: Optional[int] = Field(default=None, gt=0)
    as_of: Optional[date] = None
    force: bool = False


class LivePriceUpdateRequest(BaseModel):
    """Request model for pushing an authoritative live price."""
    item_id: str = Field(min_length=1)
    price: float = Field(gt=0)
    source: Optional[str] = None


@router.post("/observations", status_code=status.HTTP_202_ACCEPTED)
def submit_observation(
    request: ObservationRequest,
    engine: PriceEngine = Depends(get_price_engine),
):
    """
    Submit one raw observation.

    Fire-and-forget: storage trouble is reported as ``accepted: false``
    rather than an error.
    """
    accepted = engine.submit_observation(
        item_id=request.item_id,
        source=request.source,
        amount=request.amount,
        currency=request.currency,
        observed_at=request.observed_at,
        source_event_id=request.source_event_id,
    )
    return {"accepted": accepted}


@router.post("/aggregation/run")
def run_aggregation(
    request: AggregationRunRequest,
    engine: PriceEngine = Depends(get_price_engine),
):
    """Run aggregation for every item, or for ``item_ids`` when given."""
    scope = "all" if request.item_ids is None else request.item_ids
    try:
        result = engine.run_aggregation(
            scope=scope,
            window_days=request.window_days,
            as_of=request.as_of,
            force=request.force,
        )
    except Exception as e:
        raise handle_service_error(e).to_http_exception() from e
    return result.to_dict()


@router.get("/items/{item_id}/snapshots")
def get_snapshot_history(
    item_id: str,
    start: Optional[date] = Query(None, description="First day (inclusive)"),
    end: Optional[date] = Query(None, description="Last day (inclusive)"),
    engine: PriceEngine = Depends(get_price_engine),
):
    """
    Daily snapshots for an item, oldest first.

    An empty ``snapshots`` list means there is no data yet for the range.
    """
    if start and end and start > end:
        raise ErrorResponse(
            error_code=PriceApiError.VALIDATION_ERROR,
            message="start must not be after end",
            details={"start": start.isoformat(), "end": end.isoformat()},
        ).to_http_exception()

    snapshots = engine.get_snapshot_history(item_id, start, end)
    return {
        "item_id": item_id,
        "snapshots": [
            {
                **snapshot.to_dict(),
                "confidence_label": engine.confidence_scorer.label(snapshot.confidence),
            }
            for snapshot in snapshots
        ],
        "period_change_pct": period_change_pct(snapshots),
    }


@router.get("/items/{item_id}/price")
async def get_live_price(
    item_id: str,
    engine: PriceEngine = Depends(get_price_engine),
):
    """Current live price for an item."""
    state = engine.get_live_price(item_id)
    if state is None:
        raise create_no_data_error(item_id).to_http_exception()
    return state.to_dict()


@router.get("/prices")
async def get_live_prices(
    item_ids: list[str] = Query(...),
    engine: PriceEngine = Depends(get_price_engine),
):
    """
    Pull read for several items.

    Consumers without a push subscription poll this on a fixed interval;
    items with no known price are omitted.
    """
    states = engine.get_live_prices(item_ids)
    return {"prices": [state.to_dict() for state in states.values()]}


@router.post("/live-prices")
async def push_live_price(
    request: LivePriceUpdateRequest,
    engine: PriceEngine = Depends(get_price_engine),
):
    """Accept an authoritative price from a trusted feed or completed transaction."""
    try:
        state = engine.apply_live_price(request.item_id, request.price, request.source)
    except ValueError as e:
        raise handle_service_error(e).to_http_exception() from e
    return state.to_dict()


@router.websocket("/ws/prices")
async def stream_price_changes(
    websocket: WebSocket,
    item_ids: list[str] = Query(...),
    engine: PriceEngine = Depends(get_price_engine),
):
    """
    Push stream of change events for ``item_ids``.

    The current state of each known item is sent first. Delivery afterwards
    is best effort; clients that fall behind re-read via ``/prices``.
    """
    await websocket.accept()
    subscription = engine.subscribe_price_changes(item_ids)

    async def pump() -> None:
        while not subscription.closed:
            event = await asyncio.to_thread(subscription.get, 0.5)
            if event is not None:
                await websocket.send_json({"type": "change", **event.to_dict()})

    pump_task = None
    try:
        for state in engine.get_live_prices(item_ids).values():
            await websocket.send_json({"type": "state", **state.to_dict()})

        pump_task = asyncio.create_task(pump())
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        subscription.close()
        if pump_task is not None:
            pump_task.cancel()
            try:
                await pump_task
            except (asyncio.CancelledError, WebSocketDisconnect):
                pass


@router.get("/metrics")
async def get_metrics(engine: PriceEngine = Depends(get_price_engine)):
    """Aggregation and live cache metrics from the in-memory event store."""
    return MetricsCalculator(engine.event_store, start_time=started_at).calculate().to_dict()


@router.get("/debug/events")
async def get_recent_events(
    limit: int = Query(100, ge=1, le=1000),
    event_type: Optional[str] = Query(None),
    trace_id: Optional[str] = Query(None),
    engine: PriceEngine = Depends(get_price_engine),
):
    """Recent events, optionally narrowed to one type or one trace."""
    store = engine.event_store
    if trace_id:
        events = store.get_events_by_trace(trace_id)
    elif event_type:
        events = store.get_events_by_type(event_type, limit=limit)
    else:
        events = store.get_recent_events(limit=limit)
    return {
        "events": [event.to_dict() for event in events],
        "total": store.size(),
        "counts_by_type": store.count_by_type(),
    }
