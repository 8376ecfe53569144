"""Trace context for correlating log entries and events of one operation.

An aggregation run creates one trace id; worker threads do not inherit
``contextvars`` automatically, so callers wrap each task with
:func:`bind_trace` before handing it to an executor.
"""

import contextvars
import functools
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Optional, TypeVar

T = TypeVar("T")

# Context variable for storing the current trace ID
_trace_id_context: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "trace_id", default=None
)


def create_trace() -> str:
    """
    Generate a new unique trace ID and set it in the current context.

    Returns:
        A unique trace ID string (UUID4 format)
    """
    trace_id = str(uuid.uuid4())
    set_trace(trace_id)
    return trace_id


def get_current_trace() -> Optional[str]:
    """Get the current trace ID from the context, or None."""
    return _trace_id_context.get()


def set_trace(trace_id: str) -> None:
    """Set the trace ID in the current context."""
    _trace_id_context.set(trace_id)


def clear_trace() -> None:
    """Clear the trace ID from the current context."""
    _trace_id_context.set(None)


@contextmanager
def trace_scope(trace_id: str | None = None) -> Iterator[str]:
    """Run a block under a trace id, restoring the previous one afterwards."""
    token = _trace_id_context.set(trace_id or str(uuid.uuid4()))
    try:
        yield _trace_id_context.get()
    finally:
        _trace_id_context.reset(token)


def bind_trace(func: Callable[..., T], trace_id: str | None = None) -> Callable[..., T]:
    """Wrap ``func`` so it runs under ``trace_id`` (default: the current one) in any thread."""
    bound_id = trace_id or get_current_trace()

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> T:
        with trace_scope(bound_id):
            return func(*args, **kwargs)

    return wrapper
