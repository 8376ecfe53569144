"""Property-based tests for structured logging."""

import json
import sys
from contextlib import contextmanager
from io import StringIO

from hypothesis import given
from hypothesis import strategies as st

from src.utils.logger import StructuredLogger
from src.utils.trace_context import clear_trace, trace_scope

context_strategy = st.dictionaries(
    st.text(min_size=1, max_size=20).filter(lambda x: x[0].isalpha() and x != "trace_id"),
    st.one_of(st.text(), st.integers(), st.booleans()),
    max_size=5,
)


@contextmanager
def captured_stdout():
    """Swap sys.stdout for a buffer for the duration of the block."""
    buffer = StringIO()
    original_stdout = sys.stdout
    sys.stdout = buffer
    try:
        yield buffer
    finally:
        sys.stdout = original_stdout


def _entries(buffer):
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line.strip()]


class TestLoggerJSONFormat:
    """Tests for JSON log format compliance."""

    @given(
        level=st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
        message=st.text(min_size=1),
        context=context_strategy,
    )
    def test_log_entries_have_required_fields(self, level, message, context):
        """
        **Property: log entries have required fields**

        For any log entry written, the output SHALL be valid JSON containing
        timestamp, level, component and message fields.
        """
        clear_trace()
        with captured_stdout() as buffer:
            StructuredLogger("aggregation_service").log(level, message, context or None)

        (entry,) = _entries(buffer)
        assert entry["level"] == level
        assert entry["component"] == "aggregation_service"
        assert entry["message"] == message
        assert entry["timestamp"].endswith("Z")
        assert "T" in entry["timestamp"]
        if context:
            assert entry["context"] == context
        else:
            assert "context" not in entry

    def test_unknown_level_is_written_as_info(self):
        clear_trace()
        with captured_stdout() as buffer:
            StructuredLogger("test").log("verbose", "hello")

        assert _entries(buffer)[0]["level"] == "INFO"

    @given(
        message=st.text(min_size=1),
        exception_type=st.sampled_from(
            [ValueError, TypeError, RuntimeError, KeyError, AttributeError]
        ),
    )
    def test_error_log_entries_include_exception_details(self, message, exception_type):
        """
        **Property: error log entries include exception details**

        For any logged exception, the output SHALL include the exception type,
        message and stack trace.
        """
        with captured_stdout() as buffer:
            logger = StructuredLogger("test_component")
            try:
                raise exception_type("Test error message")
            except exception_type as e:
                logger.error(message, exception=e)

        exception = _entries(buffer)[0]["exception"]
        assert exception["type"] == exception_type.__name__
        assert "Test error message" in exception["message"]
        assert "raise exception_type" in exception["stack_trace"]


class TestLoggerContext:
    @given(message=st.text(min_size=1), context=context_strategy)
    def test_entries_carry_current_trace_id(self, message, context):
        """
        **Property: log entries written inside a run carry its trace id**
        """
        with captured_stdout() as buffer:
            with trace_scope("run-123"):
                StructuredLogger("test").info(message, context or None)

        entry = _entries(buffer)[0]
        assert entry["context"]["trace_id"] == "run-123"
        for key, value in context.items():
            assert entry["context"][key] == value

    def test_bind_adds_default_context(self):
        clear_trace()
        logger = StructuredLogger("live_price_cache").bind(item_id="item-1")

        with captured_stdout() as buffer:
            logger.info("price changed", {"source": "poll"})
            logger.info("price changed", {"item_id": "item-2"})

        first, second = _entries(buffer)
        assert first["context"] == {"item_id": "item-1", "source": "poll"}
        assert second["context"] == {"item_id": "item-2"}

    def test_bind_does_not_mutate_parent(self):
        parent = StructuredLogger("test")

        parent.bind(item_id="item-1")

        assert parent.default_context == {}

    def test_file_output(self, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"
        logger = StructuredLogger("test", file_path=str(log_file))

        with captured_stdout():
            logger.warning("disk check")

        assert json.loads(log_file.read_text().strip())["message"] == "disk check"
