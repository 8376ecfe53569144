"""Structured logging module with JSON output support."""

import json
import sys
import traceback
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from src.utils.trace_context import get_current_trace


class StructuredLogger:
    """Logger that outputs JSON-formatted log entries."""

    LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

    def __init__(
        self,
        component: str,
        file_path: str | None = None,
        default_context: dict[str, Any] | None = None,
    ):
        """
        Initialize the structured logger.

        Args:
            component: Name of the component using this logger
            file_path: Optional path to write logs to file
            default_context: Context fields merged into every entry
        """
        self.component = component
        self.file_path = file_path
        self.default_context = dict(default_context or {})
        if file_path:
            Path(file_path).parent.mkdir(parents=True, exist_ok=True)

    def bind(self, **context: Any) -> "StructuredLogger":
        """Return a logger for the same component with extra default context."""
        merged = {**self.default_context, **context}
        return StructuredLogger(self.component, self.file_path, merged)

    def _merge_context(self, context: dict[str, Any] | None) -> dict[str, Any]:
        merged = dict(self.default_context)
        trace_id = get_current_trace()
        if trace_id and "trace_id" not in merged:
            merged["trace_id"] = trace_id
        if context:
            merged.update(context)
        return merged

    def _format_log_entry(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
        exception: dict[str, Any] | None = None,
    ) -> str:
        """
        Format a log entry as JSON.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            message: Log message
            context: Optional context fields
            exception: Optional exception details

        Returns:
            JSON-formatted log entry
        """
        entry = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": level,
            "component": self.component,
            "message": message,
        }

        merged = self._merge_context(context)
        if merged:
            entry["context"] = merged

        if exception:
            entry["exception"] = exception

        return json.dumps(entry, default=str)

    def _write_log(self, log_entry: str) -> None:
        try:
            print(log_entry, file=sys.stdout)
            if self.file_path:
                with open(self.file_path, "a") as f:
                    f.write(log_entry + "\n")
        except Exception as e:
            print(f"Failed to write log: {e}", file=sys.stderr)

    @staticmethod
    def _exception_details(exception: Exception | None) -> dict[str, Any] | None:
        if exception is None:
            return None
        return {
            "type": type(exception).__name__,
            "message": str(exception),
            "stack_trace": "".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            ),
        }

    def debug(self, message: str, context: dict[str, Any] | None = None) -> None:
        """Log a debug message."""
        self._write_log(self._format_log_entry("DEBUG", message, context))

    def info(self, message: str, context: dict[str, Any] | None = None) -> None:
        """Log an info message."""
        self._write_log(self._format_log_entry("INFO", message, context))

    def warning(self, message: str, context: dict[str, Any] | None = None) -> None:
        """Log a warning message."""
        self._write_log(self._format_log_entry("WARNING", message, context))

    def error(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        exception: Exception | None = None,
    ) -> None:
        """Log an error message with optional exception details."""
        log_entry = self._format_log_entry(
            "ERROR", message, context, self._exception_details(exception)
        )
        self._write_log(log_entry)

    def critical(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        exception: Exception | None = None,
    ) -> None:
        """Log a critical message with optional exception details."""
        log_entry = self._format_log_entry(
            "CRITICAL", message, context, self._exception_details(exception)
        )
        self._write_log(log_entry)

    def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
        exception: Exception | None = None,
    ) -> None:
        """
        Log a message with specified level.

        Unknown levels are written as INFO.
        """
        level = level.upper()
        if level in ("ERROR", "CRITICAL"):
            getattr(self, level.lower())(message, context, exception)
        elif level in self.LEVELS:
            getattr(self, level.lower())(message, context)
        else:
            self.info(message, context)
