"""JSON logging for the manager.

Every record is one JSON object on stdout. Two context variables are
stamped onto records automatically:

- trace_id: set per HTTP request by LoggingMiddleware
- instance_id / operation: set while a lifecycle operation runs, so driver
  and store logs emitted underneath it can be grouped by instance
"""

import logging
import sys
import time
from collections import defaultdict, deque
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pythonjsonlogger import jsonlogger

from giftmgr.app.config import get_settings

trace_id_ctx: ContextVar[str | None] = ContextVar("trace_id", default=None)
operation_ctx: ContextVar[tuple[str, str | None] | None] = ContextVar(
    "operation", default=None
)


def get_trace_id() -> str | None:
    return trace_id_ctx.get()


def set_trace_id(trace_id: str | None = None) -> str:
    """Set the request trace id, generating a UUID when none was sent."""
    tid = trace_id or str(uuid4())
    trace_id_ctx.set(tid)
    return tid


def clear_trace_context() -> None:
    trace_id_ctx.set(None)


@contextmanager
def operation_context(operation: str, instance_id: str | None) -> Iterator[None]:
    """Tag records logged inside the block with the operation and instance."""
    token = operation_ctx.set((operation, instance_id))
    try:
        yield
    finally:
        operation_ctx.reset(token)


class RateLimitFilter(logging.Filter):
    """Caps identical records (same logger, same message template) per minute.

    ERROR and above always pass. The first record over the cap is let
    through once with a marker; the rest of the burst is dropped until the
    window drains.
    """

    WINDOW_SECONDS = 60.0

    def __init__(self, rate_per_minute: int = 100) -> None:
        super().__init__()
        self.rate_per_minute = rate_per_minute
        self._seen: dict[tuple[str, str], deque[float]] = defaultdict(deque)
        self._suppressing: set[tuple[str, str]] = set()

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True

        key = (record.name, str(record.msg))
        now = time.monotonic()
        seen = self._seen[key]
        while seen and now - seen[0] >= self.WINDOW_SECONDS:
            seen.popleft()

        if len(seen) < self.rate_per_minute:
            self._suppressing.discard(key)
            seen.append(now)
            return True

        if key in self._suppressing:
            return False
        self._suppressing.add(key)
        record.msg = f"[RATE LIMITED] {record.msg} (max {self.rate_per_minute}/min)"
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Adds timestamp, level, logger, pid, schema_version, service and the
    trace/operation context to every record."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        settings = get_settings()
        self._schema_version = settings.logging.schema_version
        self._service = settings.logging.service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=UTC).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["pid"] = record.process
        log_record["schema_version"] = self._schema_version
        log_record["service"] = self._service

        if "trace_id" not in log_record and (trace_id := get_trace_id()):
            log_record["trace_id"] = trace_id

        if current := operation_ctx.get():
            operation, instance_id = current
            log_record.setdefault("operation", operation)
            if instance_id is not None:
                log_record.setdefault("instance_id", instance_id)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        log_record.pop("color_message", None)


def setup_logging(level: int | None = None) -> None:
    """Install the JSON handler on the root logger.

    Args:
        level: Log level. If None, uses LOGGING_LEVEL.
    """
    settings = get_settings()
    if level is None:
        level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter())
    handler.addFilter(RateLimitFilter(settings.logging.rate_limit_per_minute))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Request lines come from LoggingMiddleware
    for name in ("uvicorn", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = False
        uv_logger.addHandler(handler)
    logging.getLogger("uvicorn.access").disabled = True

    for name in ("httpx", "httpcore", "aiosqlite"):
        logging.getLogger(name).setLevel(logging.WARNING)
