"""
Structured Logging
==================

JSON logs for the SLA engine.

Provides:
- One JSON object per line on stdout
- Correlation IDs, so the log lines of one scanner run can be grouped
- Latency logging for scans, relays and bulk operations

Usage:
    from helpdesk.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Ticket updated", extra={"ticket_id": "..."})
"""

import logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "helpdesk-sla-engine"

# Loggers that drown the engine's own output at INFO
QUIET_LOGGERS = ("apscheduler", "sqlalchemy.engine", "watchdog", "aiosqlite", "asyncio")


class EngineJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter stamping every record with service metadata.

    Adds `timestamp` (UTC, ISO 8601), `service`, `environment` and, when the
    record carries one, `correlation_id`.
    """

    def __init__(self, *args: Any, environment: str = "unknown", **kwargs: Any):
        self.environment = environment
        super().__init__(*args, **kwargs)

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.setdefault(
            "timestamp",
            datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        )
        log_record["service"] = SERVICE_NAME
        log_record["environment"] = self.environment

        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            log_record["correlation_id"] = correlation_id


def setup_logging(level: str = "INFO", environment: str = "development") -> None:
    """
    Route all logging through a single JSON handler on stdout.

    Unknown level names fall back to INFO.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(EngineJsonFormatter(
        fmt="%(name)s %(levelname)s %(message)s",
        environment=environment,
    ))
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Module logger; use `__name__`."""
    return logging.getLogger(name)


class ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges its context into each call's `extra`."""

    def process(self, msg: Any, kwargs: Any):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_context_logger(name: str, correlation_id: Optional[str] = None) -> logging.Logger:
    """
    Logger whose records all carry `correlation_id`.

    Args:
        name: Logger name
        correlation_id: Identifier shared by every line of one unit of work
    """
    logger = get_logger(name)
    if correlation_id:
        logger = ContextAdapter(logger, {"correlation_id": correlation_id})
    return logger


@contextmanager
def log_latency(
    logger: logging.Logger,
    operation: str,
    slow_ms: Optional[float] = None,
    **extra_context: Any
):
    """
    Log how long the enclosed block took.

    Logged at INFO, or at WARNING when `slow_ms` is given and exceeded.
    The line is written even if the block raises.

    Usage:
        with log_latency(logger, "breach_scan", slow_ms=30_000):
            ...
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        level = logging.WARNING if slow_ms is not None and latency_ms > slow_ms else logging.INFO
        logger.log(
            level,
            f"{operation} completed",
            extra={"operation": operation, "latency_ms": latency_ms, **extra_context},
        )
