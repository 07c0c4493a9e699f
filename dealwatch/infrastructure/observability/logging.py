"""
Structured logging for the API process and the worker.

JSON lines on stdout. Values bound with ``bind_sweep_context`` (the sweep
timestamp, the bucket being processed) are merged into every event logged
while they are bound, so one sweep can be followed end to end.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory

SERVICE_NAME = "dealwatch"

_NOISY_LOGGERS = ("httpx", "httpcore", "psycopg.pool", "uvicorn.access")


def _add_service_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level name; unknown names fall back to INFO
        json_logs: Render JSON (default) or human readable console output
    """
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service_context,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def bind_sweep_context(**values: Any) -> Iterator[None]:
    """Attach ``values`` to every log event emitted inside the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield


def log_health_check(service: str, healthy: bool, latency_ms: float, error: str | None = None) -> None:
    """One event per dependency probed by a health endpoint."""
    logger = get_logger("health")
    fields = {"checked_service": service, "healthy": healthy, "latency_ms": latency_ms, "event_type": "health_check"}
    if error:
        fields["error"] = error

    if healthy:
        logger.info("Health check passed", **fields)
    else:
        logger.error("Health check failed", **fields)
