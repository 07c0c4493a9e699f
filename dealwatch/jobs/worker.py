"""
Background worker entrypoint (``dealwatch-worker``).

    dealwatch-worker                       # long-running sweep scheduler
    dealwatch-worker deal_expiration_once  # one sweep, then exit (cron)

WORKER_JOB is consulted when no job is given on the command line.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from dealwatch.config import settings
from dealwatch.features.deal_expiration.jobs.expiration_job import (
    run_deal_expiration_once,
    start_deal_expiration_scheduler,
)
from dealwatch.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)

DEFAULT_JOB = "deal_expiration"

JOB_REGISTRY: dict[str, Callable[[], Awaitable[None]]] = {
    DEFAULT_JOB: start_deal_expiration_scheduler,
    "deal_expiration_once": run_deal_expiration_once,
}


def _normalize(name: str) -> str:
    return name.strip().lower()


def _resolve_job_name() -> str:
    args = sys.argv[1:]
    return _normalize(args[0] if args else os.getenv("WORKER_JOB", DEFAULT_JOB))


async def run_worker(job_name: str | None = None) -> None:
    name = _normalize(job_name or _resolve_job_name())
    job = JOB_REGISTRY.get(name)
    if job is None:
        raise ValueError(f"Unknown worker job '{name}'. Available jobs: {', '.join(sorted(JOB_REGISTRY))}")

    logger.info("Starting background worker", job=name, environment=settings.environment)
    await job()


def main() -> None:
    setup_logging(log_level=settings.LOG_LEVEL)
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Background worker interrupted")


if __name__ == "__main__":
    main()
