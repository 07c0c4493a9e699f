"""
Deal expiration job.

Wraps the notification engine for periodic execution: guards against
overlapping runs inside one process, honours the feature toggle, bounds
the total run time and keeps the last result around for the health
endpoint.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any

from dealwatch.config import settings
from dealwatch.db.pool import db_is_ready, db_pool
from dealwatch.features.deal_expiration.repository import deal_repository, member_repository
from dealwatch.features.deal_expiration.services.engine import ExpirationNotificationEngine
from dealwatch.features.deal_expiration.services.notifier import DealNotifier
from dealwatch.infrastructure.audit import audit_logger
from dealwatch.infrastructure.observability.logging import get_logger
from dealwatch.services.brevo_email_service import BrevoEmailService
from dealwatch.services.twilio_sms_service import TwilioSmsService

logger = get_logger(__name__)

ERROR_BACKOFF_SECONDS = 60


def build_notifier() -> DealNotifier:
    return DealNotifier(BrevoEmailService(), TwilioSmsService())


def build_engine(notifier: DealNotifier) -> ExpirationNotificationEngine:
    """Engine wired to the Postgres stores, the audit log and the pool health check."""
    return ExpirationNotificationEngine(
        deal_store=deal_repository,
        member_store=member_repository,
        notifier=notifier,
        audit=audit_logger,
        health_check=db_is_ready,
    )


class DealExpirationJob:
    """
    Background job running one expiration sweep per call.

    A fresh notifier (and its HTTP clients) is created per run and closed
    afterwards.
    """

    def __init__(self):
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.last_result: dict[str, Any] | None = None

    async def run_once(self, now: datetime | None = None) -> dict[str, Any]:
        """
        Run a single sweep.

        Returns:
            Dict: the sweep summary, or {"skipped": True, "reason": ...}
        """
        if self.is_running:
            logger.warning("Deal expiration job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        if not settings.DEAL_EXPIRATION_ENABLED:
            logger.info("Deal expiration feature disabled, skipping sweep")
            return {"skipped": True, "reason": "disabled"}

        max_run_seconds = settings.DEAL_EXPIRATION_MAX_RUN_MINUTES * 60
        notifier = build_notifier()
        self.is_running = True
        try:
            engine = build_engine(notifier)
            result = await asyncio.wait_for(engine.run_sweep(now), timeout=max_run_seconds)
            metrics = result.to_dict()
        except TimeoutError:
            logger.error("Deal expiration sweep exceeded maximum run time", max_run_seconds=max_run_seconds)
            metrics = {
                "job_run": "deal_expiration",
                "skipped": False,
                "aborted": True,
                "reason": "run_timeout",
            }
        finally:
            self.is_running = False
            await notifier.close()

        self.last_run_time = datetime.now(UTC)
        self.last_result = metrics
        return metrics

    def get_job_status(self) -> dict[str, Any]:
        return {
            "job_name": "deal_expiration",
            "enabled": settings.DEAL_EXPIRATION_ENABLED,
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "interval_minutes": settings.DEAL_EXPIRATION_INTERVAL_MINUTES,
            "max_run_minutes": settings.DEAL_EXPIRATION_MAX_RUN_MINUTES,
            "last_result": self.last_result,
        }


# Singleton instance for application use
deal_expiration_job = DealExpirationJob()


async def run_deal_expiration_job() -> dict[str, Any]:
    """Run a single iteration of the deal expiration job."""
    return await deal_expiration_job.run_once()


def get_deal_expiration_job_status() -> dict[str, Any]:
    return deal_expiration_job.get_job_status()


async def run_deal_expiration_once() -> None:
    """One sweep with its own pool lifecycle; used by the worker CLI."""
    owns_pool = not db_pool.initialized
    if owns_pool:
        await db_pool.initialize()
    try:
        metrics = await run_deal_expiration_job()
        logger.info("Deal expiration one-off run finished", **metrics)
    finally:
        if owns_pool:
            await db_pool.close()


async def start_deal_expiration_scheduler() -> None:
    """
    Run the sweep every DEAL_EXPIRATION_INTERVAL_MINUTES until cancelled.

    Initializes the database pool when nothing else has, and closes it on
    the way out in that case.
    """
    interval_minutes = settings.DEAL_EXPIRATION_INTERVAL_MINUTES
    logger.info("Starting deal expiration scheduler", interval_minutes=interval_minutes)

    owns_pool = not db_pool.initialized
    if owns_pool:
        await db_pool.initialize()

    try:
        while True:
            try:
                metrics = await run_deal_expiration_job()

                if not metrics.get("skipped", False):
                    logger.info("Deal expiration job cycle completed", **metrics)

                await asyncio.sleep(interval_minutes * 60)

            except Exception as e:
                logger.error(
                    "Error in deal expiration scheduler", error=str(e), error_type=type(e).__name__
                )
                # Avoid a tight error loop
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
    finally:
        logger.info("Deal expiration scheduler stopped")
        if owns_pool:
            await db_pool.close()
