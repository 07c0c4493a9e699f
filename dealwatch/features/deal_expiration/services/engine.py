"""
Deal expiration notification engine.

One call to ``run_sweep`` is one pass over the timeline:

1. bail out if the database is not ready;
2. load every non-blocked member (bounded by a timeout);
3. per bucket, find active deals ending inside the bucket's window, batch
   them per member who has no receipt for that deal+bucket yet, send one
   email per member and record a receipt for every deal in the batch;
4. deactivate active deals whose end time has passed.

Receipts live on the deal, keyed by bucket, and are the only thing that
stops a member from being told twice about the same deal in the same
window. A failed email leaves no receipts behind, so the next sweep
retries it. Nothing escapes ``run_sweep``; the outcome is reported through
the returned ``SweepResult`` and the activity log.
"""

import asyncio
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from dealwatch.config import settings
from dealwatch.features.deal_expiration.domain import (
    DEFAULT_BUCKETS,
    MEMBER_ROLE,
    AuditSink,
    BucketWindow,
    Deal,
    DealStatus,
    DealStore,
    DeliveryResult,
    HealthCheck,
    IntervalBucket,
    Member,
    MemberStore,
    Notifier,
    SweepResult,
    resolve_windows,
)
from dealwatch.infrastructure.observability.logging import bind_sweep_context, get_logger

from .notifier import SMS_KIND_DEAL_EXPIRATION, SMS_KIND_GENERIC
from .templates import batch_expiration_email, email_subject, overflow_summary_sms

logger = get_logger(__name__)


@dataclass(slots=True)
class MemberBatch:
    """Deals pending for one member within one bucket."""

    member: Member
    deals: list[Deal] = field(default_factory=list)


class ExpirationNotificationEngine:
    """Runs deal expiration sweeps against injected collaborators."""

    def __init__(
        self,
        deal_store: DealStore,
        member_store: MemberStore,
        notifier: Notifier,
        audit: AuditSink,
        health_check: HealthCheck,
        *,
        buckets: Sequence[IntervalBucket] = DEFAULT_BUCKETS,
        frontend_url: str | None = None,
        member_load_timeout: float | None = None,
        send_timeout: float | None = None,
        max_deals_per_email: int | None = None,
        max_sms_per_member: int | None = None,
    ):
        self.deal_store = deal_store
        self.member_store = member_store
        self.notifier = notifier
        self.audit = audit
        self.health_check = health_check
        self.buckets = tuple(buckets)
        self.bucket_keys = frozenset(bucket.key for bucket in self.buckets)
        self.frontend_url = (frontend_url or settings.frontend_base_url()).rstrip("/")
        self.member_load_timeout = (
            member_load_timeout if member_load_timeout is not None else settings.MEMBER_LOAD_TIMEOUT_SECONDS
        )
        self.send_timeout = send_timeout if send_timeout is not None else settings.NOTIFICATION_SEND_TIMEOUT_SECONDS
        self.max_deals_per_email = (
            max_deals_per_email if max_deals_per_email is not None else settings.MAX_DEALS_PER_EMAIL
        )
        self.max_sms_per_member = (
            max_sms_per_member if max_sms_per_member is not None else settings.MAX_SMS_PER_MEMBER
        )

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def run_sweep(self, now: datetime | None = None) -> SweepResult:
        """
        Run one full sweep.

        Args:
            now: Sweep time; every window and receipt uses this single value.

        Returns:
            SweepResult describing what happened. Never raises.
        """
        now = now or datetime.now(UTC)
        result = SweepResult(started_at=now)

        with bind_sweep_context(sweep_at=now.isoformat()):
            await self._sweep(now, result)
            if not result.skipped:
                logger.info("Deal expiration sweep finished", **result.to_dict())
        return result

    async def _sweep(self, now: datetime, result: SweepResult) -> None:
        try:
            if not await self._is_ready():
                logger.warning("Database not connected, skipping deal expiration sweep")
                result.skipped = True
                result.reason = "database_not_ready"
                return

            logger.info("Running deal expiration sweep")

            members = await self._load_members(result)
            if members is None:
                return

            for window in resolve_windows(now, self.buckets):
                with bind_sweep_context(bucket=window.bucket.label):
                    await self._process_bucket(window, members, now, result)

            await self._deactivate_expired(now, result)

        except Exception as e:
            logger.exception("Error in deal expiration sweep", error=str(e), error_type=type(e).__name__)
            result.aborted = True
            result.reason = "unexpected_error"
            result.record_error("sweep", str(e), error_type=type(e).__name__)
            if await self._is_ready():
                await self.audit.record(f"Error in deal expiration check: {e}", "error")

    async def _is_ready(self) -> bool:
        try:
            return bool(await self.health_check())
        except Exception as e:
            logger.warning("Health check raised, treating database as not ready", error=str(e))
            return False

    async def _load_members(self, result: SweepResult) -> list[Member] | None:
        """Eligible members, or None when the sweep has to stop."""
        try:
            members = await asyncio.wait_for(
                self.member_store.find_by_role_and_not_blocked(MEMBER_ROLE),
                timeout=self.member_load_timeout,
            )
        except TimeoutError:
            reason, error = "member_load_timeout", f"Member query timed out after {self.member_load_timeout}s"
        except Exception as e:
            reason, error = "member_load_failed", f"{type(e).__name__}: {e}"
        else:
            eligible = [member for member in members or [] if not member.is_blocked]
            result.members_loaded = len(eligible)
            return eligible

        logger.error("Failed to load members, aborting deal expiration sweep", reason=reason, error=error)
        result.aborted = True
        result.reason = reason
        result.record_error("load_members", error)
        await self.audit.record(f"Deal expiration check aborted: {error}", "error")
        return None

    # ------------------------------------------------------------------
    # Buckets
    # ------------------------------------------------------------------

    async def _process_bucket(
        self, window: BucketWindow, members: list[Member], now: datetime, result: SweepResult
    ) -> None:
        bucket = window.bucket
        found = await self.deal_store.find_by_status_and_ends_at_range(DealStatus.ACTIVE, window.start, window.end)
        deals = [deal for deal in found if window.contains(deal.ends_at)]
        result.deals_matched[bucket.label] = len(deals)
        if not deals:
            return

        batches = self.build_batches(deals, members, bucket.key)
        logger.info(
            "Deals entering expiration window",
            bucket=bucket.label,
            deal_count=len(deals),
            member_count=len(batches),
        )

        for batch in batches.values():
            await self._notify_member(batch, bucket, now, result)

    @staticmethod
    def build_batches(deals: Sequence[Deal], members: Sequence[Member], bucket_key: str) -> dict[str, MemberBatch]:
        """
        Group deals per member for one bucket.

        A member gets a deal when they have no receipt for it under
        ``bucket_key``. Members with nothing pending are left out.
        """
        batches: dict[str, MemberBatch] = {}
        for deal in deals:
            notified = deal.notification_history.notified_member_ids(bucket_key)
            for member in members:
                if member.is_blocked or member.id in notified:
                    continue
                batches.setdefault(member.id, MemberBatch(member=member)).deals.append(deal)
        return batches

    async def _notify_member(
        self, batch: MemberBatch, bucket: IntervalBucket, now: datetime, result: SweepResult
    ) -> None:
        member = batch.member
        deals = batch.deals
        shown = deals[: self.max_deals_per_email]
        additional = len(deals) - len(shown)

        async def render_and_send():
            html = batch_expiration_email(
                member.name, shown, bucket.label, self.frontend_url, additional_count=additional
            )
            return await self.notifier.send_email(
                member.recipients(), email_subject(bucket.label, len(deals)), html
            )

        delivery = await self._deliver("email", member.email, render_and_send())

        if not delivery.ok:
            # No receipts: the same deals come back on the next sweep
            result.emails_failed += 1
            result.record_error("send_email", delivery.error or "", bucket=bucket.label, member_id=member.id)
            logger.error(
                "Batch expiration email failed",
                bucket=bucket.label,
                member_id=member.id,
                email=member.email,
                error=delivery.error,
                timed_out=delivery.timed_out,
            )
            await self.audit.record(
                f"Failed to send {bucket.label} batch expiration notification to {member.email} for deals",
                "error",
                member.id,
            )
            return

        result.emails_sent += 1
        await self._record_receipts(member, deals, bucket, now, result)

        showing = f" (showing {len(shown)})" if additional else ""
        await self.audit.record(
            f"{bucket.label} expiration notification sent to {member.name} for {len(deals)} deal(s){showing}",
            "info",
            member.id,
        )

        if member.phone:
            await self._send_sms_batch(member, deals, bucket, result)

    async def _record_receipts(
        self, member: Member, deals: Sequence[Deal], bucket: IntervalBucket, now: datetime, result: SweepResult
    ) -> None:
        """Receipt for every deal in the batch, shown in the email or not."""
        for deal in deals:
            history = deal.notification_history
            if not history.add_receipt(bucket.key, member.id, now, allowed_keys=self.bucket_keys):
                continue
            try:
                await self.deal_store.save(deal)
            except Exception as e:
                result.receipt_failures += 1
                result.record_error(
                    "save_receipt", str(e), bucket=bucket.label, member_id=member.id, deal_id=deal.id
                )
                logger.error(
                    "Failed to persist notification receipt",
                    bucket=bucket.label,
                    member_id=member.id,
                    deal_id=deal.id,
                    error=str(e),
                )
                await self.audit.record(
                    f'Failed to record {bucket.label} notification for {member.name} on deal "{deal.name}"',
                    "error",
                    member.id,
                )
                continue
            result.receipts_recorded += 1

    async def _send_sms_batch(
        self, member: Member, deals: Sequence[Deal], bucket: IntervalBucket, result: SweepResult
    ) -> None:
        for deal in deals[: self.max_sms_per_member]:
            payload = {
                "kind": SMS_KIND_DEAL_EXPIRATION,
                "title": deal.name,
                "time_remaining": bucket.label,
                "expiry_date": deal.ends_at,
                "distributor_name": deal.distributor_name or "Unknown Distributor",
                "status": str(deal.status),
            }
            delivery = await self._deliver("sms", member.phone, self.notifier.send_sms(member.phone, payload))
            if delivery.ok:
                result.sms_sent += 1
                continue

            result.sms_failed += 1
            logger.warning(
                "Expiration SMS failed",
                bucket=bucket.label,
                member_id=member.id,
                deal_id=deal.id,
                error=delivery.error,
            )
            await self.audit.record(
                f'Failed to send SMS {bucket.label} notification to {member.name} for deal "{deal.name}"',
                "warning",
                member.id,
            )

        remaining = len(deals) - self.max_sms_per_member
        if remaining > 0:
            payload = {"kind": SMS_KIND_GENERIC, "message": overflow_summary_sms(remaining, bucket.label)}
            delivery = await self._deliver("sms", member.phone, self.notifier.send_sms(member.phone, payload))
            if delivery.ok:
                result.sms_sent += 1
            else:
                result.sms_failed += 1
                logger.warning(
                    "Additional deals summary SMS failed",
                    bucket=bucket.label,
                    member_id=member.id,
                    error=delivery.error,
                )

    async def _deliver(self, channel: str, recipient: str, send: Awaitable[Any]) -> DeliveryResult:
        """Await one send under the per-call timeout and capture the outcome."""
        try:
            response = await asyncio.wait_for(send, timeout=self.send_timeout)
        except TimeoutError:
            return DeliveryResult(
                channel=channel,
                recipient=recipient,
                ok=False,
                error=f"Timed out after {self.send_timeout}s",
                timed_out=True,
            )
        except Exception as e:
            return DeliveryResult(channel=channel, recipient=recipient, ok=False, error=f"{type(e).__name__}: {e}")

        message_id = response.get("id") if isinstance(response, dict) else None
        return DeliveryResult(channel=channel, recipient=recipient, ok=True, message_id=message_id)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    async def _deactivate_expired(self, now: datetime, result: SweepResult) -> None:
        expired = await self.deal_store.find_by_status_and_ends_at_before(DealStatus.ACTIVE, now)
        for deal in expired:
            if not deal.is_expired(now):
                continue
            deal.deactivate()
            try:
                await self.deal_store.save(deal)
            except Exception as e:
                result.deactivation_failures += 1
                result.record_error("deactivate_deal", str(e), deal_id=deal.id)
                logger.error("Failed to deactivate expired deal", deal_id=deal.id, error=str(e))
                await self.audit.record(
                    f'Failed to deactivate expired deal "{deal.name}": {e}', "error", deal.distributor_id
                )
                continue

            result.deals_deactivated += 1
            logger.info("Deal deactivated", deal_id=deal.id, ends_at=deal.ends_at.isoformat())
            await self.audit.record(
                f'Deal "{deal.name}" automatically deactivated due to expiration',
                "info",
                deal.distributor_id,
            )
