"""
Domain models for the deal expiration feature.

Lightweight dataclasses shared by the repositories, the notification
engine and the job runner.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from .buckets import BUCKET_KEYS


class DealStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


MEMBER_ROLE = "member"


@dataclass(slots=True)
class NotificationReceipt:
    """Proof that a member was notified about a deal within one bucket."""

    member_id: str
    sent_at: datetime

    def to_json(self) -> dict[str, str]:
        return {"memberId": self.member_id, "sentAt": self.sent_at.isoformat()}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "NotificationReceipt":
        sent_at = data["sentAt"]
        if isinstance(sent_at, str):
            sent_at = datetime.fromisoformat(sent_at)
        if sent_at.tzinfo is None:
            sent_at = sent_at.replace(tzinfo=UTC)
        return cls(member_id=str(data["memberId"]), sent_at=sent_at)


@dataclass(slots=True)
class NotificationHistory:
    """
    Receipts per bucket key for a single deal.

    A member id appears at most once per key. New receipts are only accepted
    under the configured bucket keys; keys already present in storage are
    carried through untouched.
    """

    entries: dict[str, list[NotificationReceipt]] = field(default_factory=dict)

    def receipts(self, key: str) -> list[NotificationReceipt]:
        return list(self.entries.get(key, []))

    def notified_member_ids(self, key: str) -> set[str]:
        return {receipt.member_id for receipt in self.entries.get(key, [])}

    def has_receipt(self, key: str, member_id: str) -> bool:
        return member_id in self.notified_member_ids(key)

    def add_receipt(
        self, key: str, member_id: str, sent_at: datetime, allowed_keys: frozenset[str] = BUCKET_KEYS
    ) -> bool:
        """
        Append a receipt. Returns False when the member already has one
        under this key.

        ``allowed_keys`` defaults to the keys of the default buckets; an
        engine running custom buckets passes its own.
        """
        if key not in allowed_keys:
            raise ValueError(f"Unknown notification bucket key: {key}")
        if self.has_receipt(key, member_id):
            return False
        self.entries.setdefault(key, []).append(NotificationReceipt(member_id=member_id, sent_at=sent_at))
        return True

    def merge(self, other: "NotificationHistory") -> "NotificationHistory":
        """Union of both histories; on conflict the earliest receipt wins."""
        merged: dict[str, list[NotificationReceipt]] = {}
        for key in list(self.entries) + [k for k in other.entries if k not in self.entries]:
            by_member: dict[str, NotificationReceipt] = {}
            for receipt in self.entries.get(key, []) + other.entries.get(key, []):
                existing = by_member.get(receipt.member_id)
                if existing is None or receipt.sent_at < existing.sent_at:
                    by_member[receipt.member_id] = receipt
            merged[key] = list(by_member.values())
        return NotificationHistory(entries=merged)

    def to_json(self) -> dict[str, list[dict[str, str]]]:
        return {key: [receipt.to_json() for receipt in receipts] for key, receipts in self.entries.items()}

    @classmethod
    def from_json(cls, data: dict[str, Any] | None) -> "NotificationHistory":
        history = cls()
        for key, receipts in (data or {}).items():
            seen: set[str] = set()
            for raw in receipts or []:
                receipt = NotificationReceipt.from_json(raw)
                if receipt.member_id in seen:
                    continue
                seen.add(receipt.member_id)
                history.entries.setdefault(key, []).append(receipt)
        return history


@dataclass(slots=True)
class SizeCommitment:
    size: str
    quantity: int
    price_per_unit: float


@dataclass(slots=True)
class Commitment:
    """A member's commitment to a deal, split by size."""

    size_commitments: list[SizeCommitment] = field(default_factory=list)

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.size_commitments)


@dataclass(slots=True)
class DealSize:
    size: str
    discount_price: float
    original_cost: float | None = None


@dataclass(slots=True)
class Deal:
    """A distributor's deal as seen by the expiration engine."""

    id: str
    name: str
    status: DealStatus
    ends_at: datetime
    distributor_id: str | None = None
    distributor_name: str | None = None
    category: str | None = None
    description: str | None = None
    min_qty_for_discount: int | None = None
    images: list[str] = field(default_factory=list)
    sizes: list[DealSize] = field(default_factory=list)
    commitments: list[Commitment] = field(default_factory=list)
    notification_history: NotificationHistory = field(default_factory=NotificationHistory)

    def is_expired(self, now: datetime) -> bool:
        return self.ends_at < now

    def deactivate(self) -> bool:
        """Flip to inactive. Returns False if it already was."""
        if self.status == DealStatus.INACTIVE:
            return False
        self.status = DealStatus.INACTIVE
        return True

    def total_committed_quantity(self) -> int:
        return sum(commitment.total_quantity for commitment in self.commitments)

    def commitments_by_size(self) -> dict[str, tuple[int, float]]:
        """Size -> (total quantity, price of the first commitment seen)."""
        totals: dict[str, tuple[int, float]] = {}
        for commitment in self.commitments:
            for item in commitment.size_commitments:
                quantity, price = totals.get(item.size, (0, item.price_per_unit))
                totals[item.size] = (quantity + item.quantity, price)
        return totals


@dataclass(slots=True)
class Member:
    """A platform member eligible for deal notices."""

    id: str
    email: str
    name: str
    phone: str | None = None
    is_blocked: bool = False
    additional_emails: list[str] = field(default_factory=list)

    def recipients(self) -> list[str]:
        """Primary address first, then extra addresses; case-insensitive dedupe."""
        seen: set[str] = set()
        recipients = []
        for address in [self.email, *self.additional_emails]:
            if not address:
                continue
            normalized = address.strip().lower()
            if normalized in seen:
                continue
            seen.add(normalized)
            recipients.append(address.strip())
        return recipients


@dataclass(slots=True)
class DeliveryResult:
    """Outcome of one outbound email or SMS attempt."""

    channel: str  # "email" or "sms"
    recipient: str
    ok: bool
    message_id: str | None = None
    error: str | None = None
    timed_out: bool = False


@dataclass(slots=True)
class SweepResult:
    """Summary of one sweep; returned to the caller, never raised."""

    started_at: datetime
    skipped: bool = False
    aborted: bool = False
    reason: str | None = None
    members_loaded: int = 0
    deals_matched: dict[str, int] = field(default_factory=dict)
    emails_sent: int = 0
    emails_failed: int = 0
    sms_sent: int = 0
    sms_failed: int = 0
    receipts_recorded: int = 0
    receipt_failures: int = 0
    deals_deactivated: int = 0
    deactivation_failures: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def record_error(self, operation: str, error: str, **context: Any) -> None:
        self.errors.append(
            {
                "operation": operation,
                "error": error,
                "timestamp": datetime.now(UTC).isoformat(),
                **context,
            }
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_run": "deal_expiration",
            "started_at": self.started_at.isoformat(),
            "skipped": self.skipped,
            "aborted": self.aborted,
            "reason": self.reason,
            "members_loaded": self.members_loaded,
            "deals_matched": dict(self.deals_matched),
            "emails_sent": self.emails_sent,
            "emails_failed": self.emails_failed,
            "sms_sent": self.sms_sent,
            "sms_failed": self.sms_failed,
            "receipts_recorded": self.receipts_recorded,
            "receipt_failures": self.receipt_failures,
            "deals_deactivated": self.deals_deactivated,
            "deactivation_failures": self.deactivation_failures,
            "errors_count": len(self.errors),
        }
