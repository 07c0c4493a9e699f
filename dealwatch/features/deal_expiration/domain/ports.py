"""Collaborator interfaces consumed by the expiration engine."""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol

from .models import Deal, DealStatus, Member

HealthCheck = Callable[[], Awaitable[bool]]


class DealStore(Protocol):
    """Reads deals by expiry window and persists status/receipt changes."""

    async def find_by_status_and_ends_at_range(
        self, status: DealStatus, start: datetime, end: datetime
    ) -> list[Deal]:
        """Deals with ``start < ends_at <= end``."""
        ...

    async def find_by_status_and_ends_at_before(self, status: DealStatus, moment: datetime) -> list[Deal]:
        """Deals with ``ends_at < moment``."""
        ...

    async def save(self, deal: Deal) -> None:
        """Persist ``status`` and ``notification_history``."""
        ...


class MemberStore(Protocol):
    async def find_by_role_and_not_blocked(self, role: str) -> list[Member]:
        ...


class Notifier(Protocol):
    """Outbound email + SMS. Both raise on failure."""

    async def send_email(self, to: str | list[str], subject: str, html: str) -> dict[str, Any]:
        ...

    async def send_sms(self, to: str, payload: dict[str, Any]) -> None:
        ...


class AuditSink(Protocol):
    """Append-only operator log. Must never raise."""

    async def record(self, message: str, level: str = "info", subject_id: str | None = None) -> bool:
        ...
