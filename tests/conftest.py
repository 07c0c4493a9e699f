import asyncio
import copy
from datetime import UTC, datetime, timedelta

import pytest

from dealwatch.features.deal_expiration.domain import Deal, DealStatus, Member
from dealwatch.features.deal_expiration.services.engine import ExpirationNotificationEngine

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


class FakeDealStore:
    """In-memory deal store. Hands out copies so unsaved changes never leak back."""

    def __init__(self, deals: list[Deal] | None = None):
        self.deals: dict[str, Deal] = {deal.id: copy.deepcopy(deal) for deal in deals or []}
        self.saves: list[Deal] = []
        self.fail_save_for: set[str] = set()
        self.fail_range_query = False

    def add(self, *deals: Deal) -> None:
        for deal in deals:
            self.deals[deal.id] = copy.deepcopy(deal)

    async def find_by_status_and_ends_at_range(self, status, start, end):
        if self.fail_range_query:
            raise RuntimeError("deal query failed")
        return [
            copy.deepcopy(deal)
            for deal in self.deals.values()
            if deal.status == status and start < deal.ends_at <= end
        ]

    async def find_by_status_and_ends_at_before(self, status, moment):
        return [
            copy.deepcopy(deal)
            for deal in self.deals.values()
            if deal.status == status and deal.ends_at < moment
        ]

    async def save(self, deal: Deal) -> None:
        if deal.id in self.fail_save_for:
            raise RuntimeError(f"write failed for {deal.id}")
        stored = self.deals[deal.id]
        stored.notification_history = stored.notification_history.merge(deal.notification_history)
        if stored.status != DealStatus.INACTIVE:
            stored.status = deal.status
        self.saves.append(copy.deepcopy(deal))


class FakeMemberStore:
    def __init__(self, members: list[Member] | None = None):
        self.members = list(members or [])
        self.error: Exception | None = None
        self.delay: float = 0
        self.apply_block_filter = True

    async def find_by_role_and_not_blocked(self, role: str) -> list[Member]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        if self.apply_block_filter:
            return [member for member in self.members if not member.is_blocked]
        return list(self.members)


class FakeNotifier:
    def __init__(self):
        self.emails: list[dict] = []
        self.sms: list[dict] = []
        self.fail_emails_for: set[str] = set()
        self.fail_sms = False
        self.email_delay: float = 0

    async def send_email(self, to, subject, html):
        recipients = [to] if isinstance(to, str) else list(to)
        if self.email_delay:
            await asyncio.sleep(self.email_delay)
        if self.fail_emails_for.intersection(recipients):
            raise RuntimeError("provider rejected email")
        self.emails.append({"to": recipients, "subject": subject, "html": html})
        return {"id": f"msg-{len(self.emails)}"}

    async def send_sms(self, to, payload):
        if self.fail_sms:
            raise RuntimeError("sms provider down")
        self.sms.append({"to": to, "payload": payload})


class FakeAudit:
    def __init__(self):
        self.entries: list[tuple[str, str, str | None]] = []

    async def record(self, message, level="info", subject_id=None):
        self.entries.append((message, level, subject_id))
        return True

    def messages(self, level: str | None = None) -> list[str]:
        return [message for message, lvl, _ in self.entries if level is None or lvl == level]


def make_deal(deal_id: str, ends_in: timedelta, **overrides) -> Deal:
    fields = {
        "id": deal_id,
        "name": f"Deal {deal_id}",
        "status": DealStatus.ACTIVE,
        "ends_at": NOW + ends_in,
        "distributor_id": "dist-1",
        "distributor_name": "Sunrise Foods",
    }
    fields.update(overrides)
    return Deal(**fields)


def make_member(member_id: str, **overrides) -> Member:
    fields = {
        "id": member_id,
        "email": f"{member_id}@example.com",
        "name": f"Member {member_id}",
    }
    fields.update(overrides)
    return Member(**fields)


@pytest.fixture
def deal_store():
    return FakeDealStore()


@pytest.fixture
def member_store():
    return FakeMemberStore()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def audit():
    return FakeAudit()


@pytest.fixture
def health():
    state = {"ready": True}

    async def _check() -> bool:
        return state["ready"]

    _check.state = state
    return _check


@pytest.fixture
def engine(deal_store, member_store, notifier, audit, health):
    return ExpirationNotificationEngine(
        deal_store,
        member_store,
        notifier,
        audit,
        health,
        frontend_url="https://deals.example.com",
        member_load_timeout=0.2,
        send_timeout=0.2,
        max_deals_per_email=5,
        max_sms_per_member=3,
    )
