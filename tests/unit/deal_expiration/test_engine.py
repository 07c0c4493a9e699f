"""
Tests for the deal expiration sweep.
"""

import importlib
from datetime import timedelta

import pytest

from conftest import NOW, FakeDealStore, make_deal, make_member
from dealwatch.features.deal_expiration.domain import DealStatus, IntervalBucket
from dealwatch.features.deal_expiration.services.engine import ExpirationNotificationEngine

engine_module = importlib.import_module("dealwatch.features.deal_expiration.services.engine")


@pytest.mark.asyncio
async def test_second_sweep_sends_nothing_new(engine, deal_store, member_store, notifier):
    deal_store.add(make_deal("d1", timedelta(days=2, hours=12)))
    member_store.members = [make_member("a"), make_member("b")]

    first = await engine.run_sweep(NOW)
    second = await engine.run_sweep(NOW + timedelta(minutes=15))

    assert first.emails_sent == 2
    assert second.emails_sent == 0
    assert len(notifier.emails) == 2
    history = deal_store.deals["d1"].notification_history
    assert history.notified_member_ids("notification_3") == {"a", "b"}


@pytest.mark.asyncio
async def test_deal_two_and_a_half_days_out_only_matches_three_day_bucket(
    engine, deal_store, member_store, notifier
):
    deal_store.add(make_deal("d1", timedelta(days=2.5)))
    member_store.members = [make_member("a")]

    result = await engine.run_sweep(NOW)

    assert result.deals_matched == {"5 days": 0, "3 days": 1, "1 day": 0, "1 hour": 0}
    assert notifier.emails[0]["subject"] == "Deal Ending in 3 days"
    assert list(deal_store.deals["d1"].notification_history.entries) == ["notification_3"]


@pytest.mark.asyncio
async def test_blocked_member_never_notified_even_if_store_returns_them(
    engine, deal_store, member_store, notifier
):
    deal_store.add(make_deal("d1", timedelta(hours=20)))
    member_store.apply_block_filter = False
    member_store.members = [make_member("a"), make_member("b", is_blocked=True, phone="+15055550100")]

    result = await engine.run_sweep(NOW)

    assert result.members_loaded == 1
    assert [email["to"] for email in notifier.emails] == [["a@example.com"]]
    assert notifier.sms == []
    assert not deal_store.deals["d1"].notification_history.has_receipt("notification_1", "b")


@pytest.mark.asyncio
async def test_email_shows_five_deals_but_receipts_cover_all_seven(engine, deal_store, member_store, notifier):
    deals = [make_deal(f"d{i}", timedelta(hours=12, minutes=i)) for i in range(7)]
    deal_store.add(*deals)
    member_store.members = [make_member("a")]

    result = await engine.run_sweep(NOW)

    assert len(notifier.emails) == 1
    email = notifier.emails[0]
    assert email["subject"] == "Deals Ending in 1 day"
    assert email["html"].count("Make Commitment") == 5
    assert "And 2 more deals ending in 1 day" in email["html"]

    assert result.receipts_recorded == 7
    sent_at = set()
    for deal in deal_store.deals.values():
        receipts = deal.notification_history.receipts("notification_1")
        assert [receipt.member_id for receipt in receipts] == ["a"]
        sent_at.add(receipts[0].sent_at)
    assert sent_at == {NOW}


@pytest.mark.asyncio
async def test_expired_deal_deactivated_even_when_every_email_fails(engine, deal_store, member_store, notifier):
    deal_store.add(make_deal("soon", timedelta(hours=5)), make_deal("gone", timedelta(minutes=-30)))
    member_store.members = [make_member("a")]
    notifier.fail_emails_for = {"a@example.com"}

    result = await engine.run_sweep(NOW)

    assert result.emails_failed == 1
    assert result.deals_deactivated == 1
    assert deal_store.deals["gone"].status == DealStatus.INACTIVE
    assert deal_store.deals["soon"].status == DealStatus.ACTIVE


@pytest.mark.asyncio
async def test_failed_email_for_one_member_does_not_affect_others(
    engine, deal_store, member_store, notifier, audit
):
    deal_store.add(make_deal("d1", timedelta(days=2)))
    member_store.members = [make_member("a"), make_member("b")]
    notifier.fail_emails_for = {"a@example.com"}

    result = await engine.run_sweep(NOW)

    history = deal_store.deals["d1"].notification_history
    assert history.notified_member_ids("notification_3") == {"b"}
    assert result.emails_sent == 1
    assert result.emails_failed == 1
    assert "Failed to send 3 days batch expiration notification to a@example.com for deals" in audit.messages(
        "error"
    )

    # Retried on the next sweep; b is not emailed again
    notifier.fail_emails_for = set()
    retry = await engine.run_sweep(NOW + timedelta(minutes=15))

    assert retry.emails_sent == 1
    assert notifier.emails[-1]["to"] == ["a@example.com"]
    assert deal_store.deals["d1"].notification_history.notified_member_ids("notification_3") == {"a", "b"}


@pytest.mark.asyncio
async def test_deal_under_an_hour_out_gets_single_hour_notice(engine, deal_store, member_store, notifier):
    deal_store.add(make_deal("d1", timedelta(minutes=54)))
    member_store.members = [make_member("a")]

    result = await engine.run_sweep(NOW)

    assert len(notifier.emails) == 1
    assert notifier.emails[0]["subject"] == "Deal Ending in 1 hour"
    deal = deal_store.deals["d1"]
    assert list(deal.notification_history.entries) == ["notification_0.042"]
    assert [r.member_id for r in deal.notification_history.receipts("notification_0.042")] == ["a"]
    assert deal.status == DealStatus.ACTIVE
    assert result.deals_deactivated == 0


@pytest.mark.asyncio
async def test_deal_ended_a_minute_ago_is_only_deactivated(engine, deal_store, member_store, notifier, audit):
    deal_store.add(make_deal("d1", timedelta(minutes=-1)))
    member_store.members = [make_member("a")]

    result = await engine.run_sweep(NOW)

    assert result.deals_matched == {"5 days": 0, "3 days": 0, "1 day": 0, "1 hour": 0}
    assert notifier.emails == []
    deal = deal_store.deals["d1"]
    assert deal.status == DealStatus.INACTIVE
    assert deal.notification_history.entries == {}
    assert ('Deal "Deal d1" automatically deactivated due to expiration', "info", "dist-1") in audit.entries


@pytest.mark.asyncio
async def test_sweep_skipped_when_database_not_ready(engine, deal_store, member_store, notifier, audit, health):
    health.state["ready"] = False
    deal_store.add(make_deal("d1", timedelta(minutes=-1)))
    deal_store.fail_range_query = True
    member_store.members = [make_member("a")]

    result = await engine.run_sweep(NOW)

    assert result.skipped is True
    assert result.reason == "database_not_ready"
    assert notifier.emails == []
    assert audit.entries == []
    assert deal_store.deals["d1"].status == DealStatus.ACTIVE


@pytest.mark.asyncio
async def test_health_check_that_raises_reads_as_not_ready(deal_store, member_store, notifier, audit):
    from dealwatch.features.deal_expiration.services.engine import ExpirationNotificationEngine

    async def broken_check():
        raise ConnectionError("pool gone")

    engine = ExpirationNotificationEngine(
        deal_store, member_store, notifier, audit, broken_check, frontend_url="https://deals.example.com"
    )

    result = await engine.run_sweep(NOW)

    assert result.skipped is True


@pytest.mark.asyncio
async def test_member_load_timeout_aborts_whole_sweep(engine, deal_store, member_store, notifier, audit):
    deal_store.add(make_deal("soon", timedelta(hours=5)), make_deal("gone", timedelta(minutes=-5)))
    member_store.members = [make_member("a")]
    member_store.delay = 1

    result = await engine.run_sweep(NOW)

    assert result.aborted is True
    assert result.reason == "member_load_timeout"
    assert notifier.emails == []
    assert deal_store.deals["gone"].status == DealStatus.ACTIVE
    assert any(message.startswith("Deal expiration check aborted") for message in audit.messages("error"))


@pytest.mark.asyncio
async def test_member_load_error_aborts_sweep(engine, member_store):
    member_store.error = RuntimeError("users table missing")

    result = await engine.run_sweep(NOW)

    assert result.aborted is True
    assert result.reason == "member_load_failed"
    assert result.errors[0]["operation"] == "load_members"


@pytest.mark.asyncio
async def test_deal_query_failure_is_caught_at_top_level(engine, deal_store, member_store, audit):
    deal_store.add(make_deal("gone", timedelta(minutes=-5)))
    deal_store.fail_range_query = True
    member_store.members = [make_member("a")]

    result = await engine.run_sweep(NOW)

    assert result.aborted is True
    assert result.reason == "unexpected_error"
    assert "Error in deal expiration check: deal query failed" in audit.messages("error")
    # Remaining work is abandoned
    assert deal_store.deals["gone"].status == DealStatus.ACTIVE


@pytest.mark.asyncio
async def test_sms_capped_at_three_plus_summary(engine, deal_store, member_store, notifier):
    deal_store.add(*[make_deal(f"d{i}", timedelta(hours=10, minutes=i)) for i in range(5)])
    member_store.members = [make_member("a", phone="+15055550100")]

    result = await engine.run_sweep(NOW)

    assert result.sms_sent == 4
    kinds = [message["payload"]["kind"] for message in notifier.sms]
    assert kinds == ["deal_expiration", "deal_expiration", "deal_expiration", "generic"]
    assert notifier.sms[0]["payload"]["time_remaining"] == "1 day"
    assert notifier.sms[-1]["payload"]["message"] == (
        "And 2 more deals ending in 1 day. Check your email for details."
    )


@pytest.mark.asyncio
async def test_sms_failures_do_not_block_receipts(engine, deal_store, member_store, notifier, audit):
    deal_store.add(*[make_deal(f"d{i}", timedelta(hours=10, minutes=i)) for i in range(4)])
    member_store.members = [make_member("a", phone="+15055550100")]
    notifier.fail_sms = True

    result = await engine.run_sweep(NOW)

    assert result.emails_sent == 1
    assert result.sms_failed == 4
    assert result.receipts_recorded == 4
    assert len(audit.messages("warning")) == 3
    assert all(
        deal.notification_history.has_receipt("notification_1", "a") for deal in deal_store.deals.values()
    )


@pytest.mark.asyncio
async def test_member_without_phone_gets_no_sms(engine, deal_store, member_store, notifier):
    deal_store.add(make_deal("d1", timedelta(hours=10)))
    member_store.members = [make_member("a")]

    await engine.run_sweep(NOW)

    assert notifier.sms == []


@pytest.mark.asyncio
async def test_receipt_write_failure_is_counted_and_retried_next_sweep(
    engine, deal_store, member_store, notifier, audit
):
    deal_store.add(make_deal("d1", timedelta(days=4)), make_deal("d2", timedelta(days=4, hours=1)))
    member_store.members = [make_member("a")]
    deal_store.fail_save_for = {"d1"}

    result = await engine.run_sweep(NOW)

    assert result.emails_sent == 1
    assert result.receipt_failures == 1
    assert result.receipts_recorded == 1
    assert any("on deal \"Deal d1\"" in message for message in audit.messages("error"))

    deal_store.fail_save_for = set()
    await engine.run_sweep(NOW + timedelta(minutes=15))

    assert len(notifier.emails) == 2
    assert notifier.emails[-1]["subject"] == "Deal Ending in 5 days"
    assert deal_store.deals["d1"].notification_history.has_receipt("notification_5", "a")


@pytest.mark.asyncio
async def test_email_send_timeout_is_isolated(engine, deal_store, member_store, notifier):
    deal_store.add(make_deal("d1", timedelta(hours=3)))
    member_store.members = [make_member("a")]
    notifier.email_delay = 1

    result = await engine.run_sweep(NOW)

    assert result.emails_failed == 1
    assert result.aborted is False
    assert "Timed out" in result.errors[0]["error"]
    assert deal_store.deals["d1"].notification_history.entries == {}


@pytest.mark.asyncio
async def test_adjacent_buckets_send_separate_emails(engine, deal_store, member_store, notifier):
    deal_store.add(make_deal("tomorrow", timedelta(hours=20)), make_deal("later", timedelta(days=2)))
    member_store.members = [make_member("a")]

    await engine.run_sweep(NOW)

    assert [email["subject"] for email in notifier.emails] == ["Deal Ending in 3 days", "Deal Ending in 1 day"]


@pytest.mark.asyncio
async def test_additional_emails_receive_the_notice(engine, deal_store, member_store, notifier):
    deal_store.add(make_deal("d1", timedelta(hours=20)))
    member_store.members = [make_member("a", additional_emails=["buyer@store.com", "A@example.com"])]

    await engine.run_sweep(NOW)

    assert notifier.emails[0]["to"] == ["a@example.com", "buyer@store.com"]


@pytest.mark.asyncio
async def test_no_members_writes_nothing(engine, deal_store, notifier):
    deal_store.add(make_deal("d1", timedelta(hours=20)))

    result = await engine.run_sweep(NOW)

    assert result.deals_matched["1 day"] == 1
    assert result.errors == []
    assert notifier.emails == []
    assert deal_store.saves == []


@pytest.mark.asyncio
async def test_success_audit_mentions_shown_count(engine, deal_store, member_store, audit):
    deal_store.add(*[make_deal(f"d{i}", timedelta(days=3, minutes=-i - 1)) for i in range(6)])
    member_store.members = [make_member("a")]

    await engine.run_sweep(NOW)

    assert ("3 days expiration notification sent to Member a for 6 deal(s) (showing 5)", "info", "a") in (
        audit.entries
    )


@pytest.mark.asyncio
async def test_render_failure_for_one_member_does_not_stop_the_sweep(
    engine, deal_store, member_store, notifier, audit, monkeypatch
):
    real_render = engine_module.batch_expiration_email

    def render(member_name, *args, **kwargs):
        if member_name == "Member a":
            raise AttributeError("'NoneType' object has no attribute 'replace'")
        return real_render(member_name, *args, **kwargs)

    monkeypatch.setattr(engine_module, "batch_expiration_email", render)
    deal_store.add(make_deal("soon", timedelta(hours=20)), make_deal("gone", timedelta(minutes=-5)))
    member_store.members = [make_member("a"), make_member("b")]

    result = await engine.run_sweep(NOW)

    assert result.aborted is False
    assert result.emails_failed == 1
    assert result.emails_sent == 1
    assert [email["to"] for email in notifier.emails] == [["b@example.com"]]
    assert deal_store.deals["soon"].notification_history.notified_member_ids("notification_1") == {"b"}
    assert deal_store.deals["gone"].status == DealStatus.INACTIVE
    assert "Failed to send 1 day batch expiration notification to a@example.com for deals" in audit.messages(
        "error"
    )


@pytest.mark.asyncio
async def test_custom_bucket_receipts_stop_repeat_emails(deal_store, member_store, notifier, audit, health):
    custom = ExpirationNotificationEngine(
        deal_store,
        member_store,
        notifier,
        audit,
        health,
        buckets=[IntervalBucket(threshold_days=2, label="2 days")],
        frontend_url="https://deals.example.com",
        send_timeout=0.2,
    )
    deal_store.add(make_deal("d1", timedelta(days=1)))
    member_store.members = [make_member("a")]

    first = await custom.run_sweep(NOW)
    second = await custom.run_sweep(NOW + timedelta(minutes=15))

    assert first.aborted is False
    assert second.aborted is False
    assert len(notifier.emails) == 1
    assert deal_store.deals["d1"].notification_history.notified_member_ids("notification_2") == {"a"}


class LenientDealStore(FakeDealStore):
    """Ignores the time bounds and returns every deal with the status."""

    async def find_by_status_and_ends_at_range(self, status, start, end):
        return await super().find_by_status_and_ends_at_before(status, NOW + timedelta(days=365))

    async def find_by_status_and_ends_at_before(self, status, moment):
        return await super().find_by_status_and_ends_at_before(status, NOW + timedelta(days=365))


@pytest.mark.asyncio
async def test_deals_outside_the_window_are_ignored(member_store, notifier, audit, health):
    store = LenientDealStore()
    store.add(make_deal("soon", timedelta(hours=2)), make_deal("later", timedelta(days=10)))
    member_store.members = [make_member("a")]
    engine = ExpirationNotificationEngine(
        store, member_store, notifier, audit, health, frontend_url="https://deals.example.com"
    )

    result = await engine.run_sweep(NOW)

    assert result.deals_matched == {"5 days": 0, "3 days": 0, "1 day": 1, "1 hour": 0}
    assert len(notifier.emails) == 1
    assert result.deals_deactivated == 0
    assert all(deal.status == DealStatus.ACTIVE for deal in store.deals.values())


@pytest.mark.asyncio
async def test_zero_deals_per_email_lists_everything_as_overflow(deal_store, member_store, notifier, audit, health):
    engine = ExpirationNotificationEngine(
        deal_store,
        member_store,
        notifier,
        audit,
        health,
        frontend_url="https://deals.example.com",
        max_deals_per_email=0,
    )
    deal_store.add(make_deal("d1", timedelta(days=2)), make_deal("d2", timedelta(days=2, hours=1)))
    member_store.members = [make_member("a")]

    result = await engine.run_sweep(NOW)

    assert engine.max_deals_per_email == 0
    assert result.receipts_recorded == 2
    assert "And 2 more deals ending in 3 days." in notifier.emails[0]["html"]
