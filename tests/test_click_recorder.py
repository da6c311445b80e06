from decimal import Decimal
from sqlalchemy import select
from locker.server import click_recorder
from locker.server.click_recorder import (
    record_click, NOT_MONETIZABLE_REASON, SUSPENDED_REASON, OWNER_SUSPENDED_REASON, OWNER_MISSING_REASON,
    PAUSED_REASON
)
from locker.server.abuse_guard import WINDOW_REASON
from locker.server.balance import audit_link_earnings
from locker.models import Link, ClickEvent, Notification, GlobalVisit
from locker.database import AsyncSessionLocal
from conftest import add_user, add_link, add_period, fetch

NOW = 1_700_000_000_000
MINUTE = 60_000
IP = '203.0.113.10'

async def _events(link_id):
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(ClickEvent).where(ClickEvent.link_id == link_id).order_by(ClickEvent.id)
        )
        return result.scalars().all()

async def test_first_visit_is_monetized_at_default_rate(db):
    await add_user()
    link = await add_link(rules=[], monetizable=True)

    outcome = await record_click(link.id, IP, 'Mozilla/5.0', now=NOW)

    assert outcome.monetized
    assert outcome.cpm_used == Decimal('3.00')
    assert outcome.earnings == Decimal('0.003')

    stored = await fetch(Link, link.id)
    assert stored.clicks == 1
    assert stored.generated_earnings == Decimal('0.003')

    [event] = await _events(link.id)
    assert event.monetized
    assert event.cpm_used == Decimal('3.00')
    assert event.earnings_generated == Decimal('0.003')
    assert event.reason is None
    assert event.user_agent == 'Mozilla/5.0'

async def test_repeat_visit_within_window_counts_without_earning(db):
    await add_user()
    link = await add_link(rules=[], monetizable=True)
    other = await add_link(rules=[], monetizable=True, short_code='other12')

    await record_click(link.id, IP, None, now=NOW)
    outcome = await record_click(other.id, IP, None, now=NOW + 10 * MINUTE)

    assert not outcome.monetized
    assert outcome.reason == WINDOW_REASON
    stored = await fetch(Link, other.id)
    assert stored.clicks == 1
    assert stored.generated_earnings == 0

    [event] = await _events(other.id)
    assert event.cpm_used == 0
    assert event.earnings_generated == 0
    assert event.reason == 'visit within 30min window'

async def test_visits_thirty_minutes_apart_both_earn(db):
    await add_user()
    link = await add_link()

    first = await record_click(link.id, IP, None, now=NOW)
    second = await record_click(link.id, IP, None, now=NOW + 30 * MINUTE)

    assert first.monetized and second.monetized
    assert (await fetch(Link, link.id)).generated_earnings == Decimal('0.006')

async def test_cookie_blocks_monetization_from_a_new_ip(db):
    await add_user()
    link = await add_link()

    outcome = await record_click(link.id, '203.0.113.99', None, cookie_ms=NOW - 5 * MINUTE, now=NOW)

    assert outcome.reason == WINDOW_REASON

async def test_custom_cpm_overrides_global_rate(db):
    await add_user(custom_cpm=Decimal('5.00'))
    await add_period('3.00')
    link = await add_link()

    outcome = await record_click(link.id, IP, None, now=NOW)

    assert outcome.cpm_used == Decimal('5.00')
    assert (await fetch(Link, link.id)).generated_earnings == Decimal('0.005')

async def test_ineligible_links_do_not_consume_window(db):
    await add_user()
    few_rules = await add_link(rules=[{'type': 'visit', 'url': 'https://a.example'}], short_code='few1234')
    suspended = await add_link(monetization_status='suspended', short_code='susp123')
    eligible = await add_link(short_code='good123')

    first = await record_click(few_rules.id, IP, None, now=NOW)
    second = await record_click(suspended.id, IP, None, now=NOW + MINUTE)
    third = await record_click(eligible.id, IP, None, now=NOW + 2 * MINUTE)

    assert first.reason == NOT_MONETIZABLE_REASON
    assert second.reason == SUSPENDED_REASON
    assert third.monetized
    assert (await fetch(Link, suspended.id)).clicks == 1

async def test_suspended_owner_earns_nothing(db):
    await add_user(account_status='suspended')
    link = await add_link()

    outcome = await record_click(link.id, IP, None, now=NOW)

    assert outcome.reason == OWNER_SUSPENDED_REASON
    assert (await fetch(Link, link.id)).clicks == 1

async def test_link_without_owner_profile_earns_nothing(db):
    link = await add_link(owner_id='ghost-1')

    outcome = await record_click(link.id, IP, None, now=NOW)

    assert outcome.reason == OWNER_MISSING_REASON
    assert (await fetch(Link, link.id)).clicks == 1
    assert await fetch(GlobalVisit, IP) is None

async def test_zero_global_rate_pauses_monetization(db):
    await add_user()
    await add_period('0')
    link = await add_link()

    outcome = await record_click(link.id, IP, None, now=NOW)

    assert outcome.reason == PAUSED_REASON
    # The window is left untouched for a later paid view
    assert (await record_click(link.id, IP, None, now=NOW + MINUTE)).reason == PAUSED_REASON

async def test_milestone_notification_on_thousandth_click(db):
    await add_user()
    link = await add_link(clicks=999)

    outcome = await record_click(link.id, IP, None, now=NOW)

    assert outcome.clicks == 1000
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(Notification).where(Notification.type == 'milestone'))
        [notification] = result.scalars().all()
    assert notification.user_id == 'owner-1'
    assert notification.link_id == link.id
    assert '1,000' in notification.message

async def test_missing_or_deleted_link_is_ignored(db):
    await add_user()
    link = await add_link(is_deleted=True)

    assert await record_click(link.id, IP, None, now=NOW) is None
    assert await record_click(9999, IP, None, now=NOW) is None
    assert await _events(link.id) == []

async def test_failure_rolls_back_every_write(db, monkeypatch):
    await add_user()
    link = await add_link()

    def broken_event(**kwargs):
        raise RuntimeError('click log unavailable')

    # Fails after the counter update and the window claim
    monkeypatch.setattr(click_recorder, 'ClickEvent', broken_event)

    assert await record_click(link.id, IP, None, now=NOW) is None
    stored = await fetch(Link, link.id)
    assert stored.clicks == 0
    assert stored.generated_earnings == 0
    assert await _events(link.id) == []
    assert await fetch(GlobalVisit, IP) is None

async def test_accumulator_reconciles_with_click_log(db):
    await add_user()
    link = await add_link()

    for offset in range(4):
        await record_click(link.id, IP, None, now=NOW + offset * 20 * MINUTE)

    report = await audit_link_earnings(link.id)

    assert report.clicks == report.events == 4
    assert report.accumulated == Decimal('0.006')
    assert report.consistent
