import pytest
from decimal import Decimal
from datetime import datetime, timezone
from sqlalchemy import select, func
from locker.server.rates import (
    parse_rate, resolve_rate, open_cpm_period, cpm_history, set_custom_cpm, current_global_rate
)
from locker.server.error import InvalidAmount, NotFound
from locker.models import UserProfile, CpmPeriod, Notification
from locker.database import AsyncSessionLocal
from conftest import add_user, add_period, add_settings, fetch

def test_parse_rate():
    assert parse_rate('') is None
    assert parse_rate(None) is None
    assert parse_rate('4.123456') == Decimal('4.1235')
    assert parse_rate('0') == Decimal('0')
    assert parse_rate('0', allow_zero=False) is None
    with pytest.raises(InvalidAmount):
        parse_rate('-1')
    with pytest.raises(InvalidAmount):
        parse_rate('cheap')

async def _resolve(user_id):
    async with AsyncSessionLocal() as session:
        owner = await session.get(UserProfile, user_id)
        return await resolve_rate(session, owner)

async def test_default_rate_without_configuration(db):
    await add_user()
    assert await _resolve('owner-1') == Decimal('3.00')

async def test_active_period_rate_is_used(db):
    await add_user()
    await add_period('2.00', ended_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    await add_period('4.50')

    assert await _resolve('owner-1') == Decimal('4.50')

async def test_custom_rate_wins_and_zero_falls_back(db):
    await add_user('vip', custom_cpm=Decimal('5.00'))
    await add_user('zero', custom_cpm=Decimal('0'))
    await add_period('3.00')

    assert await _resolve('vip') == Decimal('5.00')
    assert await _resolve('zero') == Decimal('3.00')

async def test_opening_period_closes_previous_one(db):
    await add_settings()
    await add_user('u1')
    await add_user('u2')

    await open_cpm_period(Decimal('3.00'), 'admin-1')
    await open_cpm_period(Decimal('4.25'), 'admin-1')

    async with AsyncSessionLocal() as session:
        active = await session.scalar(
            select(func.count(CpmPeriod.id)).where(CpmPeriod.ended_at.is_(None))
        )
        notified = await session.scalar(
            select(func.count(Notification.id)).where(Notification.type == 'global_cpm_changed')
        )
        overrides = await session.scalar(
            select(func.count(Notification.id)).where(Notification.type == 'custom_cpm_set')
        )

    assert active == 1
    assert notified == 4
    assert overrides == 0
    assert await current_global_rate() == Decimal('4.25')

    history = await cpm_history()
    assert [p.rate for p in history] == [Decimal('4.25'), Decimal('3.00')]
    assert history[1].ended_at is not None

async def test_set_and_clear_custom_cpm(db):
    await add_user()

    await set_custom_cpm('owner-1', Decimal('6.5'), 'admin-1')
    assert (await fetch(UserProfile, 'owner-1')).custom_cpm == Decimal('6.5')

    await set_custom_cpm('owner-1', None, 'admin-1')
    assert (await fetch(UserProfile, 'owner-1')).custom_cpm is None

    async with AsyncSessionLocal() as session:
        result = await session.execute(select(Notification.message).order_by(Notification.id))
        messages = result.scalars().all()
        types = (await session.execute(select(Notification.type).order_by(Notification.id))).scalars().all()
    assert types == ['custom_cpm_set', 'custom_cpm_set']
    assert messages[0] == 'Your CPM rate has been updated to $6.5000!'
    assert 'removed' in messages[1]

    with pytest.raises(NotFound):
        await set_custom_cpm('nobody', None, 'admin-1')
