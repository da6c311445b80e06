import pytest
from decimal import Decimal
from sqlalchemy import select
from locker.server.balance import (
    parse_amount, available_balance, get_balance_summary, request_payout, approve_payout,
    reject_payout, add_balance, toggle_payouts, update_minimum_payout
)
from locker.server.error import (
    InvalidAmount, InsufficientBalance, PayoutsDisabled, PayoutNotPending, NotFound, LedgerError
)
from locker.models import UserProfile, PayoutRequest, Notification
from locker.database import AsyncSessionLocal
from conftest import add_user, add_link, add_settings, fetch

async def _payout(user_id, amount, status='pending'):
    async with AsyncSessionLocal() as session:
        async with session.begin():
            payout = PayoutRequest(user_id=user_id, amount=Decimal(amount), method='paypal',
                                   details='me@example.com', status=status)
            session.add(payout)
    return payout

def test_parse_amount():
    assert parse_amount('20') == Decimal('20.00')
    assert parse_amount(' 12.346 ') == Decimal('12.35')
    assert parse_amount('-5', allow_negative=True) == Decimal('-5.00')
    for bad in ('0', '-5', 'abc', None, 'NaN'):
        with pytest.raises(InvalidAmount):
            parse_amount(bad)

async def test_available_balance_is_derived_from_links(db):
    await add_user(paid_earnings=Decimal('30'))
    await add_link(generated_earnings=Decimal('60'), short_code='link001')
    await add_link(generated_earnings=Decimal('25.5'), short_code='link002')
    await add_link(generated_earnings=Decimal('4.5'), short_code='link003', is_deleted=True)
    await _payout('owner-1', '15')
    await _payout('owner-1', '100', status='rejected')

    summary = await get_balance_summary('owner-1')

    assert summary.generated == Decimal('90')
    assert summary.paid == Decimal('30')
    assert summary.pending == Decimal('15')
    assert summary.available == Decimal('45')
    assert await available_balance('owner-1') == Decimal('45')

async def test_unknown_user_balance_raises(db):
    with pytest.raises(NotFound):
        await available_balance('nobody')

async def test_approval_credits_paid_earnings_exactly_once(db):
    await add_user(paid_earnings=Decimal('30'))
    await add_link(generated_earnings=Decimal('100'))
    payout = await _payout('owner-1', '20')

    approved = await approve_payout(payout.id, 'admin-1')

    assert approved.status == 'completed'
    assert approved.processed_at is not None
    assert (await fetch(UserProfile, 'owner-1')).paid_earnings == Decimal('50')

    with pytest.raises(PayoutNotPending):
        await approve_payout(payout.id, 'admin-2')

    assert (await fetch(UserProfile, 'owner-1')).paid_earnings == Decimal('50')
    assert await available_balance('owner-1') == Decimal('50')

async def test_rejection_leaves_paid_earnings_untouched(db):
    await add_user(paid_earnings=Decimal('30'))
    await add_link(generated_earnings=Decimal('100'))
    payout = await _payout('owner-1', '20')
    assert await available_balance('owner-1') == Decimal('50')

    rejected = await reject_payout(payout.id, 'admin-1')

    assert rejected.status == 'rejected'
    assert (await fetch(UserProfile, 'owner-1')).paid_earnings == Decimal('30')
    assert await available_balance('owner-1') == Decimal('70')

    with pytest.raises(PayoutNotPending):
        await approve_payout(payout.id, 'admin-1')

async def test_processing_unknown_payout_raises_not_found(db):
    with pytest.raises(NotFound):
        await approve_payout(404, 'admin-1')

async def test_request_payout_validations(db):
    await add_settings(minimum_payout=Decimal('10'))
    await add_user()
    await add_link(generated_earnings=Decimal('25'))

    with pytest.raises(InvalidAmount):
        await request_payout('owner-1', '5', 'paypal', 'me@example.com')
    with pytest.raises(InsufficientBalance):
        await request_payout('owner-1', '30', 'paypal', 'me@example.com')
    with pytest.raises(LedgerError):
        await request_payout('owner-1', '15', '', 'me@example.com')

    payout = await request_payout('owner-1', '15', 'paypal', 'me@example.com')

    assert payout.status == 'pending'
    assert await available_balance('owner-1') == Decimal('10')
    # The pending amount is reserved for the next request
    with pytest.raises(InsufficientBalance):
        await request_payout('owner-1', '15', 'paypal', 'me@example.com')

async def test_request_payout_when_disabled(db):
    await add_settings(payouts_enabled=True)
    await add_user()
    await add_link(generated_earnings=Decimal('25'))

    settings = await toggle_payouts('admin-1')
    assert settings.payouts_enabled is False

    with pytest.raises(PayoutsDisabled):
        await request_payout('owner-1', '15', 'paypal', 'me@example.com')

async def test_minimum_payout_is_configurable(db):
    await add_settings()
    await add_user()
    await add_link(generated_earnings=Decimal('25'))

    await update_minimum_payout('20', 'admin-1')

    with pytest.raises(InvalidAmount):
        await request_payout('owner-1', '15', 'paypal', 'me@example.com')

async def test_manual_adjustment_uses_separate_ledger(db):
    await add_user(paid_earnings=Decimal('10'))
    await add_link(generated_earnings=Decimal('10'))

    await add_balance('owner-1', '25', 'admin-1', note='bonus')
    await add_balance('owner-1', '-5', 'admin-1')

    summary = await get_balance_summary('owner-1')
    assert summary.adjustments == Decimal('20')
    assert summary.available == Decimal('20')
    assert (await fetch(UserProfile, 'owner-1')).paid_earnings == Decimal('10')

    with pytest.raises(NotFound):
        await add_balance('nobody', '5', 'admin-1')

async def test_payout_lifecycle_notifies_user(db):
    await add_settings()
    await add_user()
    await add_link(generated_earnings=Decimal('50'))

    payout = await request_payout('owner-1', '20', 'bank', 'IBAN 123')
    await approve_payout(payout.id, 'admin-1')

    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Notification.type).where(Notification.user_id == 'owner-1').order_by(Notification.id)
        )
        assert result.scalars().all() == ['payout_requested', 'payout_completed']
