"""
Available balance and the payout ledger.

The balance is never stored. It is derived on every read as

    sum(links.generated_earnings) - paid_earnings - pending payouts + adjustments

where paid_earnings only grows through payout approval and manual admin
corrections live in their own signed BalanceAdjustment ledger.
"""
from locker.database import AsyncSessionLocal
from locker.models import Link, ClickEvent, UserProfile, PayoutRequest, BalanceAdjustment, Settings
from locker.config import Monetization
from locker.modules.clock import utcnow
from locker.server.error import (
    InvalidAmount, InsufficientBalance, PayoutsDisabled, PayoutNotPending, NotFound, LedgerError
)
from locker.server.notifications import notify, PAYOUT_REQUESTED, PAYOUT_COMPLETED, PAYOUT_REJECTED
from sqlalchemy import select, update, func
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional
from logging import getLogger

logger = getLogger('locker.ledger')

AMOUNT_PLACES = Decimal('0.01')
ZERO = Decimal('0')

@dataclass
class BalanceSummary:
    user_id: str
    generated: Decimal
    paid: Decimal
    pending: Decimal
    adjustments: Decimal

    @property
    def available(self) -> Decimal:
        return self.generated - self.paid - self.pending + self.adjustments

    def to_dict(self):
        return {
            'generated_earnings': f'{self.generated:.8f}',
            'paid_earnings': f'{self.paid:.8f}',
            'pending_payouts': f'{self.pending:.8f}',
            'adjustments': f'{self.adjustments:.8f}',
            'available_balance': f'{self.available:.8f}'
        }

@dataclass
class EarningsAudit:
    link_id: int
    accumulated: Decimal
    from_events: Decimal
    clicks: int
    events: int

    @property
    def drift(self) -> Decimal:
        return self.accumulated - self.from_events

    @property
    def consistent(self) -> bool:
        return self.drift == 0 and self.clicks == self.events

def parse_amount(value, allow_negative: bool = False) -> Decimal:
    """Parse a money amount entered by a user or admin; zero is never valid"""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount('Amount must be a number.')
    if not amount.is_finite():
        raise InvalidAmount('Amount must be a number.')
    amount = amount.quantize(AMOUNT_PLACES)
    if amount == 0 or (amount < 0 and not allow_negative):
        raise InvalidAmount('Amount must be greater than zero.')
    return amount

def _sum(column):
    return func.coalesce(func.sum(column), ZERO)

async def compute_balance(db_session, user: UserProfile) -> BalanceSummary:
    # Logically deleted links keep the earnings they already accrued
    generated = await db_session.scalar(
        select(_sum(Link.generated_earnings)).where(Link.owner_id == user.id)
    )
    pending = await db_session.scalar(
        select(_sum(PayoutRequest.amount)).where(
            PayoutRequest.user_id == user.id,
            PayoutRequest.status == 'pending'
        )
    )
    adjustments = await db_session.scalar(
        select(_sum(BalanceAdjustment.amount)).where(BalanceAdjustment.user_id == user.id)
    )
    return BalanceSummary(
        user_id=user.id,
        generated=Decimal(generated or 0),
        paid=Decimal(user.paid_earnings or 0),
        pending=Decimal(pending or 0),
        adjustments=Decimal(adjustments or 0)
    )

async def get_balance_summary(user_id: str) -> BalanceSummary:
    async with AsyncSessionLocal() as db_session:
        user = await db_session.get(UserProfile, user_id)
        if not user:
            raise NotFound('User not found.')
        return await compute_balance(db_session, user)

async def available_balance(user_id: str) -> Decimal:
    return (await get_balance_summary(user_id)).available

async def get_settings(db_session, for_update: bool = False) -> Settings:
    query = select(Settings).order_by(Settings.id).limit(1)
    if for_update:
        query = query.with_for_update()
    result = await db_session.execute(query)
    settings = result.scalar_one_or_none()
    if not settings:
        settings = Settings(minimum_payout=Monetization.DEFAULT_MINIMUM_PAYOUT, payouts_enabled=True)
        db_session.add(settings)
        await db_session.flush()
    return settings

async def request_payout(user_id: str, amount, method: str, details: str) -> PayoutRequest:
    amount = parse_amount(amount)
    method = (method or '').strip()
    details = (details or '').strip()
    if not method or not details:
        raise LedgerError('Payout method and details are required.')

    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            settings = await get_settings(db_session)
            if not settings.payouts_enabled:
                raise PayoutsDisabled()

            # Lock the user so concurrent requests see each other's pending amounts
            result = await db_session.execute(
                select(UserProfile).where(UserProfile.id == user_id).with_for_update()
            )
            user = result.scalar_one_or_none()
            if not user:
                raise NotFound('User not found.')

            minimum = Decimal(settings.minimum_payout)
            if amount < minimum:
                raise InvalidAmount(f'Minimum payout amount is ${minimum:.2f}.')

            summary = await compute_balance(db_session, user)
            if amount > summary.available:
                raise InsufficientBalance(f'Insufficient balance. Available: ${summary.available:.2f}.')

            payout = PayoutRequest(
                user_id=user.id,
                amount=amount,
                method=method[:50],
                details=details,
                status='pending',
                requested_at=utcnow()
            )
            db_session.add(payout)
            notify(db_session, user.id, PAYOUT_REQUESTED,
                   f'Your payout request of ${amount:.2f} via {method} has been submitted.')

    logger.info(f"Payout of {amount} requested by user {user_id}")
    return payout

async def _processed_payout(db_session, payout_id: int, status: str, admin_id: str) -> PayoutRequest:
    """Flip a pending request to a terminal status; only one caller can win"""
    result = await db_session.execute(
        update(PayoutRequest)
        .where(PayoutRequest.id == payout_id, PayoutRequest.status == 'pending')
        .values(status=status, processed_at=utcnow(), processed_by=admin_id)
        .execution_options(synchronize_session=False)
    )
    payout = (await db_session.execute(
        select(PayoutRequest)
        .where(PayoutRequest.id == payout_id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()

    if result.rowcount != 1:
        if payout is None:
            raise NotFound('Payout request not found.')
        raise PayoutNotPending(f'Payout request is already {payout.status}.')
    return payout

async def approve_payout(payout_id: int, admin_id: str) -> PayoutRequest:
    """Mark the request completed and credit paid_earnings in the same transaction"""
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            payout = await _processed_payout(db_session, payout_id, 'completed', admin_id)
            await db_session.execute(
                update(UserProfile)
                .where(UserProfile.id == payout.user_id)
                .values(paid_earnings=UserProfile.paid_earnings + payout.amount)
                .execution_options(synchronize_session=False)
            )
            notify(db_session, payout.user_id, PAYOUT_COMPLETED,
                   f'Your payout of ${payout.amount:.2f} has been completed.')

    logger.info(f"Payout {payout_id} of {payout.amount} approved by admin {admin_id}")
    return payout

async def reject_payout(payout_id: int, admin_id: str) -> PayoutRequest:
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            payout = await _processed_payout(db_session, payout_id, 'rejected', admin_id)
            notify(db_session, payout.user_id, PAYOUT_REJECTED,
                   f'Your payout request of ${payout.amount:.2f} was rejected. The amount is available again.')

    logger.info(f"Payout {payout_id} rejected by admin {admin_id}")
    return payout

async def add_balance(user_id: str, amount, admin_id: str, note: Optional[str] = None) -> BalanceAdjustment:
    """Signed manual correction; positive credits the user, negative deducts"""
    amount = parse_amount(amount, allow_negative=True)

    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            user = await db_session.get(UserProfile, user_id)
            if not user:
                raise NotFound('User not found.')
            adjustment = BalanceAdjustment(
                user_id=user.id,
                amount=amount,
                note=(note or '').strip() or None,
                admin_id=admin_id,
                created_at=utcnow()
            )
            db_session.add(adjustment)

    logger.info(f"Balance adjustment of {amount} for user {user_id} by admin {admin_id}")
    return adjustment

async def list_payouts(status: Optional[str] = None, user_id: Optional[str] = None):
    async with AsyncSessionLocal() as db_session:
        query = select(PayoutRequest).order_by(PayoutRequest.requested_at.desc(), PayoutRequest.id.desc())
        if status and status != 'all':
            query = query.where(PayoutRequest.status == status)
        if user_id:
            query = query.where(PayoutRequest.user_id == user_id)
        result = await db_session.execute(query)
        return result.scalars().all()

async def payout_settings():
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            return await get_settings(db_session)

async def update_minimum_payout(value, admin_id: str) -> Settings:
    minimum = parse_amount(value)
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            settings = await get_settings(db_session, for_update=True)
            settings.minimum_payout = minimum
    logger.info(f"Minimum payout set to {minimum} by admin {admin_id}")
    return settings

async def toggle_payouts(admin_id: str) -> Settings:
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            settings = await get_settings(db_session, for_update=True)
            settings.payouts_enabled = not settings.payouts_enabled
    status = "enabled" if settings.payouts_enabled else "disabled"
    logger.info(f"Payout requests {status} by admin {admin_id}")
    return settings

async def audit_link_earnings(link_id: int) -> EarningsAudit:
    """Compare a link's accumulators with its ClickEvent log"""
    async with AsyncSessionLocal() as db_session:
        link = await db_session.get(Link, link_id)
        if not link:
            raise NotFound('Link not found.')
        from_events = await db_session.scalar(
            select(_sum(ClickEvent.earnings_generated)).where(ClickEvent.link_id == link_id)
        )
        events = await db_session.scalar(
            select(func.count(ClickEvent.id)).where(ClickEvent.link_id == link_id)
        )
        return EarningsAudit(
            link_id=link_id,
            accumulated=Decimal(link.generated_earnings or 0),
            from_events=Decimal(from_events or 0),
            clicks=link.clicks or 0,
            events=events or 0
        )
