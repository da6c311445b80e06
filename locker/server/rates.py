"""Effective CPM resolution and global/custom rate management"""
from locker.database import AsyncSessionLocal
from locker.models import CpmPeriod, UserProfile, Settings
from locker.config import Monetization
from locker.modules.clock import utcnow
from locker.server.error import InvalidAmount, NotFound
from locker.server.notifications import notify, notify_all_users, CUSTOM_CPM_SET, GLOBAL_CPM_CHANGED
from sqlalchemy import select, update
from decimal import Decimal, InvalidOperation
from typing import Optional
from logging import getLogger

logger = getLogger('locker.rates')

RATE_PLACES = Decimal('0.0001')

def parse_rate(value, allow_zero: bool = True) -> Optional[Decimal]:
    """
    Parse an admin-entered CPM.

    Returns None for an empty value, or for zero when allow_zero is False
    (a zero custom CPM means "use the global rate").
    Raises InvalidAmount for negative or non-numeric input.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        rate = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount('CPM must be a number.')
    if not rate.is_finite() or rate < 0:
        raise InvalidAmount('CPM must be zero or a positive number.')
    if rate == 0 and not allow_zero:
        return None
    return rate.quantize(RATE_PLACES)

async def get_active_period(db_session) -> Optional[CpmPeriod]:
    result = await db_session.execute(
        select(CpmPeriod)
        .where(CpmPeriod.ended_at.is_(None))
        .order_by(CpmPeriod.started_at.desc(), CpmPeriod.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()

async def resolve_rate(db_session, owner: Optional[UserProfile]) -> Decimal:
    """
    Per-mille rate for a click on a link owned by `owner`.
    Custom CPM (> 0) wins, then the active global period, then DEFAULT_CPM.
    """
    if owner is not None and owner.custom_cpm is not None and owner.custom_cpm > 0:
        logger.debug(f"Using custom CPM {owner.custom_cpm} for user {owner.id}")
        return Decimal(owner.custom_cpm)

    period = await get_active_period(db_session)
    if period is not None:
        return Decimal(period.rate)

    return Monetization.DEFAULT_CPM

async def current_global_rate() -> Decimal:
    async with AsyncSessionLocal() as db_session:
        period = await get_active_period(db_session)
        return Decimal(period.rate) if period is not None else Monetization.DEFAULT_CPM

async def open_cpm_period(rate: Decimal, admin_id: str) -> CpmPeriod:
    """Close the active global period and open a new one in the same transaction"""
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            # Serialize concurrent rate changes on the settings row
            await db_session.execute(select(Settings).with_for_update())

            now = utcnow()
            await db_session.execute(
                update(CpmPeriod)
                .where(CpmPeriod.ended_at.is_(None))
                .values(ended_at=now)
            )
            period = CpmPeriod(rate=rate, started_at=now, created_by=admin_id)
            db_session.add(period)

            if rate > 0:
                message = (f"The global CPM rate has been updated to ${rate:.4f}. "
                           f"Your earnings will now reflect this new rate.")
            else:
                message = ("The global CPM rate has been set to $0.00. "
                           "Monetization is temporarily paused.")
            await notify_all_users(db_session, GLOBAL_CPM_CHANGED, message)

    logger.info(f"Global CPM set to {rate} by admin {admin_id}")
    return period

async def cpm_history(limit: int = 100):
    async with AsyncSessionLocal() as db_session:
        result = await db_session.execute(
            select(CpmPeriod).order_by(CpmPeriod.started_at.desc(), CpmPeriod.id.desc()).limit(limit)
        )
        return result.scalars().all()

async def set_custom_cpm(user_id: str, rate: Optional[Decimal], admin_id: str) -> UserProfile:
    """Set or clear (rate None) a user's CPM override and tell them about it"""
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            result = await db_session.execute(
                select(UserProfile).where(UserProfile.id == user_id).with_for_update()
            )
            user = result.scalar_one_or_none()
            if not user:
                raise NotFound('User not found.')

            user.custom_cpm = rate
            if rate is not None:
                message = f"Your CPM rate has been updated to ${rate:.4f}!"
            else:
                message = "Your custom CPM rate has been removed. You are now on the global rate."
            notify(db_session, user.id, CUSTOM_CPM_SET, message)

    logger.info(f"Custom CPM for user {user_id} set to {rate} by admin {admin_id}")
    return user
