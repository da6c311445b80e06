from locker.database import AsyncSessionLocal
from locker.models import Link, ClickEvent, UserProfile
from locker.config import Monetization
from locker.modules.clock import now_ms
from locker.server.rates import resolve_rate
from locker.server.abuse_guard import consume_window, WINDOW_REASON
from locker.server.notifications import notify, MILESTONE
from sqlalchemy import select, update
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from logging import getLogger

logger = getLogger('locker.clicks')

EARNINGS_PLACES = Decimal('0.00000001')

NOT_MONETIZABLE_REASON = 'link not monetizable'
SUSPENDED_REASON = 'link monetization suspended'
OWNER_SUSPENDED_REASON = 'owner account suspended'
OWNER_MISSING_REASON = 'owner profile missing'
PAUSED_REASON = 'monetization paused'

@dataclass
class ClickOutcome:
    click_event_id: int
    link_id: int
    clicks: int
    monetized: bool
    cpm_used: Decimal
    earnings: Decimal
    reason: Optional[str]

def ineligibility_reason(link: Link, owner: Optional[UserProfile]) -> Optional[str]:
    """Why the link itself cannot earn right now, independent of the visitor"""
    if not link.monetizable:
        return NOT_MONETIZABLE_REASON
    if link.monetization_status == 'suspended':
        return SUSPENDED_REASON
    if owner is None:
        return OWNER_MISSING_REASON
    if owner.account_status == 'suspended':
        return OWNER_SUSPENDED_REASON
    return None

def earnings_for_rate(rate: Decimal) -> Decimal:
    return (Decimal(rate) / Decimal(1000)).quantize(EARNINGS_PLACES)

async def record_click(link_id: int, visitor_ip: Optional[str], user_agent: Optional[str],
                       cookie_ms: Optional[int] = None, country_code: Optional[str] = None,
                       now: Optional[int] = None, gate_session_id: Optional[int] = None) -> Optional[ClickOutcome]:
    """
    Count one completed visit.

    The click counter, the earnings accumulator, the abuse-window claim,
    the ClickEvent row and any milestone notification are written in one
    transaction. Failures are logged and None is returned; callers must
    still redirect the visitor.
    """
    now = now if now is not None else now_ms()

    try:
        async with AsyncSessionLocal() as db_session:
            async with db_session.begin():
                result = await db_session.execute(
                    select(Link).where(Link.id == link_id, Link.is_deleted.is_(False))
                )
                link = result.scalar_one_or_none()
                if not link:
                    logger.warning(f"Click for missing or deleted link {link_id} ignored")
                    return None

                owner = await db_session.get(UserProfile, link.owner_id)
                reason = ineligibility_reason(link, owner)

                rate = Decimal('0')
                earnings = Decimal('0')

                # Rate is resolved at click time, before the window is claimed
                if reason is None:
                    rate = await resolve_rate(db_session, owner)
                    if rate <= 0:
                        reason = PAUSED_REASON

                if reason is None:
                    if await consume_window(db_session, visitor_ip, cookie_ms, now):
                        earnings = earnings_for_rate(rate)
                    else:
                        reason = WINDOW_REASON

                monetized = reason is None
                if not monetized:
                    rate = Decimal('0')

                result = await db_session.execute(
                    update(Link)
                    .where(Link.id == link.id)
                    .values(
                        clicks=Link.clicks + 1,
                        generated_earnings=Link.generated_earnings + earnings
                    )
                    .returning(Link.clicks)
                )
                clicks = result.scalar_one()

                event = ClickEvent(
                    link_id=link.id,
                    owner_id=link.owner_id,
                    visitor_ip=visitor_ip,
                    user_agent=(user_agent or '')[:1024] or None,
                    country_code=country_code,
                    cpm_used=rate,
                    earnings_generated=earnings,
                    monetized=monetized,
                    reason=reason,
                    gate_session_id=gate_session_id
                )
                db_session.add(event)

                if clicks % Monetization.MILESTONE_INTERVAL == 0:
                    notify(
                        db_session,
                        link.owner_id,
                        MILESTONE,
                        f'Your link "{link.title}" reached {clicks:,} visits!',
                        link_id=link.id
                    )

                await db_session.flush()
                event_id = event.id

        if monetized:
            logger.info(f"Monetized click on link {link_id}: cpm {rate}, earnings {earnings}")
        else:
            logger.info(f"Click on link {link_id} not monetized: {reason}")

        return ClickOutcome(
            click_event_id=event_id,
            link_id=link_id,
            clicks=clicks,
            monetized=monetized,
            cpm_used=rate,
            earnings=earnings,
            reason=reason
        )
    except Exception as e:
        logger.error(f"Failed to record click for link {link_id} from {visitor_ip}: {e}")
        return None
