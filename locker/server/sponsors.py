"""Sponsor placements: the per-link cap, expiration filtering and usage counters"""
from locker.database import AsyncSessionLocal
from locker.models import SponsorRule, Link
from locker.config import Monetization
from locker.modules.clock import utcnow, as_utc
from locker.server.error import InvalidSponsor, SponsorLimitReached, NotFound
from sqlalchemy import select, update, func, or_
from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse
from typing import Optional, Iterable
from logging import getLogger

logger = getLogger('locker.sponsors')

def is_expired(sponsor: SponsorRule, now: datetime) -> bool:
    expires_at = as_utc(sponsor.expires_at)
    return expires_at is not None and expires_at < now

def get_active_sponsors(sponsors: Iterable[SponsorRule], now: Optional[datetime] = None) -> list:
    """Active and not expired, in the given order"""
    now = now or utcnow()
    return [s for s in sponsors if s.is_active and not is_expired(s, now)]

def _active_clause(now: datetime):
    return (
        SponsorRule.is_active.is_(True),
        or_(SponsorRule.expires_at.is_(None), SponsorRule.expires_at >= now)
    )

async def count_active_sponsors(db_session, link_id: int, now: datetime) -> int:
    result = await db_session.execute(
        select(func.count(SponsorRule.id)).where(SponsorRule.link_id == link_id, *_active_clause(now))
    )
    return result.scalar() or 0

async def load_active_sponsors(db_session, link_id: int, now: Optional[datetime] = None) -> list:
    now = now or utcnow()
    result = await db_session.execute(
        select(SponsorRule)
        .where(SponsorRule.link_id == link_id, *_active_clause(now))
        .order_by(SponsorRule.created_at, SponsorRule.id)
    )
    return list(result.scalars().all())

async def can_add_sponsor(link_id: int, now: Optional[datetime] = None) -> bool:
    async with AsyncSessionLocal() as db_session:
        count = await count_active_sponsors(db_session, link_id, now or utcnow())
        return count < Monetization.MAX_ACTIVE_SPONSORS

def _parse_expiration(value) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        parsed = datetime.fromisoformat(str(value).strip())
    except ValueError:
        raise InvalidSponsor('Expiration date is not a valid date.')
    return as_utc(parsed)

def validate_sponsor(title, sponsor_url, expires_at, now: datetime):
    """Return cleaned (title, url, expires_at) or raise InvalidSponsor"""
    title = (title or '').strip()
    if not 3 <= len(title) <= 50:
        raise InvalidSponsor('Title must be between 3 and 50 characters.')

    sponsor_url = (sponsor_url or '').strip()
    parsed = urlparse(sponsor_url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise InvalidSponsor('Sponsor URL must be a valid http(s) URL.')

    expires_at = _parse_expiration(expires_at)
    if expires_at is not None:
        tomorrow = datetime.combine(now.astimezone(timezone.utc).date() + timedelta(days=1),
                                    datetime.min.time(), tzinfo=timezone.utc)
        if expires_at < tomorrow:
            raise InvalidSponsor('Expiration date must be tomorrow or later.')

    return title, sponsor_url, expires_at

async def _lock_link(db_session, link_id: int) -> Link:
    result = await db_session.execute(
        select(Link).where(Link.id == link_id, Link.is_deleted.is_(False)).with_for_update()
    )
    link = result.scalar_one_or_none()
    if not link:
        raise NotFound('Link not found.')
    return link

async def create_sponsor(link_id: int, title: str, sponsor_url: str, expires_at=None,
                         admin_id: Optional[str] = None, now: Optional[datetime] = None) -> SponsorRule:
    """
    Count-and-insert under a lock on the link row, so concurrent admins on
    PostgreSQL cannot push a link past the cap. Backends without row locks
    are corrected later by reconcile_sponsor_limits.
    """
    now = now or utcnow()
    title, sponsor_url, expires_at = validate_sponsor(title, sponsor_url, expires_at, now)

    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            await _lock_link(db_session, link_id)

            if await count_active_sponsors(db_session, link_id, now) >= Monetization.MAX_ACTIVE_SPONSORS:
                raise SponsorLimitReached(
                    f"Maximum of {Monetization.MAX_ACTIVE_SPONSORS} active sponsors per link reached."
                )

            sponsor = SponsorRule(
                link_id=link_id,
                title=title,
                sponsor_url=sponsor_url,
                is_active=True,
                created_at=now,
                expires_at=expires_at,
                views=0,
                clicks=0
            )
            db_session.add(sponsor)

    logger.info(f"Sponsor {sponsor.id} added to link {link_id} by admin {admin_id}")
    return sponsor

async def set_sponsor_active(sponsor_id: int, active: bool, now: Optional[datetime] = None) -> SponsorRule:
    """Activating counts against the cap exactly like creating"""
    now = now or utcnow()
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            result = await db_session.execute(select(SponsorRule).where(SponsorRule.id == sponsor_id))
            sponsor = result.scalar_one_or_none()
            if not sponsor:
                raise NotFound('Sponsor not found.')

            if active and not sponsor.is_active:
                await _lock_link(db_session, sponsor.link_id)
                if await count_active_sponsors(db_session, sponsor.link_id, now) >= Monetization.MAX_ACTIVE_SPONSORS:
                    raise SponsorLimitReached(
                        f"Maximum of {Monetization.MAX_ACTIVE_SPONSORS} active sponsors per link reached."
                    )

            sponsor.is_active = active

    return sponsor

async def list_sponsors(link_id: Optional[int] = None):
    async with AsyncSessionLocal() as db_session:
        query = select(SponsorRule).order_by(SponsorRule.created_at.desc(), SponsorRule.id.desc())
        if link_id is not None:
            query = query.where(SponsorRule.link_id == link_id)
        result = await db_session.execute(query)
        return result.scalars().all()

async def record_sponsor_views(sponsor_ids: Iterable[int]) -> None:
    """Best-effort view counter bump for sponsors shown in a gate"""
    sponsor_ids = list(sponsor_ids)
    if not sponsor_ids:
        return
    try:
        async with AsyncSessionLocal() as db_session:
            async with db_session.begin():
                await db_session.execute(
                    update(SponsorRule)
                    .where(SponsorRule.id.in_(sponsor_ids))
                    .values(views=SponsorRule.views + 1)
                )
    except Exception as e:
        logger.error(f"Failed to record sponsor views for {sponsor_ids}: {e}")

async def record_sponsor_click(sponsor_id: int) -> None:
    try:
        async with AsyncSessionLocal() as db_session:
            async with db_session.begin():
                await db_session.execute(
                    update(SponsorRule)
                    .where(SponsorRule.id == sponsor_id)
                    .values(clicks=SponsorRule.clicks + 1)
                )
    except Exception as e:
        logger.error(f"Failed to record click for sponsor {sponsor_id}: {e}")

async def reconcile_sponsor_limits(now: Optional[datetime] = None) -> int:
    """Deactivate the newest surplus sponsors on any link above the cap"""
    now = now or utcnow()
    deactivated = 0
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            result = await db_session.execute(
                select(SponsorRule.link_id)
                .where(*_active_clause(now))
                .group_by(SponsorRule.link_id)
                .having(func.count(SponsorRule.id) > Monetization.MAX_ACTIVE_SPONSORS)
            )
            for link_id in result.scalars().all():
                active = await load_active_sponsors(db_session, link_id, now)
                for sponsor in active[Monetization.MAX_ACTIVE_SPONSORS:]:
                    sponsor.is_active = False
                    deactivated += 1
                    logger.warning(f"Deactivated surplus sponsor {sponsor.id} on link {link_id}")
    return deactivated
