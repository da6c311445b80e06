"""
One monetized view per visitor per window.

The visitor is tracked twice: a cookie holding the epoch-millis of their last
monetized view, and a server-side GlobalVisit row keyed by IP. The more recent
of the two decides. An unknown IP fails open so the cookie is the only signal.
"""
from locker.database import AsyncSessionLocal
from locker.models import GlobalVisit
from locker.config import Monetization
from sqlalchemy import select, delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from typing import Optional
from logging import getLogger

logger = getLogger('locker.abuse_guard')

WINDOW_REASON = 'visit within 30min window'

def parse_cookie_timestamp(raw) -> Optional[int]:
    if raw is None:
        return None
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None

def latest_visit(cookie_ms: Optional[int], server_ms: Optional[int]) -> Optional[int]:
    known = [ts for ts in (cookie_ms, server_ms) if ts is not None]
    return max(known) if known else None

def window_open(cookie_ms: Optional[int], server_ms: Optional[int], now: int,
                window_ms: int = None) -> bool:
    """True iff neither signal saw a monetized view within the window"""
    window_ms = Monetization.ABUSE_WINDOW_MS if window_ms is None else window_ms
    last = latest_visit(cookie_ms, server_ms)
    return last is None or now - last >= window_ms

async def server_timestamp(db_session, ip: Optional[str]) -> Optional[int]:
    if not ip:
        return None
    result = await db_session.execute(
        select(GlobalVisit.last_visit).where(GlobalVisit.ip == ip)
    )
    return result.scalar_one_or_none()

async def can_monetize(db_session, ip: Optional[str], cookie_ms: Optional[int], now: int) -> bool:
    """Read-only check; consume_window is what the click transaction uses"""
    if not window_open(cookie_ms, None, now):
        return False
    if not ip:
        return True
    return window_open(cookie_ms, await server_timestamp(db_session, ip), now)

def _dialect_insert(db_session):
    name = db_session.get_bind().dialect.name
    if name == 'postgresql':
        return pg_insert
    if name == 'sqlite':
        return sqlite_insert
    return None

async def consume_window(db_session, ip: Optional[str], cookie_ms: Optional[int], now: int) -> bool:
    """
    Check the window and claim it in one step, inside the caller's transaction.

    Returns True when the view may be monetized; in that case the IP record now
    holds `now`. Returns False without writing anything otherwise. Concurrent
    callers for the same IP cannot both get True: the conditional upsert only
    touches a row whose last_visit is outside the window.
    """
    if not window_open(cookie_ms, None, now):
        return False

    if not ip:
        logger.warning("Visitor IP unknown, abuse window falls back to cookie only")
        return True

    threshold = now - Monetization.ABUSE_WINDOW_MS
    insert = _dialect_insert(db_session)

    if insert is not None:
        statement = insert(GlobalVisit).values(ip=ip, last_visit=now)
        statement = statement.on_conflict_do_update(
            index_elements=[GlobalVisit.ip],
            set_={'last_visit': statement.excluded.last_visit},
            where=GlobalVisit.last_visit <= threshold
        ).returning(GlobalVisit.ip)
        result = await db_session.execute(statement)
        return result.first() is not None

    # Generic backends: lock the row and decide in the same transaction
    result = await db_session.execute(
        select(GlobalVisit).where(GlobalVisit.ip == ip).with_for_update()
    )
    record = result.scalar_one_or_none()
    if record is None:
        db_session.add(GlobalVisit(ip=ip, last_visit=now))
        await db_session.flush()
        return True
    if record.last_visit > threshold:
        return False
    record.last_visit = now
    return True

async def purge_stale_visits(now: int) -> int:
    """Delete IP records that can no longer block monetization"""
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            result = await db_session.execute(
                delete(GlobalVisit).where(GlobalVisit.last_visit < now - Monetization.ABUSE_WINDOW_MS)
            )
            return result.rowcount
