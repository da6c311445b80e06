"""
Gate state machine.

Every item (rule or sponsor) moves pending -> loading when the visitor opens
it and loading -> completed once the dwell time has passed; it never moves
back. When every required item is completed the gate enters a fixed
countdown, after which the final continue is allowed. All timestamps are
taken by the server and stored on the GateSession, so the visitor's clock is
never trusted.
"""
from locker.database import AsyncSessionLocal
from locker.models import GateSession, Link
from locker.config import Monetization
from locker.modules.clock import now_ms
from locker.server.sponsors import load_active_sponsors, record_sponsor_views, record_sponsor_click
from sqlalchemy import select, update, delete
from dataclasses import dataclass, field
from secrets import token_urlsafe
from typing import Optional, Iterable
from logging import getLogger

logger = getLogger('locker.gate')

PENDING = 'pending'
LOADING = 'loading'
COMPLETED = 'completed'

STEP_RULES = 'rules'
STEP_COUNTDOWN = 'countdown'
STEP_READY = 'ready'

# Continue decisions
RECORD = 'record'
SKIP = 'skip'
NOT_READY = 'not_ready'

class GateItemError(ValueError):
    pass

@dataclass(frozen=True)
class GateTimings:
    dwell_ms: int
    countdown_ms: int
    min_gate_ms: int

    @classmethod
    def from_config(cls):
        return cls(
            dwell_ms=Monetization.ITEM_DWELL_SECONDS * 1000,
            countdown_ms=Monetization.COUNTDOWN_SECONDS * 1000,
            min_gate_ms=Monetization.MIN_GATE_SECONDS * 1000
        )

@dataclass
class GateSnapshot:
    step: str
    items: dict = field(default_factory=dict)
    required: list = field(default_factory=list)
    countdown_started_ms: Optional[int] = None
    ready_at_ms: Optional[int] = None
    countdown_remaining_ms: Optional[int] = None

    def to_dict(self):
        return {
            'step': self.step,
            'items': self.items,
            'required': self.required,
            'countdown_remaining_ms': self.countdown_remaining_ms
        }

@dataclass
class GateCompletion:
    decision: str
    link_id: int
    destination_url: str
    gate_session_id: int
    elapsed_ms: int

def rule_key(index: int) -> str:
    return f'rule:{index}'

def sponsor_key(sponsor_id: int) -> str:
    return f'sponsor:{sponsor_id}'

def item_state(opened_at: Optional[int], now: int, dwell_ms: int) -> str:
    if opened_at is None:
        return PENDING
    if now - opened_at < dwell_ms:
        return LOADING
    return COMPLETED

def evaluate(required_keys: Iterable[str], opened: dict, started_at: int, now: int,
             timings: GateTimings) -> GateSnapshot:
    required = list(required_keys)
    items = {key: item_state(opened.get(key), now, timings.dwell_ms) for key in required}

    if any(state != COMPLETED for state in items.values()):
        return GateSnapshot(step=STEP_RULES, items=items, required=required)

    # The countdown starts when the last required item completed
    countdown_started = max((opened[key] + timings.dwell_ms for key in required), default=started_at)
    ready_at = countdown_started + timings.countdown_ms
    remaining = max(ready_at - now, 0)

    return GateSnapshot(
        step=STEP_READY if remaining == 0 else STEP_COUNTDOWN,
        items=items,
        required=required,
        countdown_started_ms=countdown_started,
        ready_at_ms=ready_at,
        countdown_remaining_ms=remaining
    )

def open_item(opened: dict, key: str, allowed_keys: Iterable[str], now: int) -> dict:
    """Return the new opened-map; re-opening an item keeps its first timestamp"""
    if key not in set(allowed_keys):
        raise GateItemError(f'Unknown gate item: {key}')
    if key in opened:
        return dict(opened)
    updated = dict(opened)
    updated[key] = now
    return updated

def decide_continue(snapshot: GateSnapshot, started_at: int, now: int, timings: GateTimings) -> str:
    """
    Continue is only available once every item is completed and the countdown
    has run out. A ready gate finished faster than the minimum gate time is
    redirected without being counted.
    """
    if snapshot.step != STEP_READY:
        return NOT_READY
    if now - started_at < timings.min_gate_ms:
        return SKIP
    return RECORD

def rule_keys(link: Link) -> list:
    return [rule_key(index) for index in range(len(link.rules or []))]

async def _required_keys(db_session, link: Link, gate_session: GateSession) -> list:
    """All rules plus presented sponsors that are still active and unexpired"""
    active_ids = {s.id for s in await load_active_sponsors(db_session, link.id)}
    sponsors = [sponsor_key(sid) for sid in (gate_session.sponsor_ids or []) if sid in active_ids]
    return rule_keys(link) + sponsors

async def _load(db_session, token: str, for_update: bool = False):
    query = select(GateSession).where(GateSession.token == token)
    if for_update:
        query = query.with_for_update()
    result = await db_session.execute(query)
    gate_session = result.scalar_one_or_none()
    if not gate_session:
        return None, None

    result = await db_session.execute(
        select(Link).where(Link.id == gate_session.link_id, Link.is_deleted.is_(False))
    )
    link = result.scalar_one_or_none()
    if not link:
        return None, None
    return gate_session, link

async def start_gate(link: Link, visitor_ip: Optional[str], now: Optional[int] = None):
    """Issue a gate session for a link; returns (gate_session, sponsors shown)"""
    now = now if now is not None else now_ms()

    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            sponsors = await load_active_sponsors(db_session, link.id)
            gate_session = GateSession(
                token=token_urlsafe(24),
                link_id=link.id,
                visitor_ip=visitor_ip,
                started_at_ms=now,
                sponsor_ids=[s.id for s in sponsors],
                opened={}
            )
            db_session.add(gate_session)

    await record_sponsor_views(s.id for s in sponsors)
    return gate_session, sponsors

async def gate_status(token: str, now: Optional[int] = None, timings: Optional[GateTimings] = None):
    """Returns (gate_session, link, snapshot) or (None, None, None)"""
    now = now if now is not None else now_ms()
    timings = timings or GateTimings.from_config()

    async with AsyncSessionLocal() as db_session:
        gate_session, link = await _load(db_session, token)
        if not gate_session:
            return None, None, None
        required = await _required_keys(db_session, link, gate_session)
        snapshot = evaluate(required, gate_session.opened or {}, gate_session.started_at_ms, now, timings)
        return gate_session, link, snapshot

async def open_gate_item(token: str, key: str, now: Optional[int] = None,
                         timings: Optional[GateTimings] = None) -> Optional[GateSnapshot]:
    """Move an item from pending to loading; returns the new snapshot or None if the gate is unknown"""
    now = now if now is not None else now_ms()
    timings = timings or GateTimings.from_config()
    newly_opened_sponsor = None

    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            gate_session, link = await _load(db_session, token, for_update=True)
            if not gate_session:
                return None
            if gate_session.consumed_at_ms is not None:
                raise GateItemError('Gate already completed')

            required = await _required_keys(db_session, link, gate_session)
            opened = gate_session.opened or {}
            updated = open_item(opened, key, required, now)
            if key not in opened:
                # Reassign so the JSON column is flagged dirty
                gate_session.opened = updated
                if key.startswith('sponsor:'):
                    newly_opened_sponsor = int(key.split(':', 1)[1])

            snapshot = evaluate(required, updated, gate_session.started_at_ms, now, timings)

    if newly_opened_sponsor is not None:
        await record_sponsor_click(newly_opened_sponsor)
    return snapshot

async def complete_gate(token: str, now: Optional[int] = None,
                        timings: Optional[GateTimings] = None) -> Optional[GateCompletion]:
    """
    Final continue. Consumes the gate session exactly once unless the gate is
    not ready yet; a replayed token is redirected but never counted again.
    """
    now = now if now is not None else now_ms()
    timings = timings or GateTimings.from_config()

    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            gate_session, link = await _load(db_session, token)
            if not gate_session:
                return None

            required = await _required_keys(db_session, link, gate_session)
            snapshot = evaluate(required, gate_session.opened or {}, gate_session.started_at_ms, now, timings)
            decision = decide_continue(snapshot, gate_session.started_at_ms, now, timings)
            elapsed = now - gate_session.started_at_ms

            if decision != NOT_READY:
                result = await db_session.execute(
                    update(GateSession)
                    .where(GateSession.id == gate_session.id, GateSession.consumed_at_ms.is_(None))
                    .values(consumed_at_ms=now)
                )
                if result.rowcount != 1:
                    logger.info(f"Gate session {gate_session.id} already consumed, not counting again")
                    decision = SKIP

    if decision == SKIP and elapsed < timings.min_gate_ms:
        logger.info(f"Gate for link {link.id} completed in {elapsed}ms, below threshold; click not counted")

    return GateCompletion(
        decision=decision,
        link_id=link.id,
        destination_url=link.destination_url,
        gate_session_id=gate_session.id,
        elapsed_ms=elapsed
    )

async def purge_stale_gate_sessions(now: Optional[int] = None) -> int:
    now = now if now is not None else now_ms()
    cutoff = now - Monetization.GATE_SESSION_TTL_HOURS * 3600 * 1000
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            result = await db_session.execute(
                delete(GateSession).where(GateSession.started_at_ms < cutoff)
            )
            return result.rowcount
