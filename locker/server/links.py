from locker.database import AsyncSessionLocal, generate_unique_short_code
from locker.models import Link
from locker.config import Monetization
from locker.modules.clock import utcnow
from locker.server.error import InvalidLink, NotFound
from locker.server.notifications import notify, LINK_SUSPENSION, LINK_DELETED
from sqlalchemy import select
from urllib.parse import urlparse
from typing import Optional
from logging import getLogger

logger = getLogger('locker.links')

RULE_TYPES = ('like', 'comment', 'subscribe', 'follow', 'visit')

def _valid_url(value: str) -> bool:
    parsed = urlparse(value or '')
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)

def validate_rules(rules) -> list:
    if rules is None:
        return []
    if not isinstance(rules, list):
        raise InvalidLink('Rules must be a list.')

    cleaned = []
    for index, rule in enumerate(rules):
        if not isinstance(rule, dict):
            raise InvalidLink(f'Rule {index + 1} is invalid.')
        rule_type = (rule.get('type') or '').strip()
        url = (rule.get('url') or '').strip()
        if rule_type not in RULE_TYPES:
            raise InvalidLink(f'Rule {index + 1} has an unknown type.')
        if not _valid_url(url):
            raise InvalidLink(f'Rule {index + 1} needs a valid http(s) URL.')
        cleaned.append({'type': rule_type, 'url': url})
    return cleaned

def is_monetizable(rules: list) -> bool:
    return len(rules) >= Monetization.MONETIZABLE_RULE_COUNT

async def create_link(owner_id: str, destination_url: str, title: str,
                      description: Optional[str] = None, rules=None) -> Link:
    destination_url = (destination_url or '').strip()
    title = (title or '').strip()
    if not _valid_url(destination_url):
        raise InvalidLink('Destination must be a valid http(s) URL.')
    if not title or len(title) > 255:
        raise InvalidLink('Title is required (max 255 characters).')
    rules = validate_rules(rules)

    short_code = await generate_unique_short_code()

    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            link = Link(
                owner_id=owner_id,
                destination_url=destination_url,
                short_code=short_code,
                title=title,
                description=(description or '').strip() or None,
                rules=rules,
                monetizable=is_monetizable(rules),
                monetization_status='active',
                clicks=0,
                generated_earnings=0,
                created_at=utcnow()
            )
            db_session.add(link)

    logger.info(f"Link {short_code} created by user {owner_id}")
    return link

async def update_link_rules(link_id: int, owner_id: str, rules) -> Link:
    rules = validate_rules(rules)
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            result = await db_session.execute(
                select(Link).where(
                    Link.id == link_id,
                    Link.owner_id == owner_id,
                    Link.is_deleted.is_(False)
                ).with_for_update()
            )
            link = result.scalar_one_or_none()
            if not link:
                raise NotFound('Link not found.')
            link.rules = rules
            link.monetizable = is_monetizable(rules)
    return link

async def get_link_by_short_code(short_code: str) -> Optional[Link]:
    async with AsyncSessionLocal() as db_session:
        result = await db_session.execute(
            select(Link).where(Link.short_code == short_code, Link.is_deleted.is_(False))
        )
        return result.scalar_one_or_none()

async def list_links(owner_id: Optional[str] = None, include_deleted: bool = False):
    async with AsyncSessionLocal() as db_session:
        query = select(Link).order_by(Link.created_at.desc(), Link.id.desc())
        if owner_id is not None:
            query = query.where(Link.owner_id == owner_id)
        if not include_deleted:
            query = query.where(Link.is_deleted.is_(False))
        result = await db_session.execute(query)
        return result.scalars().all()

async def _locked_link(db_session, link_id: int) -> Link:
    result = await db_session.execute(
        select(Link).where(Link.id == link_id, Link.is_deleted.is_(False)).with_for_update()
    )
    link = result.scalar_one_or_none()
    if not link:
        raise NotFound('Link not found.')
    return link

async def toggle_link_monetization(link_id: int, admin_id: str) -> Link:
    """Flip active/suspended; only suspending notifies the owner"""
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            link = await _locked_link(db_session, link_id)
            new_status = 'suspended' if link.monetization_status == 'active' else 'active'
            link.monetization_status = new_status

            if new_status == 'suspended':
                notify(
                    db_session,
                    link.owner_id,
                    LINK_SUSPENSION,
                    f'Monetization for your link "{link.title}" has been suspended due to suspicious activity.',
                    link_id=link.id
                )

    logger.info(f"Link {link_id} monetization set to {new_status} by admin {admin_id}")
    return link

async def delete_link(link_id: int, admin_id: str) -> Link:
    """Logical delete; the link stops resolving but its ledger history stays"""
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            link = await _locked_link(db_session, link_id)
            link.is_deleted = True
            link.deleted_at = utcnow()
            notify(
                db_session,
                link.owner_id,
                LINK_DELETED,
                f'Your link "{link.title}" was deleted by an administrator.',
                link_id=link.id
            )

    logger.info(f"Link {link_id} deleted by admin {admin_id}")
    return link
