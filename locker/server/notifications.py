from locker.database import AsyncSessionLocal
from locker.models import Notification, UserProfile
from sqlalchemy import select, update, insert, literal
from typing import Optional, Iterable
from logging import getLogger

logger = getLogger('locker.notifications')

PAYOUT_REQUESTED = 'payout_requested'
PAYOUT_COMPLETED = 'payout_completed'
PAYOUT_REJECTED = 'payout_rejected'
LINK_SUSPENSION = 'link_suspension'
LINK_DELETED = 'link_deleted'
MILESTONE = 'milestone'
CUSTOM_CPM_SET = 'custom_cpm_set'
GLOBAL_CPM_CHANGED = 'global_cpm_changed'

def notify(db_session, user_id: str, kind: str, message: str, link_id: Optional[int] = None) -> Notification:
    """Queue a notification inside the caller's transaction"""
    notification = Notification(user_id=user_id, type=kind, message=message, link_id=link_id)
    db_session.add(notification)
    return notification

async def notify_all_users(db_session, kind: str, message: str) -> None:
    await db_session.execute(
        insert(Notification).from_select(
            ['user_id', 'type', 'message', 'is_read'],
            select(UserProfile.id, literal(kind), literal(message), literal(False))
        )
    )

async def list_notifications(user_id: str, unread_only: bool = False, limit: int = 50):
    async with AsyncSessionLocal() as db_session:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        result = await db_session.execute(
            query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        )
        return result.scalars().all()

async def mark_read(user_id: str, notification_ids: Optional[Iterable[int]] = None) -> int:
    """Mark the given (or all) notifications of a user as read; returns rows changed"""
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            statement = update(Notification).where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False)
            )
            if notification_ids is not None:
                statement = statement.where(Notification.id.in_(list(notification_ids)))
            result = await db_session.execute(statement.values(is_read=True))
            return result.rowcount
