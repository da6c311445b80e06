from locker.database import AsyncSessionLocal
from locker.models import UserProfile
from locker.server.error import NotFound
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from typing import Optional
from logging import getLogger

logger = getLogger('locker.accounts')

async def get_profile(user_id: str) -> Optional[UserProfile]:
    async with AsyncSessionLocal() as db_session:
        return await db_session.get(UserProfile, user_id)

async def ensure_profile(user_id: str, email: Optional[str] = None,
                         display_name: Optional[str] = None) -> UserProfile:
    """Create the profile for an identity seen for the first time"""
    try:
        async with AsyncSessionLocal() as db_session:
            async with db_session.begin():
                profile = await db_session.get(UserProfile, user_id)
                if profile:
                    return profile
                profile = UserProfile(
                    id=user_id,
                    email=(email or '').lower().strip(),
                    display_name=display_name,
                    role='user',
                    account_status='active',
                    paid_earnings=0
                )
                db_session.add(profile)
    except IntegrityError:
        # Created concurrently by another request
        return await get_profile(user_id)

    logger.info(f"Profile created for user {user_id}")
    return profile

async def list_profiles():
    async with AsyncSessionLocal() as db_session:
        result = await db_session.execute(
            select(UserProfile).order_by(UserProfile.created_at.desc(), UserProfile.id)
        )
        return result.scalars().all()

async def toggle_account_status(user_id: str, admin_id: str) -> UserProfile:
    async with AsyncSessionLocal() as db_session:
        async with db_session.begin():
            result = await db_session.execute(
                select(UserProfile).where(UserProfile.id == user_id).with_for_update()
            )
            profile = result.scalar_one_or_none()
            if not profile:
                raise NotFound('User not found.')
            profile.account_status = 'suspended' if profile.account_status == 'active' else 'active'

    logger.info(f"Account {user_id} set to {profile.account_status} by admin {admin_id}")
    return profile
