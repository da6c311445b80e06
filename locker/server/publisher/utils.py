from quart import session, jsonify
from locker.server.accounts import get_profile, ensure_profile
from functools import wraps

def require_publisher(func):
    """Identity comes from the provider via the session; suspended accounts are refused"""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({'status': 'error', 'message': 'Authentication required'}), 401

        profile = await get_profile(session['user_id'])
        if not profile:
            profile = await ensure_profile(session['user_id'], session.get('email'))

        if profile.account_status == 'suspended':
            return jsonify({'status': 'error', 'message': 'Account suspended'}), 403

        return await func(*args, **kwargs)
    return wrapper
