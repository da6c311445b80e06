from quart import session, jsonify
from functools import wraps

def require_admin(func):
    @wraps(func)
    async def wrapper(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({'status': 'error', 'message': 'Authentication required'}), 401
        if session.get('role') != 'admin':
            return jsonify({'status': 'error', 'message': 'Admin access required'}), 403
        return await func(*args, **kwargs)
    return wrapper

def current_admin_id() -> str:
    return session['user_id']
