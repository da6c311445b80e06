"""CSRF protection for session-authenticated JSON and form endpoints"""
from quart import request, session
from functools import wraps
from secrets import token_urlsafe
from typing import Optional
from locker.server.error import abort

def generate_csrf_token() -> str:
    """Generate a new CSRF token and store it in the session"""
    token = token_urlsafe(32)
    session['csrf_token'] = token
    return token

def get_csrf_token() -> Optional[str]:
    """Get the CSRF token from the session, create one if it doesn't exist"""
    if 'csrf_token' not in session:
        return generate_csrf_token()
    return session.get('csrf_token')

def validate_csrf_token(token: str) -> bool:
    session_token = session.get('csrf_token')
    if not session_token or not token:
        return False
    return session_token == token

def csrf_protect(func):
    """Decorator to protect state-changing routes from CSRF attacks"""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        if request.method in ['POST', 'PUT', 'DELETE', 'PATCH']:
            token = request.headers.get('X-CSRF-Token')
            if not token:
                form_data = await request.form
                token = form_data.get('csrf_token') or ""

            if not validate_csrf_token(token):
                abort(403, 'Invalid CSRF token')

        return await func(*args, **kwargs)
    return wrapper

async def request_data() -> dict:
    """JSON body if present, otherwise form fields"""
    data = await request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    form = await request.form
    return {key: form.get(key) for key in form.keys()}
