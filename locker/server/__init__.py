from quart import Quart, jsonify, request
from uvicorn import Server as UvicornServer, Config
from logging import getLogger
from locker.config import Server, LOGGER_CONFIG_JSON
from locker.database import init_db, close_db
from datetime import timedelta
from os import environ

from . import main, error, admin, publisher

logger = getLogger('uvicorn')

instance = Quart(__name__)
instance.config['RESPONSE_TIMEOUT'] = 60
instance.config['REQUEST_TIMEOUT'] = 60

# Development fallback only; set SECRET_KEY in production
DEFAULT_SECRET_KEY = 'dev_secret_key_not_for_production_replace_me_123456'

instance.config['SECRET_KEY'] = Server.SECRET_KEY or DEFAULT_SECRET_KEY
instance.config['SESSION_COOKIE_SECURE'] = environ.get('ENVIRONMENT', 'production') != 'development'
instance.config['SESSION_COOKIE_HTTPONLY'] = True
instance.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
instance.config['PERMANENT_SESSION_LIFETIME'] = timedelta(days=7)
instance.config['SESSION_COOKIE_NAME'] = 'session'

@instance.after_request
async def add_security_headers(response):
    """Add security headers to all responses"""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['Referrer-Policy'] = 'no-referrer-when-downgrade'

    # Prevent caching of account data and one-time gate state
    if (request.path.startswith('/admin') or request.path.startswith('/publisher')
            or request.path.startswith('/gate')):
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, private'
        response.headers['Pragma'] = 'no-cache'
        response.headers['Expires'] = '0'

    return response

@instance.before_serving
async def before_serve():
    await init_db()

    if Server.SECRET_KEY:
        logger.info('Using SECRET_KEY from environment')
    else:
        logger.warning('Using default SECRET_KEY - set SECRET_KEY for production!')

    logger.info('Web server is started!')
    logger.info(f'Server running on {Server.BIND_ADDRESS}:{Server.PORT}')

@instance.after_serving
async def after_serve():
    await close_db()
    logger.info('Web server is shutting down!')

instance.register_blueprint(admin.bp)
instance.register_blueprint(publisher.bp)
instance.register_blueprint(main.bp)

@instance.errorhandler(400)
async def handle_invalid_request(e):
    return jsonify({'status': 'error', 'message': error.error_messages[400]}), 400

@instance.errorhandler(404)
async def handle_not_found(e):
    return jsonify({'status': 'error', 'message': error.error_messages[404]}), 404

@instance.errorhandler(405)
async def handle_invalid_method(e):
    return jsonify({'status': 'error', 'message': error.error_messages[405]}), 405

@instance.errorhandler(error.HTTPError)
async def handle_http_error(e):
    error_message = error.error_messages.get(e.status_code)
    return jsonify({'status': 'error', 'message': e.description or error_message or 'Unknown error'}), e.status_code

@instance.errorhandler(error.LedgerError)
async def handle_ledger_error(e):
    return jsonify({'status': 'error', 'message': e.message}), e.status_code

server = UvicornServer(
    Config(
        app=instance,
        host=Server.BIND_ADDRESS,
        port=Server.PORT,
        log_config=LOGGER_CONFIG_JSON,
        timeout_keep_alive=60,
        timeout_graceful_shutdown=30
    )
)
