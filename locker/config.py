from os import environ as env
from dotenv import load_dotenv
from decimal import Decimal
from pathlib import Path

# Load .env file from the project root
# Preserve critical environment variables that should not be overridden by .env
_preserved_vars = {
    "DATABASE_URL": env.get("DATABASE_URL"),
    "SECRET_KEY": env.get("SECRET_KEY"),
}

_env_path = Path(__file__).parent.parent / '.env'
if _env_path.exists():
    load_dotenv(_env_path, override=False)

    # Restore preserved variables if they were overridden with empty values
    for key, value in _preserved_vars.items():
        if value and not env.get(key):
            env[key] = value

# CONFIGURATION
# - BASE_URL: Public URL of your deployment (e.g., https://yourdomain.com)
# - DATABASE_URL: PostgreSQL database connection string
# - SECRET_KEY: session signing key
# - ADMIN_UID / ADMIN_EMAIL: identity of the bootstrap admin profile

def _flag(name: str, default: str) -> bool:
    return (env.get(name) or default).strip().lower() in ('1', 'true', 'yes', 'on')

class Server:
    BASE_URL = env.get("BASE_URL") or "http://localhost:5000"
    BIND_ADDRESS = env.get("BIND_ADDRESS") or "0.0.0.0"
    _port_str = env.get("PORT") or "5000"
    PORT = int(_port_str) if _port_str else 5000

    _short_code_len_str = env.get("SHORT_CODE_LENGTH") or "7"
    SHORT_CODE_LENGTH = int(_short_code_len_str)

    SECRET_KEY = env.get("SECRET_KEY")

    # Only honour CF-Connecting-IP / X-Real-IP / X-Forwarded-For behind a trusted proxy
    TRUST_PROXY_HEADERS = _flag("TRUST_PROXY_HEADERS", "false")

class Monetization:
    # Used when the owner has no custom CPM and no global period is active
    DEFAULT_CPM = Decimal(env.get("DEFAULT_CPM") or "3.00")

    # One monetized view per visitor per window
    ABUSE_WINDOW_MS = int(env.get("ABUSE_WINDOW_MS") or "1800000")
    VISIT_COOKIE_NAME = env.get("VISIT_COOKIE_NAME") or "lv_ts"
    VISIT_COOKIE_MAX_AGE = int(env.get("VISIT_COOKIE_MAX_AGE") or str(30 * 24 * 3600))

    # Gate timings (seconds)
    ITEM_DWELL_SECONDS = int(env.get("ITEM_DWELL_SECONDS") or "10")
    COUNTDOWN_SECONDS = int(env.get("COUNTDOWN_SECONDS") or "5")
    MIN_GATE_SECONDS = int(env.get("MIN_GATE_SECONDS") or "10")
    GATE_SESSION_TTL_HOURS = int(env.get("GATE_SESSION_TTL_HOURS") or "24")

    MONETIZABLE_RULE_COUNT = int(env.get("MONETIZABLE_RULE_COUNT") or "3")
    MAX_ACTIVE_SPONSORS = int(env.get("MAX_ACTIVE_SPONSORS") or "3")
    MILESTONE_INTERVAL = int(env.get("MILESTONE_INTERVAL") or "1000")

    DEFAULT_MINIMUM_PAYOUT = Decimal(env.get("MINIMUM_PAYOUT") or "10.00")

    IP_LOOKUP_TIMEOUT = float(env.get("IP_LOOKUP_TIMEOUT") or "5.0")
    GEOIP_ENABLED = _flag("GEOIP_ENABLED", "true")

# LOGGING CONFIGURATION
LOG_FILENAME = env.get("LOG_FILENAME") or "event-log.txt"
LOG_MAX_BYTES = int(env.get("LOG_MAX_BYTES") or "10485760")  # 10MB default
LOG_BACKUP_COUNT = int(env.get("LOG_BACKUP_COUNT") or "5")

LOGGER_CONFIG_JSON = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'default': {
            'format': '[%(asctime)s][%(name)s][%(levelname)s] -> %(message)s',
            'datefmt': '%d/%m/%Y %H:%M:%S'
        },
    },
    'handlers': {
        'file_handler': {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': LOG_FILENAME,
            'maxBytes': LOG_MAX_BYTES,
            'backupCount': LOG_BACKUP_COUNT,
            'formatter': 'default'
        },
        'stream_handler': {
            'class': 'logging.StreamHandler',
            'formatter': 'default'
        }
    },
    'loggers': {
        'uvicorn': {
            'level': 'INFO',
            'handlers': ['file_handler', 'stream_handler']
        },
        'uvicorn.error': {
            'level': 'WARNING',
            'handlers': ['file_handler', 'stream_handler']
        },
        'locker': {
            'level': 'INFO',
            'handlers': ['file_handler', 'stream_handler']
        }
    }
}
