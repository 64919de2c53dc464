# config.py
import logging
import os

from dotenv import load_dotenv

# --- SESSION DEFAULTS ---
# Default values used when a start request omits a field.
DEFAULT_SESSION_CONFIG = {
    'duration_minutes': 25,
    'message': '',
    'overlay_dwell_seconds': 0,  # 0 = overlay stays until dismissed
}

# --- POLLING ---
# Cadence used by control surfaces re-querying the authority.
POLL_INTERVAL_SECONDS = 1.0
REQUEST_TIMEOUT = 5

# --- SERVER DEFAULTS ---
DEFAULT_SETTINGS = {
    'host': '127.0.0.1',
    'port': 5000,
    'url': 'http://127.0.0.1:5000',
    'overlay_auto_close': True,
    'timezone': 'UTC',
    'log_level': 'INFO',
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

_TRUTHY = {'1', 'true', 'yes', 'on'}


def _env_flag(name, default):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def load_settings():
    """Builds the runtime settings from the environment (and a local .env)."""
    load_dotenv()
    settings = dict(DEFAULT_SETTINGS)
    settings['host'] = os.getenv('BREAKTIMER_HOST', settings['host'])
    settings['port'] = int(os.getenv('BREAKTIMER_PORT', settings['port']))
    settings['url'] = os.getenv('BREAKTIMER_URL', settings['url']).rstrip('/')
    settings['overlay_auto_close'] = _env_flag('OVERLAY_AUTO_CLOSE', settings['overlay_auto_close'])
    settings['timezone'] = os.getenv('BREAKTIMER_TIMEZONE', settings['timezone'])
    settings['log_level'] = os.getenv('LOG_LEVEL', settings['log_level']).upper()
    return settings


def configure_logging(level='INFO'):
    logging.basicConfig(level=level, format=LOG_FORMAT)
