"""
Pharma Books - Configuration

Settings are read from environment variables (optionally from a .env file via
python-dotenv). Every variable is prefixed with PHARMABOOKS_, e.g.
PHARMABOOKS_SECRET_KEY or PHARMABOOKS_DATABASE_PATH.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "PHARMABOOKS_"

DEFAULT_DB_PATH = Path(__file__).parent / "data" / "pharmabooks.db"

DEFAULTS = {
    'SECRET_KEY': 'dev-secret-key-change-in-production',
    'DATABASE_PATH': str(DEFAULT_DB_PATH),
    'LOG_LEVEL': 'INFO',
    'HOST': '127.0.0.1',
    'PORT': 5001,
    'SESSION_COOKIE_SECURE': False,
    'SESSION_COOKIE_SAMESITE': 'Lax',
    'SESSION_COOKIE_HTTPONLY': True,
    'MIN_PASSWORD_LENGTH': 8,
    'CURRENCY_SYMBOL': '$',
    'CORS_ORIGINS': '*',
}

_BOOL_KEYS = {'SESSION_COOKIE_SECURE', 'SESSION_COOKIE_HTTPONLY'}
_INT_KEYS = {'PORT', 'MIN_PASSWORD_LENGTH'}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _coerce(key, value):
    if key in _BOOL_KEYS and isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    if key in _INT_KEYS:
        return int(value)
    return value


def load_settings(overrides=None):
    """
    Build the settings dict: defaults, then environment, then overrides.

    Args:
        overrides (dict, optional): Values that win over the environment
            (used by tests and the CLI).

    Returns:
        dict: Settings keyed without the PHARMABOOKS_ prefix.
    """
    load_dotenv()

    settings = dict(DEFAULTS)
    for key in DEFAULTS:
        raw = os.getenv(ENV_PREFIX + key)
        if raw is not None and raw != '':
            settings[key] = _coerce(key, raw)

    for key, value in (overrides or {}).items():
        settings[key] = _coerce(key, value)

    return settings


def configure_logging(level='INFO'):
    """Configure root logging once for the app or launcher."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger('pharmabooks').setLevel(level)
