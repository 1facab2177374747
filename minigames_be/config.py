"""
Configuration module with fail-fast validation.

Environment values are validated once at import; production environments
must provide every required variable.
"""
import os
from dotenv import load_dotenv

from minigames_be.config_validator import validate_production_config

load_dotenv()


class Config:
    """Production-ready configuration with fail-fast validation."""

    _validated_config = validate_production_config()

    # Database
    SQLALCHEMY_DATABASE_URI = _validated_config['SQLALCHEMY_DATABASE_URI']
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # JWT - verified only, credentials are issued by the identity service
    JWT_SECRET_KEY = _validated_config['JWT_SECRET_KEY']
    JWT_ACCESS_TOKEN_EXPIRES = _validated_config['JWT_ACCESS_TOKEN_EXPIRES']
    JWT_TOKEN_LOCATION = ['headers', 'cookies']
    JWT_COOKIE_SECURE = True
    JWT_COOKIE_SAMESITE = 'Strict'
    JWT_COOKIE_CSRF_PROTECT = True

    # Rate Limiter
    RATELIMIT_STORAGE_URI = _validated_config['RATELIMIT_STORAGE_URI']

    DEBUG = _validated_config['DEBUG']

    CORS_ORIGINS_LIST = _validated_config['CORS_ORIGINS']

    # Ledger writes slower than this leave the wager unconfirmed
    LEDGER_WRITE_TIMEOUT = _validated_config['LEDGER_WRITE_TIMEOUT']

    # Per-game settings: JSON file overrides merged over the built-in defaults
    GAME_SETTINGS_FILE = _validated_config['GAME_SETTINGS_FILE']
    GAME_SETTINGS = {}

    CRASH_SCHEDULER_ENABLED = _validated_config['CRASH_SCHEDULER_ENABLED']


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///./test_minigames_be_isolated.db' # File-based for test isolation using SQLite
    DATABASE_FILE_PATH = SQLALCHEMY_DATABASE_URI.replace('sqlite:///', '')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = 'test-jwt-secret-key-with-enough-length-for-hs256'
    JWT_TOKEN_LOCATION = ['headers']
    JWT_COOKIE_CSRF_PROTECT = False
    RATELIMIT_ENABLED = False
    RATELIMIT_DEFAULT_LIMITS_ENABLED = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'connect_args': {'check_same_thread': False}
    }
    GAME_SETTINGS_FILE = None
    GAME_SETTINGS = {}
    CRASH_SCHEDULER_ENABLED = False
    LEDGER_WRITE_TIMEOUT = 5.0
