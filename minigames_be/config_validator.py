"""
Configuration validation and startup checks.

Fail-fast validation of the environment (secrets, database, rate limiting,
CORS, ledger timeout) plus structural validation of the per-game settings,
so a misconfigured bet range or round timing is rejected at load time
rather than surfacing as a runtime error in the middle of a wager.
"""

import json
import os
import sys
import warnings
import secrets
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple


class ConfigValidationError(Exception):
    """Raised when critical configuration is missing or invalid."""
    pass


class ConfigValidator:
    """Validates application configuration and enforces production security."""

    def __init__(self, is_production: bool = None):
        """
        Initialize the configuration validator.

        Args:
            is_production: If None, production is assumed only when FLASK_ENV or APP_ENV says so
        """
        if is_production is None:
            app_env = (os.getenv('FLASK_ENV') or os.getenv('APP_ENV') or '').lower()
            is_production = app_env == 'production'

        self.is_production = is_production
        self.is_testing = os.getenv('TESTING', 'False').lower() in ('true', '1', 't')
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_required_env_var(self, var_name: str, description: str = None) -> Optional[str]:
        value = os.getenv(var_name)
        if not value:
            desc = description or var_name
            if self.is_production:
                self.errors.append(f"CRITICAL: {desc} ({var_name}) must be set in production environment")
            else:
                self.warnings.append(f"WARNING: {desc} ({var_name}) not set - using development fallback")
        return value

    def validate_jwt_config(self) -> Tuple[str, int]:
        """Validate JWT configuration. Tokens are issued elsewhere; this service only verifies them."""
        jwt_secret = self.validate_required_env_var('JWT_SECRET_KEY', 'JWT Secret Key')

        if not jwt_secret:
            if self.is_production:
                raise ConfigValidationError("JWT_SECRET_KEY is required in production")
            jwt_secret = secrets.token_urlsafe(64)
            warnings.warn(
                "JWT_SECRET_KEY not set. Generated secure random key for development. "
                "Set JWT_SECRET_KEY environment variable for production!",
                UserWarning
            )
        elif len(jwt_secret) < 32:
            error_msg = "JWT_SECRET_KEY must be at least 32 characters long"
            if self.is_production:
                self.errors.append(f"CRITICAL: {error_msg}")
            else:
                self.warnings.append(f"WARNING: {error_msg}")

        try:
            access_expires = int(os.getenv('JWT_ACCESS_TOKEN_EXPIRES', '3600'))
        except ValueError:
            raise ConfigValidationError("JWT_ACCESS_TOKEN_EXPIRES must be an integer")

        return jwt_secret, access_expires

    def validate_database_config(self) -> str:
        database_url = os.getenv('DATABASE_URL')

        if database_url:
            if not database_url.startswith(('postgresql://', 'postgresql+psycopg2://', 'sqlite://')):
                self.errors.append("CRITICAL: DATABASE_URL must use a supported database driver")
            return database_url

        if self.is_production:
            self.errors.append("CRITICAL: DATABASE_URL must be set in production environment")
            return database_url

        self.warnings.append("DATABASE_URL not set - using local SQLite database minigames_dev.db")
        return 'sqlite:///minigames_dev.db'

    def validate_rate_limiting_config(self) -> str:
        rate_limit_uri = os.getenv('RATELIMIT_STORAGE_URI', 'memory://')

        if rate_limit_uri == 'memory://' and self.is_production:
            self.errors.append(
                "CRITICAL: Rate limiting uses memory:// storage in production. "
                "This is not suitable for multi-process deployments. "
                "Set RATELIMIT_STORAGE_URI to a Redis URL (e.g., redis://localhost:6379/0)"
            )
        return rate_limit_uri

    def validate_cors_config(self) -> List[str]:
        cors_origins = os.getenv('CORS_ORIGINS', '')

        if not cors_origins and self.is_production:
            self.errors.append(
                "CRITICAL: CORS_ORIGINS must be set in production to specify allowed frontend domains"
            )
            return []

        if cors_origins:
            origins = [origin.strip() for origin in cors_origins.split(',') if origin.strip()]
            for origin in origins:
                if not origin.startswith(('http://', 'https://')):
                    self.warnings.append(f"CORS origin '{origin}' should include protocol (http:// or https://)")
            return origins

        return []

    def validate_ledger_config(self) -> float:
        """Seconds a ledger write may take before the wager is treated as unconfirmed."""
        raw = os.getenv('LEDGER_WRITE_TIMEOUT', '5')
        try:
            timeout = float(raw)
        except ValueError:
            raise ConfigValidationError(f"LEDGER_WRITE_TIMEOUT must be a number, got '{raw}'")
        if timeout <= 0:
            self.errors.append("CRITICAL: LEDGER_WRITE_TIMEOUT must be greater than zero")
        return timeout

    def validate_game_settings_file(self) -> Optional[str]:
        path = os.getenv('GAME_SETTINGS_FILE')
        if path and not os.path.isfile(path):
            self.errors.append(f"CRITICAL: GAME_SETTINGS_FILE '{path}' does not exist")
        return path

    def validate_all(self) -> dict:
        """
        Validate all configuration settings.

        Raises:
            ConfigValidationError: If critical configuration is missing in production
        """
        config = {}

        try:
            config['JWT_SECRET_KEY'], config['JWT_ACCESS_TOKEN_EXPIRES'] = self.validate_jwt_config()
            config['SQLALCHEMY_DATABASE_URI'] = self.validate_database_config()
            config['RATELIMIT_STORAGE_URI'] = self.validate_rate_limiting_config()
            config['CORS_ORIGINS'] = self.validate_cors_config()
            config['LEDGER_WRITE_TIMEOUT'] = self.validate_ledger_config()
            config['GAME_SETTINGS_FILE'] = self.validate_game_settings_file()

            config['DEBUG'] = os.getenv('FLASK_DEBUG', 'False').lower() in ('true', '1', 't')
            config['CRASH_SCHEDULER_ENABLED'] = os.getenv('CRASH_SCHEDULER_ENABLED', 'True').lower() in ('true', '1', 't')

            if self.is_production and config['DEBUG']:
                self.errors.append("CRITICAL: DEBUG mode must be disabled in production (set FLASK_DEBUG=False)")

            if self.errors:
                error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in self.errors)
                if self.warnings:
                    error_msg += "\n\nWarnings:\n" + "\n".join(f"  - {warning}" for warning in self.warnings)
                raise ConfigValidationError(error_msg)

            if self.warnings and not self.is_testing:
                for warning in self.warnings:
                    warnings.warn(warning, UserWarning)

            return config

        except Exception as e:
            if isinstance(e, ConfigValidationError):
                raise
            raise ConfigValidationError(f"Configuration validation error: {str(e)}") from e


def _as_decimal(value) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None


def validate_game_settings(settings: Dict[str, Dict[str, Any]]) -> List[str]:
    """
    Structural checks for the merged per-game settings.

    Returns a list of error strings, empty when the settings are usable.
    """
    errors = []
    for game, options in settings.items():
        if not isinstance(options, dict):
            errors.append(f"{game}: settings must be an object")
            continue

        min_bet = _as_decimal(options.get('min_bet'))
        max_bet = _as_decimal(options.get('max_bet'))
        if min_bet is None or max_bet is None:
            errors.append(f"{game}: min_bet and max_bet must be numbers")
        elif min_bet <= 0:
            errors.append(f"{game}: min_bet must be greater than zero")
        elif min_bet > max_bet:
            errors.append(f"{game}: min_bet {min_bet} is greater than max_bet {max_bet}")

        if 'house_edge_factor' in options:
            edge = options['house_edge_factor']
            if isinstance(edge, bool) or not isinstance(edge, (int, float)) or not (0 < edge <= 1):
                errors.append(f"{game}: house_edge_factor must be in (0, 1]")

        for key in ('waiting_duration_seconds', 'crash_pause_seconds', 'tick_rate_hz'):
            if key in options:
                value = options[key]
                if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                    errors.append(f"{game}: {key} must be a positive number")

        threshold = options.get('auto_cashout_threshold')
        if threshold is not None:
            if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or threshold < 1.01:
                errors.append(f"{game}: auto_cashout_threshold must be at least 1.01")

        if 'max_crash_point' in options:
            value = options['max_crash_point']
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 1:
                errors.append(f"{game}: max_crash_point must be at least 1.00")

        paytable = options.get('paytable')
        if paytable is not None:
            if not isinstance(paytable, dict):
                errors.append(f"{game}: paytable must be an object")
            else:
                for key, value in paytable.items():
                    if isinstance(value, (int, float)) and not isinstance(value, bool) and value < 0:
                        errors.append(f"{game}: paytable entry '{key}' must not be negative")
    return errors


def load_game_settings_file(path: str) -> Dict[str, Dict[str, Any]]:
    try:
        with open(path, 'r', encoding='utf-8') as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigValidationError(f"Could not read GAME_SETTINGS_FILE '{path}': {e}") from e
    if not isinstance(data, dict):
        raise ConfigValidationError(f"GAME_SETTINGS_FILE '{path}' must contain a JSON object keyed by game")
    return data


def validate_production_config() -> dict:
    """
    Validate configuration with fail-fast behavior.

    Raises:
        SystemExit: If validation fails during startup
    """
    try:
        validator = ConfigValidator()
        return validator.validate_all()
    except ConfigValidationError as e:
        print("\nCONFIGURATION VALIDATION FAILED\n", file=sys.stderr)
        print(str(e), file=sys.stderr)
        print("\nHow to fix:", file=sys.stderr)
        print("1. Set required environment variables", file=sys.stderr)
        print("2. Check GAME_SETTINGS_FILE for inverted bet ranges or invalid timings", file=sys.stderr)
        print("\nApplication startup ABORTED\n", file=sys.stderr)
        sys.exit(1)
