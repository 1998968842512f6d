"""
Gym Access Platform
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'gymaccess_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _normalize_db_url(raw):
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    return raw.replace("postgres://", "postgresql://", 1) if raw else raw


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    # Redis: rate limiter storage and the shared replay store
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    REPLAY_STORE_URL = os.getenv("REPLAY_STORE_URL", os.getenv("REDIS_URL", "memory://"))

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Anti-replay cooldowns. Kept as three separate values: the biometric
    # reader window is wider than the generic one and must not be unified.
    MEMBER_CHECKIN_COOLDOWN_SECONDS = int(os.getenv("MEMBER_CHECKIN_COOLDOWN_SECONDS", 2 * 3600))
    STAFF_CHECKIN_COOLDOWN_SECONDS = int(os.getenv("STAFF_CHECKIN_COOLDOWN_SECONDS", 2 * 3600))
    BIOMETRIC_CHECKIN_COOLDOWN_SECONDS = int(os.getenv("BIOMETRIC_CHECKIN_COOLDOWN_SECONDS", 4 * 3600))

    # Streak grace rules
    TENANT_REACTIVATION_GRACE_DAYS = int(os.getenv("TENANT_REACTIVATION_GRACE_DAYS", "7"))
    DEFAULT_STREAK_FREEZE_DAYS = int(os.getenv("DEFAULT_STREAK_FREEZE_DAYS", "7"))

    # Outbound reward/visit notifications (unset = log only)
    NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL")
    NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "5"))
    NOTIFICATION_MAX_WORKERS = int(os.getenv("NOTIFICATION_MAX_WORKERS", "4"))

    # Bearer tokens (HS256). Falls back to SECRET_KEY outside production.
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "3600"))

    # Operator / cron trigger for the admin endpoints
    RECONCILE_SECRET = os.getenv("RECONCILE_SECRET")

    # Coarse abuse control (Flask-Limiter), unrelated to replay protection
    CHECKIN_RATE_LIMIT = os.getenv("CHECKIN_RATE_LIMIT", "120/minute")
    BIOMETRIC_RATE_LIMIT = os.getenv("BIOMETRIC_RATE_LIMIT", "240/minute")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _normalize_db_url(os.getenv("DATABASE_URL", "")) or _SQLITE_DEV


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    REPLAY_STORE_URL = "memory://"
    RATELIMIT_ENABLED = False
    NOTIFICATION_WEBHOOK_URL = None
    RECONCILE_SECRET = None


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _normalize_db_url(os.getenv("DATABASE_URL", "")) or None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")
        if not os.getenv("JWT_SECRET_KEY"):
            raise RuntimeError("JWT_SECRET_KEY environment variable must be set in production")
        if not os.getenv("RECONCILE_SECRET"):
            raise RuntimeError("RECONCILE_SECRET environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
