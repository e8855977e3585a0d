"""
AOG Tracker
Configuration classes for the Flask app factory.

Selected by APP_ENV (development | testing | production):

    app.config.from_object(config[os.getenv("APP_ENV", "development")])

Environment variables:
    DATABASE_URL             relational store (SQLite file in development when unset)
    SECRET_KEY               required in production
    CORS_ORIGINS             comma separated, "*" allowed outside production
    RATELIMIT_STORAGE_URI    Flask-Limiter backend (memory:// by default)
    RATELIMIT_WRITE_LIMIT    limit applied to the event endpoints
    BUDGET_SERVICE_URL       external budget service; empty → local actual_spends table
    BUDGET_SERVICE_TIMEOUT   seconds, single attempt
    BUDGET_CURRENCY          currency stamped on generated spends
    SPEND_CLAIM_TTL_SECONDS  age after which an unfinished spend claim may be taken over
    ANALYTICS_HISTORY_MONTHS forecast look-back default
    ANALYTICS_FORECAST_MONTHS forecast horizon default
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'aog_tracker_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _database_url(default=None):
    """DATABASE_URL with Heroku-style ``postgres://`` rewritten for SQLAlchemy 2.0."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    return raw.replace("postgres://", "postgresql://", 1)


def _int_env(name, default):
    return int(os.getenv(name, str(default)))


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_hex(32))
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_WRITE_LIMIT = os.getenv("RATELIMIT_WRITE_LIMIT", "120 per minute")

    BUDGET_SERVICE_URL = os.getenv("BUDGET_SERVICE_URL", "")
    BUDGET_SERVICE_TIMEOUT = _int_env("BUDGET_SERVICE_TIMEOUT", 10)
    BUDGET_CURRENCY = os.getenv("BUDGET_CURRENCY", "USD")
    SPEND_CLAIM_TTL_SECONDS = _int_env("SPEND_CLAIM_TTL_SECONDS", 120)

    ANALYTICS_HISTORY_MONTHS = _int_env("ANALYTICS_HISTORY_MONTHS", 12)
    ANALYTICS_FORECAST_MONTHS = _int_env("ANALYTICS_FORECAST_MONTHS", 3)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    """In-memory SQLite, no rate limits, local budget ledger."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    BUDGET_SERVICE_URL = ""


class ProductionConfig(Config):
    """Validated on instantiation; create_app instantiates it."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")
        if self.BUDGET_SERVICE_TIMEOUT <= 0:
            raise RuntimeError("BUDGET_SERVICE_TIMEOUT must be a positive number of seconds")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
