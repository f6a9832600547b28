"""
MillFlow
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'millflow_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Engine ───────────────────────────────────────────────────────────
    # Max writes/deletes per committed chunk (document-store batch limit)
    STORE_BATCH_SIZE = int(os.getenv("STORE_BATCH_SIZE", "30"))
    # Default per-operation deadline applied to every store call
    STORE_DEADLINE_SECONDS = float(os.getenv("STORE_DEADLINE_SECONDS", "30"))
    # Budget for one `flask recompute-costs` pass over a whole tenant
    REPAIR_DEADLINE_SECONDS = float(os.getenv("REPAIR_DEADLINE_SECONDS", "600"))

    # Scheduling a work order this many days (or fewer) ahead triggers procurement
    AUTO_PROCUREMENT_LEAD_DAYS = int(os.getenv("AUTO_PROCUREMENT_LEAD_DAYS", "2"))
    # Auto-created purchase orders are sent immediately instead of left in draft
    AUTO_PROCUREMENT_SEND = os.getenv("AUTO_PROCUREMENT_SEND", "false").lower() == "true"

    # Attendance collaborator (unset → every worker counts as available)
    ATTENDANCE_SERVICE_URL = os.getenv("ATTENDANCE_SERVICE_URL")
    ATTENDANCE_TIMEOUT_SECONDS = float(os.getenv("ATTENDANCE_TIMEOUT_SECONDS", "5"))

    # Optional replacement for the purchase-order adjacency table
    ORDER_TRANSITIONS_OVERRIDE = None


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STORE_BATCH_SIZE = 30
    AUTO_PROCUREMENT_SEND = False
    ATTENDANCE_SERVICE_URL = None


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL statement timeout
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


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
