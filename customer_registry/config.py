"""
Customer Registry
Configuration classes for the application factory.

Every value can be overridden from the environment; the class only fixes the
default for its environment.

Usage:
    app.config.from_object(config[os.getenv("APP_ENV", "development")]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes", "on")


def _database_url(default: str | None) -> str | None:
    """DATABASE_URL with the legacy ``postgres://`` scheme normalised."""
    url = os.getenv("DATABASE_URL", "")
    if not url:
        return default
    return url.replace("postgres://", "postgresql://", 1)


class Config:
    """Defaults shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "readable")

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Acting user when neither the User header nor an API key names one
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "true")
    DEFAULT_ACTOR = os.getenv("DEFAULT_ACTOR", "system")

    # Document pages
    UPLOAD_IMAGE_MAX_SIZE = int(os.getenv("UPLOAD_IMAGE_MAX_SIZE", str(1024 * 1024)))
    UPLOAD_IMAGE_CONTENT_TYPES = ("image/jpeg", "image/png")

    # Skip predefined attachment when the customer already has an open instance
    TASK_INSTANCE_DEDUP = _env_flag("TASK_INSTANCE_DEDUP")

    CUSTOMER_PAGE_SIZE = int(os.getenv("CUSTOMER_PAGE_SIZE", "20"))

    EVENT_DESTINATION = os.getenv("EVENT_DESTINATION", "customer-v1")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(basedir, 'instance', 'customer_registry.db')}"
    )
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    API_AUTH_ENABLED = "false"
    DEFAULT_ACTOR = "system"
    RATELIMIT_ENABLED = False
    TASK_INSTANCE_DEDUP = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url(None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
    }

    def __init__(self):
        missing = [name for name, value in (
            ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
            ("SECRET_KEY", os.getenv("SECRET_KEY")),
        ) if not value]
        if missing:
            raise RuntimeError(f"Production requires environment variables: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
