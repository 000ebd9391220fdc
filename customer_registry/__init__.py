"""
Customer Registry
Flask application factory.

Usage:
    from customer_registry import create_app
    app = create_app()           # APP_ENV or "development"
    app = create_app("testing")
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from customer_registry.auth import init_auth
from customer_registry.config import config
from customer_registry.middleware.logging_config import configure_logging
from customer_registry.middleware.rate_limiter import init_rate_limits
from customer_registry.middleware.timing import init_request_timing
from customer_registry.models import db
from customer_registry.services.events import init_events
from customer_registry.utils.errors import E, api_error

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS") or ""
    if origins == "*":
        CORS(app)
    elif origins:
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])


def _create_tables(app, config_name):
    from customer_registry.models import audit, customer, document, task  # noqa: F401

    if config_name == "development":
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()
    logger.debug("Tables ensured for %s", config_name)


def _register_blueprints(app):
    from customer_registry.blueprints.customer_bp import customer_bp
    from customer_registry.blueprints.document_bp import document_bp
    from customer_registry.blueprints.health_bp import health_bp
    from customer_registry.blueprints.task_bp import task_bp

    for bp in (customer_bp, task_bp, document_bp, health_bp):
        app.register_blueprint(bp)


def _register_error_handlers(app):

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, f"Method {request.method} not allowed", status=405)

    @app.errorhandler(413)
    def payload_too_large(e):
        # Oversized page images are rejected like any other invalid upload
        if request.endpoint == "document.add_page":
            max_size = app.config["UPLOAD_IMAGE_MAX_SIZE"]
            return api_error(
                E.VALIDATION_INVALID, f"Image exceeds the maximum size of {max_size} bytes",
                status=400, details={"size": request.content_length, "max_size": max_size},
            )
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.VALIDATION_INVALID, "Too many requests", status=429,
                         details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def create_app(config_name=None):
    """
    Build the application for *config_name* ("development", "testing",
    "production"); defaults to the APP_ENV environment variable.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    # Multipart overhead on top of the largest accepted page image
    if app.config.get("MAX_CONTENT_LENGTH") is None:
        app.config["MAX_CONTENT_LENGTH"] = 2 * app.config["UPLOAD_IMAGE_MAX_SIZE"]

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    init_auth(app)
    init_events(app)

    _create_tables(app, config_name)
    _register_blueprints(app)
    _register_error_handlers(app)
    init_rate_limits(app, limiter)

    logger.info("Customer Registry started (config=%s)", config_name)
    return app
