"""
Customer Registry
Authentication & actor-context middleware.

Provides:
    - API key authentication via X-API-Key header or ?api_key= query param
    - Acting-user resolution (``g.current_user``) used to stamp
      createdBy / lastModifiedBy / executedBy audit fields
    - Content-Type enforcement for state-changing requests

Actor resolution order:
    1. ``User`` request header
    2. actor bound to the API key (``API_KEYS="key:actor,..."``)
    3. ``DEFAULT_ACTOR`` config value

Configuration (env vars):
    API_KEYS          -- comma-separated list of "<key>:<actor>" pairs
    API_AUTH_ENABLED  -- set to "false" to disable auth (development / tests)
"""

import logging
import os
from typing import Optional

from flask import current_app, g, has_request_context, request

from customer_registry.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ACTOR_HEADER = "User"
_MAX_ACTOR_LENGTH = 32


def _parse_api_keys() -> dict[str, str]:
    """
    Parse API_KEYS env var into {key: actor} mapping.

    Keys without an actor map to the configured DEFAULT_ACTOR.
    """
    raw = os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    default_actor = current_app.config.get("DEFAULT_ACTOR", "system")
    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if ":" in entry:
            key, actor = entry.rsplit(":", 1)
            keys[key.strip()] = actor.strip() or default_actor
        else:
            keys[entry] = default_actor
    return keys


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in ("false", "0", "no", "off")
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    """Extract API key from request header or query parameter."""
    key = request.headers.get("X-API-Key", "").strip()
    if key:
        return key
    return request.args.get("api_key", "").strip() or None


def current_actor() -> str:
    """Return the acting user for the current request (or the default actor)."""
    if has_request_context():
        actor = getattr(g, "current_user", None)
        if actor:
            return actor
    try:
        return current_app.config.get("DEFAULT_ACTOR", "system")
    except RuntimeError:
        return "system"


def _bind_actor(fallback: str | None = None) -> None:
    header_actor = request.headers.get(ACTOR_HEADER, "").strip()
    actor = header_actor or fallback or current_app.config.get("DEFAULT_ACTOR", "system")
    g.current_user = actor[:_MAX_ACTOR_LENGTH]


def _check_content_type():
    """
    For POST/PUT requests with a body, require JSON (or multipart for page
    uploads).  HTML forms cannot send application/json, which keeps
    cross-site form posts out.
    """
    if request.method in ("POST", "PUT", "PATCH"):
        ct = request.content_type or ""
        if request.content_length and "json" not in ct and "multipart/form-data" not in ct:
            return api_error(
                E.UNSUPPORTED_MEDIA_TYPE,
                "Content-Type must be application/json or multipart/form-data",
            )
    return None


def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Attaches a before_request hook for API routes
    - Skips health probes and CORS pre-flight requests
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path.startswith("/api/v1/health"):
            return None
        if request.method == "OPTIONS":
            return None

        ct_error = _check_content_type()
        if ct_error:
            return ct_error

        if not _is_auth_enabled():
            _bind_actor()
            return None

        api_key = _get_api_key_from_request()
        if not api_key:
            return api_error(E.UNAUTHORIZED, "Authentication required. Provide X-API-Key header.")

        api_keys = _parse_api_keys()
        if not api_keys:
            logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
            return api_error(E.INTERNAL, "Server authentication not configured")

        key_actor = api_keys.get(api_key)
        if key_actor is None:
            logger.warning("Invalid API key attempt: %s...", api_key[:8])
            return api_error(E.UNAUTHORIZED, "Invalid API key")

        _bind_actor(key_actor)
        return None

    logger.info("Auth middleware installed (enabled=%s)", app.config.get("API_AUTH_ENABLED"))
