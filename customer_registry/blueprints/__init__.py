"""
Customer Registry
Blueprint registry and shared request helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from customer_registry.core.exceptions import ConflictError, NotFoundError, ValidationError
from customer_registry.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    """Map service exceptions to the standard JSON error body for *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(error.code, str(error), status=400, details=error.details or None)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(error.code, str(error), status=409, details=error.details or None)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")


def json_body() -> dict:
    """Request JSON as a dict; anything else is a bad request."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def int_arg(name: str, default: int) -> int:
    """Integer query parameter; malformed values are a bad request."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", details={name: raw})
