"""
Customer Registry
JSON error responses.

Every error leaving the API has the same shape::

    {"error": "<message>", "code": "ERR_...", "details": {...}}

``details`` is omitted when empty.  Status codes default from the error code,
so handlers usually only pass ``code`` and ``message``.
"""

from flask import jsonify


class E:
    """Error codes."""

    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    UNSUPPORTED_MEDIA_TYPE = "ERR_UNSUPPORTED_MEDIA_TYPE"
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    INTERNAL = "ERR_INTERNAL"


STATUS_BY_CODE = {
    E.VALIDATION_INVALID: 400,
    E.UNSUPPORTED_MEDIA_TYPE: 415,
    E.UNAUTHORIZED: 401,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for *code*; unknown codes map to 400."""
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or STATUS_BY_CODE.get(code, 400)
