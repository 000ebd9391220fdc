"""
Service-wide exception hierarchy.

Every service raises one of these three types (or a subclass).  Blueprints
register handlers against them once and get consistent HTTP status codes:

    NotFoundError    → 404
    ValidationError  → 400  (malformed input, unsupported action, wrong state,
                              missing document pages, upload checks)
    ConflictError    → 409  (duplicates, open mandatory tasks, completed
                              documents, unmet task preconditions)

Usage:
    from customer_registry.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Customer", resource_id="C-001")
    raise ValidationError("identifier is required", details={"identifier": "missing"})
"""


class NotFoundError(Exception):
    """Raised when a referenced entity does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Customer", "Document").
        resource_id: The business key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" '{resource_id}'"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when a request is malformed or a precondition rejects it as bad input.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_VALIDATION_INVALID"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when the request clashes with the current state of an entity.

    Covers both duplicates (``ConflictError.duplicate``) and state conflicts
    such as open mandatory tasks or a completed document.

    Args:
        message: Human-readable explanation.
        details: Optional structured payload (blocking task ids, ...).
    """

    code = "ERR_CONFLICT_STATE"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    @classmethod
    def duplicate(cls, resource: str, field: str, value: str | None = None) -> "ConflictError":
        err = cls(f"{resource} with {field}={value!r} already exists")
        err.code = "ERR_CONFLICT_DUPLICATE"
        return err
