"""
Customer Registry
Document Completion Workflow.

A document is open (mutable) until it is completed, then immutable for good:
no page add/delete, no description change, no deletion, no un-completion.

Completion gates:
    - already completed            → DocumentCompletedError (409)
    - completed=false on open doc  → ValidationError (400), nothing to uncomplete
    - page numbers not 0..max      → MissingPagesError (400)

Completion re-stamps ``created_by`` / ``created_on`` with the completing
actor and time; the audit fields of a completed document therefore record
the completion, not the original creation.

Services flush but never commit; ``command_gateway`` owns the transaction.
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from customer_registry.core.exceptions import ConflictError, NotFoundError, ValidationError
from customer_registry.models import db
from customer_registry.models.document import Document, DocumentPage
from customer_registry.services.helpers.repositories import CustomerRepository, DocumentRepository

logger = logging.getLogger(__name__)

_MAX_IDENTIFIER = 32
_MAX_DESCRIPTION = 4096


class DocumentCompletedError(ConflictError):
    """Raised when a completed document is asked to change."""

    def __init__(self, customer_identifier: str, document_identifier: str, operation: str):
        super().__init__(
            f"Document {document_identifier} of customer {customer_identifier} is completed; "
            f"cannot {operation}",
            details={"document": document_identifier, "operation": operation},
        )
        self.document_identifier = document_identifier


class MissingPagesError(ValidationError):
    """Raised when page numbers do not form the contiguous range 0..max."""

    def __init__(self, document_identifier: str, missing: list[int]):
        super().__init__(
            f"Document {document_identifier} is missing pages.",
            details={"document": document_identifier, "missing_pages": missing},
        )
        self.missing = missing


def missing_page_numbers(page_numbers) -> list[int]:
    """Gaps in *page_numbers* relative to the range 0..max. Empty input has none."""
    present = set(page_numbers)
    if not present:
        return []
    return [n for n in range(max(present) + 1) if n not in present]


def _check_identifier_matches(path_identifier: str, body: dict) -> None:
    body_identifier = body.get("identifier")
    if body_identifier is not None and body_identifier != path_identifier:
        raise ValidationError(
            "Document identifier in body does not match the path",
            details={"path": path_identifier, "body": body_identifier},
        )


def _open_document(customer_identifier: str, document_identifier: str, operation: str) -> Document:
    customer = CustomerRepository.get(customer_identifier)
    document = DocumentRepository.get(customer, document_identifier)
    if document.completed:
        logger.warning(
            "Rejected %s on completed document %s/%s", operation, customer_identifier, document_identifier,
            extra={"customer_id": customer_identifier, "document_id": document_identifier},
        )
        raise DocumentCompletedError(customer_identifier, document_identifier, operation)
    return document


# ═════════════════════════════════════════════════════════════════════════════
# Document
# ═════════════════════════════════════════════════════════════════════════════


def _clean_description(data: dict) -> str | None:
    description = data.get("description")
    if description is not None:
        description = str(description)
        if len(description) > _MAX_DESCRIPTION:
            raise ValidationError(f"description must be at most {_MAX_DESCRIPTION} characters")
    return description


def create_document(customer_identifier: str, identifier: str, data: dict, *, actor: str) -> Document:
    _check_identifier_matches(identifier, data)
    identifier = (identifier or "").strip()
    if not identifier:
        raise ValidationError("identifier is required", details={"identifier": "missing"})
    if len(identifier) > _MAX_IDENTIFIER:
        raise ValidationError(f"identifier must be at most {_MAX_IDENTIFIER} characters")

    customer = CustomerRepository.get(customer_identifier)
    description = _clean_description(data)

    if DocumentRepository.find(customer, identifier) is not None:
        raise ConflictError.duplicate("Document", "identifier", identifier)

    document = Document(
        customer_id=customer.id,
        identifier=identifier,
        description=description,
        completed=False,
        created_by=actor,
    )
    db.session.add(document)
    db.session.flush()

    logger.info("Document created: %s/%s by %s", customer_identifier, identifier, actor,
                extra={"customer_id": customer_identifier, "document_id": identifier, "actor": actor})
    return document


def change_document(customer_identifier: str, document_identifier: str, data: dict, *, actor: str) -> Document:
    _check_identifier_matches(document_identifier, data)
    document = _open_document(customer_identifier, document_identifier, "change description")
    document.description = _clean_description(data)
    db.session.flush()

    logger.info("Document changed: %s/%s by %s", customer_identifier, document_identifier, actor,
                extra={"customer_id": customer_identifier, "document_id": document_identifier, "actor": actor})
    return document


def delete_document(customer_identifier: str, document_identifier: str) -> None:
    """Delete an open document together with all of its pages."""
    document = _open_document(customer_identifier, document_identifier, "delete document")
    pages = DocumentPage.query.filter_by(document_id=document.id).delete()
    db.session.delete(document)
    db.session.flush()

    logger.info("Document deleted: %s/%s (%d page(s))", customer_identifier, document_identifier, pages,
                extra={"customer_id": customer_identifier, "document_id": document_identifier})


def complete_document(customer_identifier: str, document_identifier: str, completed, *, actor: str) -> Document:
    """
    One-way open → completed gate.

    Raises:
        ValidationError: ``completed`` is not a boolean, or false on an open document.
        DocumentCompletedError: document already completed.
        MissingPagesError: page numbers have gaps.
    """
    customer = CustomerRepository.get(customer_identifier)
    document = DocumentRepository.get(customer, document_identifier)

    if not isinstance(completed, bool):
        raise ValidationError("completed must be a boolean", details={"completed": completed})

    if document.completed:
        raise DocumentCompletedError(customer_identifier, document_identifier, "change completion")
    if not completed:
        raise ValidationError(
            f"Document {document_identifier} is not completed; nothing to uncomplete",
            details={"completed": False},
        )

    missing = missing_page_numbers(DocumentRepository.page_numbers(document))
    if missing:
        logger.warning(
            "Completion of %s/%s rejected, missing pages %s", customer_identifier, document_identifier, missing,
            extra={"customer_id": customer_identifier, "document_id": document_identifier},
        )
        raise MissingPagesError(document_identifier, missing)

    document.completed = True
    document.created_by = actor
    document.created_on = datetime.now(timezone.utc)
    db.session.flush()

    logger.info("Document completed: %s/%s by %s", customer_identifier, document_identifier, actor,
                extra={"customer_id": customer_identifier, "document_id": document_identifier, "actor": actor})
    return document


def list_documents(customer_identifier: str) -> list[dict]:
    customer = CustomerRepository.get(customer_identifier)
    return [d.to_dict() for d in DocumentRepository.for_customer(customer)]


def get_document(customer_identifier: str, document_identifier: str) -> dict:
    customer = CustomerRepository.get(customer_identifier)
    return DocumentRepository.get(customer, document_identifier).to_dict()


# ═════════════════════════════════════════════════════════════════════════════
# Pages
# ═════════════════════════════════════════════════════════════════════════════


def _validate_page_upload(page_number, content_type: str | None, image: bytes | None) -> int:
    try:
        page_number = int(page_number)
    except (TypeError, ValueError):
        raise ValidationError("page number must be an integer", details={"page_number": page_number})
    if page_number < 0:
        raise ValidationError("page number must be >= 0", details={"page_number": page_number})

    allowed = current_app.config.get("UPLOAD_IMAGE_CONTENT_TYPES", ("image/jpeg", "image/png"))
    if content_type not in allowed:
        raise ValidationError(
            f"Unsupported content type {content_type!r}; allowed: {', '.join(allowed)}",
            details={"content_type": content_type},
        )

    if not image:
        raise ValidationError("page image is empty", details={"image": "missing"})
    max_size = current_app.config.get("UPLOAD_IMAGE_MAX_SIZE", 1024 * 1024)
    if len(image) > max_size:
        raise ValidationError(
            f"Image exceeds the maximum size of {max_size} bytes",
            details={"size": len(image), "max_size": max_size},
        )
    return page_number


def add_page(
    customer_identifier: str,
    document_identifier: str,
    page_number,
    *,
    content_type: str | None,
    image: bytes | None,
) -> DocumentPage:
    document = _open_document(customer_identifier, document_identifier, "add page")
    page_number = _validate_page_upload(page_number, content_type, image)

    if DocumentRepository.find_page(document, page_number) is not None:
        raise ConflictError.duplicate("DocumentPage", "page_number", page_number)

    page = DocumentPage(
        document_id=document.id,
        page_number=page_number,
        content_type=content_type,
        size=len(image),
        image=image,
    )
    db.session.add(page)
    db.session.flush()

    logger.info("Page %d added to document %s/%s (%d bytes)",
                page_number, customer_identifier, document_identifier, len(image),
                extra={"customer_id": customer_identifier, "document_id": document_identifier})
    return page


def delete_page(customer_identifier: str, document_identifier: str, page_number: int) -> bool:
    """Remove one page from an open document. An absent page is not an error."""
    document = _open_document(customer_identifier, document_identifier, "delete page")
    page = DocumentRepository.find_page(document, page_number)
    if page is None:
        logger.debug("Page %s of %s/%s already absent, delete is a no-op",
                     page_number, customer_identifier, document_identifier)
        return False

    db.session.delete(page)
    db.session.flush()
    logger.info("Page %d deleted from document %s/%s", page_number, customer_identifier, document_identifier,
                extra={"customer_id": customer_identifier, "document_id": document_identifier})
    return True


def list_page_numbers(customer_identifier: str, document_identifier: str) -> list[int]:
    customer = CustomerRepository.get(customer_identifier)
    return DocumentRepository.page_numbers(DocumentRepository.get(customer, document_identifier))


def get_page(customer_identifier: str, document_identifier: str, page_number: int) -> DocumentPage:
    customer = CustomerRepository.get(customer_identifier)
    document = DocumentRepository.get(customer, document_identifier)
    page = DocumentRepository.find_page(document, page_number)
    if page is None:
        raise NotFoundError(resource=f"Page of document '{document_identifier}'", resource_id=page_number)
    return page
