"""
Customer Registry
Command gateway: single entry point for every state-changing operation.

Each command is a frozen dataclass.  ``process(command)`` looks its type up in
``_ROUTES`` (command type → handler, event name), runs the handler inside one
database transaction and, only after a successful commit, publishes the named
event with the handler's payload.

    handler raises      → rollback, nothing published, exception propagates
    commit fails        → rollback, nothing published
    subscriber fails    → logged by the bus, committed state unaffected

Usage:
    from customer_registry.services import command_gateway
    from customer_registry.services.command_gateway import ActivateCustomer

    command_gateway.process(ActivateCustomer(identifier="C-001", actor="alice"))
"""

import logging
from dataclasses import dataclass, field
from typing import ClassVar

from sqlalchemy.exc import IntegrityError

from customer_registry.core.exceptions import ConflictError, ValidationError
from customer_registry.models import db
from customer_registry.services import customer_lifecycle, customer_service, document_service, events, task_service
from customer_registry.services.events import event_bus

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Commands
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CreateCustomer:
    data: dict
    actor: str = "system"


@dataclass(frozen=True)
class UpdateCustomer:
    identifier: str
    data: dict
    actor: str = "system"


@dataclass(frozen=True)
class UpdateAddress:
    identifier: str
    address: dict
    actor: str = "system"


@dataclass(frozen=True)
class UpdateContactDetails:
    identifier: str
    contact_details: list = field(default_factory=list)
    actor: str = "system"


@dataclass(frozen=True)
class _LifecycleCommand:
    action: ClassVar[str] = ""

    identifier: str
    comment: str | None = None
    actor: str = "system"


@dataclass(frozen=True)
class ActivateCustomer(_LifecycleCommand):
    action: ClassVar[str] = "ACTIVATE"


@dataclass(frozen=True)
class LockCustomer(_LifecycleCommand):
    action: ClassVar[str] = "LOCK"


@dataclass(frozen=True)
class UnlockCustomer(_LifecycleCommand):
    action: ClassVar[str] = "UNLOCK"


@dataclass(frozen=True)
class CloseCustomer(_LifecycleCommand):
    action: ClassVar[str] = "CLOSE"


@dataclass(frozen=True)
class ReopenCustomer(_LifecycleCommand):
    action: ClassVar[str] = "REOPEN"


@dataclass(frozen=True)
class CreateTaskDefinition:
    data: dict
    actor: str = "system"


@dataclass(frozen=True)
class UpdateTaskDefinition:
    identifier: str
    data: dict
    actor: str = "system"


@dataclass(frozen=True)
class DeleteTaskDefinition:
    identifier: str
    actor: str = "system"


@dataclass(frozen=True)
class AddTaskToCustomer:
    customer_identifier: str
    task_identifier: str
    actor: str = "system"


@dataclass(frozen=True)
class ExecuteTaskForCustomer:
    customer_identifier: str
    task_identifier: str
    actor: str = "system"


@dataclass(frozen=True)
class CreateIdentificationCard:
    customer_identifier: str
    data: dict
    actor: str = "system"


@dataclass(frozen=True)
class UpdateIdentificationCard:
    customer_identifier: str
    number: str
    data: dict
    actor: str = "system"


@dataclass(frozen=True)
class DeleteIdentificationCard:
    customer_identifier: str
    number: str
    actor: str = "system"


@dataclass(frozen=True)
class CreateDocument:
    customer_identifier: str
    document_identifier: str
    data: dict = field(default_factory=dict)
    actor: str = "system"


@dataclass(frozen=True)
class ChangeDocument:
    customer_identifier: str
    document_identifier: str
    data: dict = field(default_factory=dict)
    actor: str = "system"


@dataclass(frozen=True)
class DeleteDocument:
    customer_identifier: str
    document_identifier: str
    actor: str = "system"


@dataclass(frozen=True)
class CreateDocumentPage:
    customer_identifier: str
    document_identifier: str
    page_number: int
    content_type: str | None
    image: bytes | None
    actor: str = "system"


@dataclass(frozen=True)
class DeleteDocumentPage:
    customer_identifier: str
    document_identifier: str
    page_number: int
    actor: str = "system"


@dataclass(frozen=True)
class CompleteDocument:
    customer_identifier: str
    document_identifier: str
    completed: bool
    actor: str = "system"


LIFECYCLE_COMMANDS = {
    cls.action: cls
    for cls in (ActivateCustomer, LockCustomer, UnlockCustomer, CloseCustomer, ReopenCustomer)
}


def lifecycle_command(action, identifier: str, *, comment: str | None = None, actor: str = "system"):
    """Build the lifecycle command for *action* (case-insensitive).

    Raises:
        ValidationError: action is not one of the lifecycle commands.
    """
    cls = LIFECYCLE_COMMANDS.get(str(action or "").upper())
    if cls is None:
        raise ValidationError(
            f"Unsupported action: {action}",
            details={"action": action, "supported": list(LIFECYCLE_COMMANDS)},
        )
    return cls(identifier=identifier, comment=comment, actor=actor)


# ═════════════════════════════════════════════════════════════════════════════
# Handlers: each returns the event payload
# ═════════════════════════════════════════════════════════════════════════════


def _create_customer(cmd: CreateCustomer) -> dict:
    customer = customer_service.create_customer(cmd.data, actor=cmd.actor)
    return {"identifier": customer.identifier}


def _update_customer(cmd: UpdateCustomer) -> dict:
    customer_service.update_customer(cmd.identifier, cmd.data, actor=cmd.actor)
    return {"identifier": cmd.identifier}


def _update_address(cmd: UpdateAddress) -> dict:
    customer_service.update_address(cmd.identifier, cmd.address, actor=cmd.actor)
    return {"identifier": cmd.identifier}


def _update_contact_details(cmd: UpdateContactDetails) -> dict:
    customer_service.update_contact_details(cmd.identifier, cmd.contact_details, actor=cmd.actor)
    return {"identifier": cmd.identifier}


def _transition(cmd: _LifecycleCommand) -> dict:
    return customer_lifecycle.transition_customer(
        cmd.identifier, cmd.action, actor=cmd.actor, comment=cmd.comment,
    )


def _create_task_definition(cmd: CreateTaskDefinition) -> dict:
    definition = task_service.create_task_definition(cmd.data)
    return {"identifier": definition.identifier}


def _update_task_definition(cmd: UpdateTaskDefinition) -> dict:
    task_service.update_task_definition(cmd.identifier, cmd.data)
    return {"identifier": cmd.identifier}


def _delete_task_definition(cmd: DeleteTaskDefinition) -> dict:
    deleted = task_service.delete_task_definition(cmd.identifier)
    return {"identifier": cmd.identifier, "deleted": deleted}


def _add_task(cmd: AddTaskToCustomer) -> dict:
    task_service.add_task_to_customer(cmd.customer_identifier, cmd.task_identifier, actor=cmd.actor)
    return {"identifier": cmd.customer_identifier, "task": cmd.task_identifier}


def _execute_task(cmd: ExecuteTaskForCustomer) -> dict:
    task_service.execute_task(cmd.customer_identifier, cmd.task_identifier, actor=cmd.actor)
    return {"identifier": cmd.customer_identifier, "task": cmd.task_identifier}


def _create_card(cmd: CreateIdentificationCard) -> dict:
    card = customer_service.create_identification_card(cmd.customer_identifier, cmd.data, actor=cmd.actor)
    return {"identifier": cmd.customer_identifier, "number": card.number}


def _update_card(cmd: UpdateIdentificationCard) -> dict:
    customer_service.update_identification_card(cmd.customer_identifier, cmd.number, cmd.data, actor=cmd.actor)
    return {"identifier": cmd.customer_identifier, "number": cmd.number}


def _delete_card(cmd: DeleteIdentificationCard) -> dict:
    customer_service.delete_identification_card(cmd.customer_identifier, cmd.number)
    return {"identifier": cmd.customer_identifier, "number": cmd.number}


def _document_payload(cmd, **extra) -> dict:
    return {
        "customer_identifier": cmd.customer_identifier,
        "document_identifier": cmd.document_identifier,
        **extra,
    }


def _create_document(cmd: CreateDocument) -> dict:
    document_service.create_document(cmd.customer_identifier, cmd.document_identifier, cmd.data, actor=cmd.actor)
    return _document_payload(cmd)


def _change_document(cmd: ChangeDocument) -> dict:
    document_service.change_document(cmd.customer_identifier, cmd.document_identifier, cmd.data, actor=cmd.actor)
    return _document_payload(cmd)


def _delete_document(cmd: DeleteDocument) -> dict:
    document_service.delete_document(cmd.customer_identifier, cmd.document_identifier)
    return _document_payload(cmd)


def _add_page(cmd: CreateDocumentPage) -> dict:
    page = document_service.add_page(
        cmd.customer_identifier, cmd.document_identifier, cmd.page_number,
        content_type=cmd.content_type, image=cmd.image,
    )
    return _document_payload(cmd, page_number=page.page_number)


def _delete_page(cmd: DeleteDocumentPage) -> dict:
    document_service.delete_page(cmd.customer_identifier, cmd.document_identifier, cmd.page_number)
    return _document_payload(cmd, page_number=cmd.page_number)


def _complete_document(cmd: CompleteDocument) -> dict:
    document_service.complete_document(
        cmd.customer_identifier, cmd.document_identifier, cmd.completed, actor=cmd.actor,
    )
    return _document_payload(cmd)


# Command type → (handler, event name)
_ROUTES = {
    CreateCustomer: (_create_customer, events.POST_CUSTOMER),
    UpdateCustomer: (_update_customer, events.PUT_CUSTOMER),
    UpdateAddress: (_update_address, events.PUT_ADDRESS),
    UpdateContactDetails: (_update_contact_details, events.PUT_CONTACT_DETAILS),
    ActivateCustomer: (_transition, events.ACTIVATE_CUSTOMER),
    LockCustomer: (_transition, events.LOCK_CUSTOMER),
    UnlockCustomer: (_transition, events.UNLOCK_CUSTOMER),
    CloseCustomer: (_transition, events.CLOSE_CUSTOMER),
    ReopenCustomer: (_transition, events.REOPEN_CUSTOMER),
    CreateTaskDefinition: (_create_task_definition, events.POST_TASK),
    UpdateTaskDefinition: (_update_task_definition, events.PUT_TASK),
    DeleteTaskDefinition: (_delete_task_definition, events.DELETE_TASK),
    AddTaskToCustomer: (_add_task, events.PUT_CUSTOMER),
    ExecuteTaskForCustomer: (_execute_task, events.PUT_CUSTOMER),
    CreateIdentificationCard: (_create_card, events.POST_IDENTIFICATION_CARD),
    UpdateIdentificationCard: (_update_card, events.PUT_IDENTIFICATION_CARD),
    DeleteIdentificationCard: (_delete_card, events.DELETE_IDENTIFICATION_CARD),
    CreateDocument: (_create_document, events.POST_DOCUMENT),
    ChangeDocument: (_change_document, events.PUT_DOCUMENT),
    DeleteDocument: (_delete_document, events.DELETE_DOCUMENT),
    CreateDocumentPage: (_add_page, events.POST_DOCUMENT_PAGE),
    DeleteDocumentPage: (_delete_page, events.DELETE_DOCUMENT_PAGE),
    CompleteDocument: (_complete_document, events.POST_DOCUMENT_COMPLETE),
}


def event_name_for(command) -> str:
    """Event published when *command* succeeds."""
    return _ROUTES[type(command)][1]


def process(command) -> dict:
    """
    Run *command* in one transaction and publish its event after commit.

    Returns:
        The event payload.

    Raises:
        TypeError: no route registered for the command type.
        NotFoundError / ValidationError / ConflictError from the handler.
    """
    route = _ROUTES.get(type(command))
    if route is None:
        raise TypeError(f"No handler registered for {type(command).__name__}")
    handler, event_name = route

    try:
        payload = handler(command)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity violation in %s: %s", type(command).__name__, exc.orig,
                       extra={"event_type": event_name})
        raise ConflictError(
            "Request conflicts with existing data",
            details={"command": type(command).__name__},
        ) from exc
    except Exception:
        db.session.rollback()
        logger.debug("Rolled back %s", type(command).__name__, extra={"event_type": event_name})
        raise

    event_bus.publish(event_name, payload)
    return payload
