"""
Customer Registry
Task Gating Engine + task catalog management.

The gating engine materialises task instances when a lifecycle command fires
and answers the single question the lifecycle state machine asks before
entering a gated state: "is an unexecuted mandatory task blocking command X
for customer Y?".

Catalog:
    create / update / get / list / delete TaskDefinition

Gating:
    attach_predefined_tasks(customer, fired_command)
    has_open_mandatory_tasks(customer, gated_command)
    open_mandatory_tasks(customer, gated_command)

Customer tasks:
    add_task_to_customer     -- manual attach, bypasses predefined/command filters
    execute_task             -- marks the first open instance, with
                               ID_CARD / FOUR_EYES preconditions
    list_tasks_for_customer

Services flush but never commit; ``command_gateway`` owns the transaction.
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from customer_registry.core.exceptions import ConflictError, NotFoundError, ValidationError
from customer_registry.models import db
from customer_registry.models.customer import Customer
from customer_registry.models.task import GATED_COMMANDS, TASK_TYPES, TaskDefinition, TaskInstance
from customer_registry.services.helpers.repositories import (
    CustomerRepository,
    TaskDefinitionRepository,
)
from customer_registry.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

_MAX_IDENTIFIER = 32
_MAX_NAME = 256
_MAX_DESCRIPTION = 4096


class TaskPreconditionError(ConflictError):
    """Raised when a type-specific precondition blocks task execution."""

    def __init__(self, task_identifier: str, task_type: str, reason: str):
        super().__init__(reason, details={"task": task_identifier, "type": task_type})
        self.task_identifier = task_identifier
        self.task_type = task_type


# ═════════════════════════════════════════════════════════════════════════════
# Catalog
# ═════════════════════════════════════════════════════════════════════════════


def _validate_commands(commands) -> set[str]:
    if commands is None:
        return set()
    if isinstance(commands, str) or not isinstance(commands, (list, tuple, set)):
        raise ValidationError("commands must be a list", details={"commands": "invalid"})
    unknown = [c for c in commands if c not in GATED_COMMANDS]
    if unknown:
        raise ValidationError(
            f"Unsupported task commands: {', '.join(map(str, unknown))}. "
            f"Allowed: {', '.join(GATED_COMMANDS)}",
            details={"commands": [str(c) for c in unknown]},
        )
    return set(commands)


def _validate_definition_fields(data: dict) -> dict:
    """Return the cleaned field set for a TaskDefinition create/update."""
    task_type = str(data.get("type") or "").strip().upper()
    if task_type not in TASK_TYPES:
        raise ValidationError(
            f"type must be one of {', '.join(sorted(TASK_TYPES))}",
            details={"type": data.get("type")},
        )

    name = str(data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "missing"})
    if len(name) > _MAX_NAME:
        raise ValidationError(f"name must be at most {_MAX_NAME} characters")

    description = data.get("description")
    if description is not None:
        if not isinstance(description, str):
            raise ValidationError("description must be a string", details={"description": type(description).__name__})
        if len(description) > _MAX_DESCRIPTION:
            raise ValidationError(f"description must be at most {_MAX_DESCRIPTION} characters")

    return {
        "type": task_type,
        "name": name,
        "description": description,
        "commands": _validate_commands(data.get("commands")),
        "mandatory": parse_bool(data.get("mandatory"), default=False),
        "predefined": parse_bool(data.get("predefined"), default=False),
    }


def create_task_definition(data: dict) -> TaskDefinition:
    """Add a definition to the global catalog.

    Raises:
        ValidationError: missing/invalid fields or non-gated commands.
        ConflictError: identifier already taken.
    """
    identifier = str(data.get("identifier") or "").strip()
    if not identifier:
        raise ValidationError("identifier is required", details={"identifier": "missing"})
    if len(identifier) > _MAX_IDENTIFIER:
        raise ValidationError(f"identifier must be at most {_MAX_IDENTIFIER} characters")

    fields = _validate_definition_fields(data)

    if TaskDefinitionRepository.find(identifier) is not None:
        raise ConflictError.duplicate("TaskDefinition", "identifier", identifier)

    definition = TaskDefinition(
        identifier=identifier,
        type=fields["type"],
        name=fields["name"],
        description=fields.get("description"),
        mandatory=fields["mandatory"],
        predefined=fields["predefined"],
    )
    definition.commands = fields["commands"]
    db.session.add(definition)
    db.session.flush()

    logger.info(
        "Task definition created: %s (type=%s, commands=%s, mandatory=%s, predefined=%s)",
        identifier, definition.type, definition.assigned_commands,
        definition.mandatory, definition.predefined,
        extra={"task_id": identifier},
    )
    return definition


def update_task_definition(identifier: str, data: dict) -> TaskDefinition:
    """Replace the mutable fields of a definition; the identifier never changes."""
    body_identifier = data.get("identifier")
    if body_identifier is not None and body_identifier != identifier:
        raise ValidationError(
            "Task identifier in body does not match the path",
            details={"path": identifier, "body": body_identifier},
        )

    definition = TaskDefinitionRepository.get(identifier)
    fields = _validate_definition_fields(data)

    definition.type = fields["type"]
    definition.name = fields["name"]
    definition.description = fields.get("description")
    definition.commands = fields["commands"]
    definition.mandatory = fields["mandatory"]
    definition.predefined = fields["predefined"]
    db.session.flush()

    logger.info("Task definition updated: %s", identifier, extra={"task_id": identifier})
    return definition


def delete_task_definition(identifier: str) -> bool:
    """Remove a definition from the catalog.

    Deleting an absent definition succeeds silently (returns False).
    A definition still referenced by task instances cannot be removed.
    """
    definition = TaskDefinitionRepository.find(identifier)
    if definition is None:
        logger.debug("Task definition %s already absent, delete is a no-op", identifier)
        return False

    references = TaskDefinitionRepository.reference_count(definition)
    if references:
        raise ConflictError(
            f"Task definition {identifier} is attached to {references} customer task(s)",
            details={"task": identifier, "instances": references},
        )

    db.session.delete(definition)
    db.session.flush()
    logger.info("Task definition deleted: %s", identifier, extra={"task_id": identifier})
    return True


def get_task_definition(identifier: str) -> TaskDefinition:
    return TaskDefinitionRepository.get(identifier)


def list_task_definitions() -> list[TaskDefinition]:
    return TaskDefinitionRepository.all()


# ═════════════════════════════════════════════════════════════════════════════
# Gating
# ═════════════════════════════════════════════════════════════════════════════


def _has_open_instance(customer: Customer, definition: TaskDefinition) -> bool:
    return (
        db.session.query(TaskInstance.id)
        .filter_by(customer_id=customer.id, task_definition_id=definition.id)
        .filter(TaskInstance.executed_by.is_(None))
        .first()
    ) is not None


def attach_predefined_tasks(customer: Customer, fired_command: str) -> list[TaskInstance]:
    """
    Attach every predefined definition tagged with *fired_command* to *customer*.

    By default instances stack: a definition that already has an open
    instance gets another one, and the duplicate is logged at WARNING.
    With ``TASK_INSTANCE_DEDUP`` enabled such definitions are skipped.
    """
    dedup = bool(current_app.config.get("TASK_INSTANCE_DEDUP", False))
    attached = []

    for definition in TaskDefinitionRepository.predefined_for(fired_command):
        if _has_open_instance(customer, definition):
            if dedup:
                logger.info(
                    "Skipping predefined task %s for customer %s, open instance exists",
                    definition.identifier, customer.identifier,
                    extra={"customer_id": customer.identifier, "task_id": definition.identifier},
                )
                continue
            logger.warning(
                "Stacking duplicate open task %s on customer %s (fired by %s)",
                definition.identifier, customer.identifier, fired_command,
                extra={
                    "customer_id": customer.identifier,
                    "task_id": definition.identifier,
                    "command": fired_command,
                },
            )

        instance = TaskInstance(customer_id=customer.id, task_definition_id=definition.id)
        db.session.add(instance)
        attached.append(instance)

    if attached:
        db.session.flush()
        logger.info(
            "Attached %d predefined task(s) to customer %s for %s",
            len(attached), customer.identifier, fired_command,
            extra={"customer_id": customer.identifier, "command": fired_command},
        )
    return attached


def open_mandatory_tasks(customer: Customer, gated_command: str) -> list[TaskDefinition]:
    """Definitions of open, mandatory instances relevant to *gated_command*."""
    return [
        definition
        for instance, definition in TaskDefinitionRepository.instances_for(customer, open_only=True)
        if definition.mandatory and definition.gates(gated_command)
    ]


def has_open_mandatory_tasks(customer: Customer, gated_command: str) -> bool:
    return bool(open_mandatory_tasks(customer, gated_command))


# ═════════════════════════════════════════════════════════════════════════════
# Customer tasks
# ═════════════════════════════════════════════════════════════════════════════


def add_task_to_customer(customer_identifier: str, task_identifier: str, *, actor: str) -> TaskInstance:
    """Attach any definition to a customer, regardless of its flags."""
    customer = CustomerRepository.get(customer_identifier)
    definition = TaskDefinitionRepository.get(task_identifier)

    instance = TaskInstance(customer_id=customer.id, task_definition_id=definition.id)
    db.session.add(instance)
    customer.touch(actor)
    db.session.flush()

    logger.info(
        "Task %s attached to customer %s by %s",
        task_identifier, customer_identifier, actor,
        extra={"customer_id": customer_identifier, "task_id": task_identifier, "actor": actor},
    )
    return instance


def _check_execution_preconditions(customer: Customer, definition: TaskDefinition, actor: str) -> None:
    if definition.type == "ID_CARD":
        if not CustomerRepository.has_identification_card(customer):
            raise TaskPreconditionError(
                definition.identifier, definition.type,
                "No identification cards for customer found.",
            )
    elif definition.type == "FOUR_EYES":
        if actor in (customer.created_by, customer.assigned_employee):
            raise TaskPreconditionError(
                definition.identifier, definition.type,
                "Signing user must be different than creator.",
            )


def execute_task(customer_identifier: str, task_identifier: str, *, actor: str) -> TaskInstance:
    """
    Mark the oldest open instance of *task_identifier* on the customer as executed.

    Raises:
        NotFoundError: customer, definition, or open instance missing.
        TaskPreconditionError: ID_CARD without a card on file, or FOUR_EYES
            executed by the creator / assigned employee.
    """
    customer = CustomerRepository.get(customer_identifier)
    definition = TaskDefinitionRepository.get(task_identifier)

    instance = (
        TaskInstance.query
        .filter_by(customer_id=customer.id, task_definition_id=definition.id)
        .filter(TaskInstance.executed_by.is_(None))
        .order_by(TaskInstance.id)
        .first()
    )
    if instance is None:
        raise NotFoundError(resource=f"Open task for customer '{customer_identifier}'", resource_id=task_identifier)

    try:
        _check_execution_preconditions(customer, definition, actor)
    except TaskPreconditionError as exc:
        logger.warning(
            "Task %s rejected for customer %s: %s", task_identifier, customer_identifier, exc,
            extra={"customer_id": customer_identifier, "task_id": task_identifier, "actor": actor},
        )
        raise

    instance.executed_by = actor
    instance.executed_on = datetime.now(timezone.utc)
    customer.touch(actor)
    db.session.flush()

    logger.info(
        "Task %s executed for customer %s by %s",
        task_identifier, customer_identifier, actor,
        extra={"customer_id": customer_identifier, "task_id": task_identifier, "actor": actor},
    )
    return instance


def list_tasks_for_customer(customer_identifier: str, *, include_executed: bool = True) -> list[dict]:
    """Serialised task instances of a customer, oldest first."""
    customer = CustomerRepository.get(customer_identifier)
    pairs = TaskDefinitionRepository.instances_for(customer, open_only=not include_executed)
    return [instance.to_dict(definition) for instance, definition in pairs]
