"""
Customer Registry
Customer Lifecycle State Machine.

Manages customer state transitions with:
  - Transition validation against CUSTOMER_TRANSITIONS
  - Task gating (open mandatory tasks block ACTIVATE / UNLOCK / REOPEN)
  - Predefined task attachment (LOCK → UNLOCK tasks, CLOSE → REOPEN tasks)
  - Audit log (CustomerCommand)

5 valid transitions:
  ACTIVATE, LOCK, UNLOCK, CLOSE, REOPEN

Check order for a command:
  customer exists → action supported → source state allowed → gate clear

A command in the wrong source state is rejected (CustomerTransitionError,
HTTP 400); nothing is written and no event is published.

Usage:
    from customer_registry.services.customer_lifecycle import transition_customer

    result = transition_customer("C-001", "ACTIVATE", actor="alice", comment="KYC ok")
"""

import logging
from datetime import date

from customer_registry.core.exceptions import ConflictError, ValidationError
from customer_registry.models import db
from customer_registry.models.audit import write_command
from customer_registry.models.customer import Customer
from customer_registry.services import task_service
from customer_registry.services.helpers.repositories import CustomerRepository, TaskDefinitionRepository

logger = logging.getLogger(__name__)


# Customer transition rules
#   from:     allowed source states
#   to:       resulting state
#   gate:     command checked against open mandatory tasks (None = ungated)
#   attaches: predefined tasks tagged with this command are attached on success
CUSTOMER_TRANSITIONS = {
    "ACTIVATE": {"from": ["PENDING"], "to": "ACTIVE", "gate": "ACTIVATE", "attaches": None},
    "LOCK": {"from": ["ACTIVE"], "to": "LOCKED", "gate": None, "attaches": "UNLOCK"},
    "UNLOCK": {"from": ["LOCKED"], "to": "ACTIVE", "gate": "UNLOCK", "attaches": None},
    "CLOSE": {"from": ["ACTIVE", "LOCKED", "PENDING"], "to": "CLOSED", "gate": None, "attaches": "REOPEN"},
    "REOPEN": {"from": ["CLOSED"], "to": "ACTIVE", "gate": "REOPEN", "attaches": None},
}


class CustomerTransitionError(ValidationError):
    """Raised when an action is unknown or not allowed from the current state."""

    def __init__(self, identifier: str, action: str, current: str, reason: str | None = None):
        msg = f"Cannot '{action}' customer {identifier} (state={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"action": action, "current_state": current})
        self.identifier = identifier
        self.action = action
        self.current_state = current


class OpenTasksError(ConflictError):
    """Raised when open mandatory tasks block a gated transition."""

    def __init__(self, identifier: str, action: str, blocking: list[str]):
        super().__init__(
            f"Open Tasks for customer {identifier} exists.",
            details={"action": action, "tasks": blocking},
        )
        self.identifier = identifier
        self.action = action
        self.blocking = blocking


def validate_customer_transition(customer: Customer, action: str) -> dict:
    """Validate whether an action is valid for the customer's current state.

    Pure check: consults the transition table only, never the task gate.
    """
    rule = CUSTOMER_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": customer.current_state, "to": None,
                "reason": f"Unsupported action: {action}"}

    if customer.current_state not in rule["from"]:
        return {"valid": False, "from": customer.current_state, "to": rule["to"],
                "reason": f"Cannot '{action}' from state '{customer.current_state}'"}

    return {"valid": True, "from": customer.current_state, "to": rule["to"], "reason": None}


def transition_customer(identifier: str, action: str, *, actor: str, comment: str | None = None) -> dict:
    """
    Execute a customer lifecycle transition.

    Args:
        identifier: Customer business key
        action: One of the 5 lifecycle commands
        actor: Who is performing the action
        comment: Free text stored on the audit row

    Returns:
        {"identifier", "action", "previous_state", "new_state", "attached_tasks"}

    Raises:
        NotFoundError, CustomerTransitionError, OpenTasksError
        ValidationError: comment is not a string
    """
    if comment is not None and not isinstance(comment, str):
        raise ValidationError("comment must be a string", details={"comment": type(comment).__name__})

    customer = CustomerRepository.get(identifier)
    action = (action or "").upper()

    # 1. Validate transition
    validation = validate_customer_transition(customer, action)
    if not validation["valid"]:
        logger.warning(
            "Rejected %s for customer %s: %s", action, identifier, validation["reason"],
            extra={"customer_id": identifier, "command": action, "actor": actor},
        )
        raise CustomerTransitionError(identifier, action, customer.current_state, validation["reason"])

    rule = CUSTOMER_TRANSITIONS[action]

    # 2. Gate check
    if rule["gate"]:
        blocking = task_service.open_mandatory_tasks(customer, rule["gate"])
        if blocking:
            blocking_ids = [d.identifier for d in blocking]
            logger.warning(
                "Blocked %s for customer %s by open mandatory tasks: %s",
                action, identifier, ", ".join(blocking_ids),
                extra={"customer_id": identifier, "command": action, "actor": actor},
            )
            raise OpenTasksError(identifier, action, blocking_ids)

    # 3. Execute transition
    previous_state = customer.current_state
    customer.current_state = rule["to"]

    # 4. Side effects
    if action == "ACTIVATE" and customer.application_date is None:
        customer.application_date = date.today()

    attached = []
    if rule["attaches"]:
        attached = task_service.attach_predefined_tasks(customer, rule["attaches"])

    customer.touch(actor)

    # 5. Audit log
    write_command(customer_id=customer.id, action=action, actor=actor, comment=comment)
    db.session.flush()

    logger.info(
        "Customer %s: %s → %s (%s by %s)",
        identifier, previous_state, customer.current_state, action, actor,
        extra={"customer_id": identifier, "command": action, "actor": actor},
    )

    return {
        "identifier": customer.identifier,
        "action": action,
        "previous_state": previous_state,
        "new_state": customer.current_state,
        "attached_tasks": len(attached),
    }


def get_available_customer_transitions(customer: Customer) -> list[str]:
    """Get list of valid actions for a customer's current state."""
    return [action for action, rule in CUSTOMER_TRANSITIONS.items() if customer.current_state in rule["from"]]


def get_process_steps(identifier: str) -> list[dict]:
    """
    Next commands available from the current state.

    Each step lists the task definitions of the customer's open instances
    relevant to that command; ``blocked`` is true when any of them is
    mandatory.
    """
    customer = CustomerRepository.get(identifier)
    # Stacked duplicates list their definition once
    open_definitions = list({
        d.identifier: d for _, d in TaskDefinitionRepository.instances_for(customer, open_only=True)
    }.values())

    steps = []
    for action in get_available_customer_transitions(customer):
        definitions = [d for d in open_definitions if d.gates(action)]
        steps.append({
            "action": action,
            "task_definitions": [d.to_dict() for d in definitions],
            "blocked": any(d.mandatory for d in definitions),
        })
    return steps
