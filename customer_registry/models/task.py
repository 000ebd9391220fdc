"""
Customer Registry
Task catalog and task instance models.

Models:
    - TaskDefinition:  reusable rule in the global catalog; names the lifecycle
                       commands it gates and whether it is mandatory/predefined
    - TaskInstance:    one definition attached to one customer, open until executed

Architecture:
    TaskDefinition ◀──N:1── TaskInstance ──N:1──▶ Customer

Assigned commands are persisted as a ``;``-joined string and exposed as a
Python set through ``TaskDefinition.commands``.
"""

from datetime import datetime, timezone

from customer_registry.models import db


# ── Constants ────────────────────────────────────────────────────────────────

TASK_TYPES = {"CUSTOM", "ID_CARD", "FOUR_EYES"}

# Only transitions that consult the gate can carry tasks.
GATED_COMMANDS = ("ACTIVATE", "UNLOCK", "REOPEN")

_COMMAND_SEPARATOR = ";"


def _iso(value):
    return value.isoformat() if value else None


def join_commands(commands) -> str:
    """Serialise a command collection into its column form (sorted, de-duplicated)."""
    return _COMMAND_SEPARATOR.join(sorted({c for c in commands or () if c}))


class TaskDefinition(db.Model):
    """Catalog entry describing a task that may gate lifecycle commands."""

    __tablename__ = "task_definitions"

    id = db.Column(db.Integer, primary_key=True)
    identifier = db.Column(db.String(32), unique=True, nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False, comment="CUSTOM | ID_CARD | FOUR_EYES")
    name = db.Column(db.String(256), nullable=False)
    description = db.Column(db.String(4096), nullable=True)
    assigned_commands = db.Column(
        db.String(512), nullable=False, default="",
        comment="ACTIVATE;UNLOCK;REOPEN subset, ';'-joined",
    )
    mandatory = db.Column(db.Boolean, nullable=False, default=False)
    predefined = db.Column(db.Boolean, nullable=False, default=False)

    @property
    def commands(self) -> set[str]:
        if not self.assigned_commands:
            return set()
        return {c for c in self.assigned_commands.split(_COMMAND_SEPARATOR) if c}

    @commands.setter
    def commands(self, value) -> None:
        self.assigned_commands = join_commands(value)

    def gates(self, command: str) -> bool:
        """Return True if this definition is relevant to *command*."""
        return command in self.commands

    def to_dict(self):
        return {
            "identifier": self.identifier,
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "commands": sorted(self.commands),
            "mandatory": self.mandatory,
            "predefined": self.predefined,
        }

    def __repr__(self):
        return f"<TaskDefinition {self.identifier} {self.type}>"


class TaskInstance(db.Model):
    """
    Link between a TaskDefinition and a Customer.

    Open while ``executed_by`` is NULL.  Uniqueness per (customer, definition)
    is not enforced at table level; see ``services.task_service``.
    """

    __tablename__ = "task_instances"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    task_definition_id = db.Column(
        db.Integer, db.ForeignKey("task_definitions.id"),
        nullable=False, index=True,
    )
    executed_by = db.Column(db.String(32), nullable=True)
    executed_on = db.Column(db.DateTime(timezone=True), nullable=True)
    created_on = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_open(self) -> bool:
        return self.executed_by is None

    def to_dict(self, definition=None):
        result = {
            "id": self.id,
            "executed_by": self.executed_by,
            "executed_on": _iso(self.executed_on),
        }
        if definition is not None:
            result["task_definition"] = definition.to_dict()
        return result

    def __repr__(self):
        state = "open" if self.is_open else f"executed by {self.executed_by}"
        return f"<TaskInstance {self.id}: def={self.task_definition_id} cust={self.customer_id} {state}>"
