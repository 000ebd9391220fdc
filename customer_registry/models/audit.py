"""
Customer Registry
Audit domain model.

Models:
    - CustomerCommand: immutable, append-only log of successful lifecycle
      transitions (one row per ACTIVATE / LOCK / UNLOCK / CLOSE / REOPEN).

Distinct from the command *messages* dispatched through the gateway: this is
the persisted record of what happened, never mutated or deleted.
"""

from datetime import datetime, timezone

from customer_registry.models import db


# ── Constants ────────────────────────────────────────────────────────────────

LIFECYCLE_ACTIONS = ("ACTIVATE", "LOCK", "UNLOCK", "CLOSE", "REOPEN")


class CustomerCommand(db.Model):
    """
    Audit row appended on every successful lifecycle transition.

    ``created_by`` is the acting user; ``comment`` is whatever the caller
    supplied with the command (may be empty).
    """

    __tablename__ = "customer_commands"
    __table_args__ = (
        db.Index("idx_customer_command_customer", "customer_id", "created_on"),
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer,
        db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    )
    action = db.Column(
        db.String(32), nullable=False,
        comment="ACTIVATE | LOCK | UNLOCK | CLOSE | REOPEN",
    )
    comment = db.Column(db.String(32768), nullable=True)
    created_by = db.Column(db.String(32), nullable=False, default="system")
    created_on = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "comment": self.comment,
            "created_by": self.created_by,
            "created_on": self.created_on.isoformat() if self.created_on else None,
        }

    def __repr__(self):
        return f"<CustomerCommand {self.id}: {self.action} on customer {self.customer_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_command(*, customer_id: int, action: str, actor: str, comment: str | None = None) -> CustomerCommand:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) CustomerCommand instance.
    """
    if action not in LIFECYCLE_ACTIONS:
        raise ValueError(f"Unknown lifecycle action: {action}")

    row = CustomerCommand(
        customer_id=customer_id,
        action=action,
        comment=comment,
        created_by=actor,
    )
    db.session.add(row)
    db.session.flush()
    return row
