"""
Customer Registry
Customer document models.

Models:
    - Document:      multi-page document owned by one customer; one-way
                     open → completed gate
    - DocumentPage:  one page image keyed by a non-negative page number

Architecture:
    Customer ──1:N──▶ Document ──1:N──▶ DocumentPage

Business rules (enforced in ``services.document_service``):
    - A completed document is immutable: no page add/delete, no description
      change, no deletion, no un-completion.
    - Completion requires page numbers to form the range 0..max with no gaps.
    - Completion re-stamps created_by / created_on with the completing actor.
"""

from datetime import datetime, timezone

from customer_registry.models import db


class Document(db.Model):
    __tablename__ = "documents"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    identifier = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(4096), nullable=True)
    completed = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(db.String(32), nullable=False)
    created_on = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="Re-stamped at completion time",
    )

    __table_args__ = (
        db.UniqueConstraint("customer_id", "identifier", name="uq_document_customer_identifier"),
    )

    def to_dict(self):
        return {
            "identifier": self.identifier,
            "description": self.description,
            "completed": self.completed,
            "created_by": self.created_by,
            "created_on": self.created_on.isoformat() if self.created_on else None,
        }

    def __repr__(self):
        state = "completed" if self.completed else "open"
        return f"<Document {self.identifier} [{state}]>"


class DocumentPage(db.Model):
    __tablename__ = "document_pages"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    page_number = db.Column(db.Integer, nullable=False)
    content_type = db.Column(db.String(256), nullable=False)
    size = db.Column(db.BigInteger, nullable=False)
    image = db.Column(db.LargeBinary, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("document_id", "page_number", name="uq_document_page_number"),
        db.CheckConstraint("page_number >= 0", name="ck_document_page_number"),
    )

    def __repr__(self):
        return f"<DocumentPage doc={self.document_id} #{self.page_number}>"
