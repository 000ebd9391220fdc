"""
Customer Registry
Customer domain models.

Models:
    - Customer:            KYC identity record with lifecycle state
    - Address:             1:1 postal address, replaced wholesale on update
    - ContactDetail:       1:N e-mail / phone entries, replaced wholesale on update
    - IdentificationCard:  1:N identity documents (passport, national ID, ...)

Architecture:
    Customer ──1:1──▶ Address
    Customer ──1:N──▶ ContactDetail
    Customer ──1:N──▶ IdentificationCard

Foreign keys are plain columns; services fetch related rows explicitly
through ``services.helpers.repositories`` instead of walking object graphs.

Lifecycle states:
    PENDING → ACTIVE → LOCKED → ACTIVE  |  PENDING/ACTIVE/LOCKED → CLOSED → ACTIVE
"""

from datetime import datetime, timezone

from customer_registry.models import db


# ── Constants ────────────────────────────────────────────────────────────────

CUSTOMER_TYPES = {"PERSON", "BUSINESS"}

CUSTOMER_STATES = {"PENDING", "ACTIVE", "LOCKED", "CLOSED"}

CONTACT_TYPES = {"EMAIL", "PHONE", "MOBILE"}
CONTACT_GROUPS = {"BUSINESS", "PRIVATE"}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Customer
# ═════════════════════════════════════════════════════════════════════════════


class Customer(db.Model):
    """
    Identity record of a microfinance customer.

    ``identifier`` is the business key used on every endpoint; it is unique
    and never changes after creation.  ``current_state`` is owned by the
    lifecycle service and must not be written anywhere else.
    """

    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)
    identifier = db.Column(db.String(32), unique=True, nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False, comment="PERSON | BUSINESS")

    given_name = db.Column(db.String(256), nullable=False)
    middle_name = db.Column(db.String(256), nullable=True)
    surname = db.Column(db.String(256), nullable=False)
    date_of_birth = db.Column(db.Date, nullable=True)
    member = db.Column(db.Boolean, nullable=False, default=False)

    account_beneficiary = db.Column(db.String(512), nullable=True)
    reference_customer = db.Column(db.String(32), nullable=True)
    assigned_office = db.Column(db.String(32), nullable=True)
    assigned_employee = db.Column(db.String(32), nullable=True)

    current_state = db.Column(
        db.String(32), nullable=False, default="PENDING",
        comment="PENDING | ACTIVE | LOCKED | CLOSED",
    )
    application_date = db.Column(
        db.Date, nullable=True,
        comment="Set on first activation when absent",
    )

    # Audit
    created_by = db.Column(db.String(32), nullable=False)
    created_on = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    last_modified_by = db.Column(db.String(32), nullable=True)
    last_modified_on = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.CheckConstraint(
            "current_state IN ('PENDING','ACTIVE','LOCKED','CLOSED')",
            name="ck_customer_state",
        ),
    )

    def touch(self, actor: str) -> None:
        """Stamp last-modified audit fields."""
        self.last_modified_by = actor
        self.last_modified_on = _utcnow()

    def to_dict(self, address=None, contact_details=None):
        result = {
            "identifier": self.identifier,
            "type": self.type,
            "given_name": self.given_name,
            "middle_name": self.middle_name,
            "surname": self.surname,
            "date_of_birth": _iso(self.date_of_birth),
            "member": self.member,
            "account_beneficiary": self.account_beneficiary,
            "reference_customer": self.reference_customer,
            "assigned_office": self.assigned_office,
            "assigned_employee": self.assigned_employee,
            "current_state": self.current_state,
            "application_date": _iso(self.application_date),
            "created_by": self.created_by,
            "created_on": _iso(self.created_on),
            "last_modified_by": self.last_modified_by,
            "last_modified_on": _iso(self.last_modified_on),
        }
        if address is not None:
            result["address"] = address.to_dict()
        if contact_details is not None:
            result["contact_details"] = [c.to_dict() for c in contact_details]
        return result

    def __repr__(self):
        return f"<Customer {self.identifier} [{self.current_state}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Address / ContactDetail
# ═════════════════════════════════════════════════════════════════════════════


class Address(db.Model):
    __tablename__ = "addresses"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    street = db.Column(db.String(256), nullable=False)
    city = db.Column(db.String(256), nullable=False)
    region = db.Column(db.String(256), nullable=True)
    postal_code = db.Column(db.String(32), nullable=True)
    country_code = db.Column(db.String(2), nullable=False)
    country = db.Column(db.String(256), nullable=False)

    def to_dict(self):
        return {
            "street": self.street,
            "city": self.city,
            "region": self.region,
            "postal_code": self.postal_code,
            "country_code": self.country_code,
            "country": self.country,
        }


class ContactDetail(db.Model):
    __tablename__ = "contact_details"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    type = db.Column(db.String(32), nullable=False, comment="EMAIL | PHONE | MOBILE")
    group = db.Column("a_group", db.String(32), nullable=False, comment="BUSINESS | PRIVATE")
    value = db.Column(db.String(512), nullable=False)
    preference_level = db.Column(db.SmallInteger, nullable=True)
    validated = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            "type": self.type,
            "group": self.group,
            "value": self.value,
            "preference_level": self.preference_level,
            "validated": self.validated,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 3. IdentificationCard
# ═════════════════════════════════════════════════════════════════════════════


class IdentificationCard(db.Model):
    """
    Identity document on file for a customer.

    The number is globally unique.  Presence of at least one card is the
    precondition for executing an ID_CARD task.
    """

    __tablename__ = "identification_cards"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    number = db.Column(db.String(32), unique=True, nullable=False)
    type = db.Column(db.String(128), nullable=False)
    issuer = db.Column(db.String(256), nullable=True)
    expiration_date = db.Column(db.Date, nullable=False)

    created_by = db.Column(db.String(32), nullable=False)
    created_on = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    last_modified_by = db.Column(db.String(32), nullable=True)
    last_modified_on = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "number": self.number,
            "type": self.type,
            "issuer": self.issuer,
            "expiration_date": _iso(self.expiration_date),
            "created_by": self.created_by,
            "created_on": _iso(self.created_on),
            "last_modified_by": self.last_modified_by,
            "last_modified_on": _iso(self.last_modified_on),
        }

    def __repr__(self):
        return f"<IdentificationCard {self.number}>"
