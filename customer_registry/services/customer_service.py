"""
Customer Registry
Customer master-data service.

Covers everything about a customer that is *not* a lifecycle transition:
    - create (PENDING + ACTIVATE attachment pass) / update master data
    - address and contact details, each replaced wholesale
    - search with term / includeClosed / paging / whitelisted sorting
    - audit log read
    - identification cards

Services flush but never commit; ``command_gateway`` owns the transaction.
"""

import logging
import math
from datetime import datetime, timezone

from sqlalchemy import or_

from customer_registry.core.exceptions import ConflictError, ValidationError
from customer_registry.models import db
from customer_registry.models.customer import (
    CONTACT_GROUPS,
    CONTACT_TYPES,
    CUSTOMER_TYPES,
    Address,
    ContactDetail,
    Customer,
    IdentificationCard,
)
from customer_registry.services import task_service
from customer_registry.services.helpers.repositories import CustomerRepository
from customer_registry.utils.helpers import parse_bool, parse_date_input

logger = logging.getLogger(__name__)

_MAX_KEY = 32
_MAX_NAME = 256
_MAX_PAGE_SIZE = 100

SORT_COLUMNS = {
    "identifier": Customer.identifier,
    "given_name": Customer.given_name,
    "surname": Customer.surname,
    "current_state": Customer.current_state,
    "created_on": Customer.created_on,
    "last_modified_on": Customer.last_modified_on,
}
SORT_DIRECTIONS = ("ASC", "DESC")


# ── Validation helpers ───────────────────────────────────────────────────────

def _required_str(data: dict, field: str, max_len: int = _MAX_NAME) -> str:
    value = data.get(field)
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", details={field: "missing"})
    value = str(value).strip()
    if len(value) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters", details={field: "too long"})
    return value


def _optional_str(data: dict, field: str, max_len: int = _MAX_NAME) -> str | None:
    value = data.get(field)
    if value is None or not str(value).strip():
        return None
    value = str(value).strip()
    if len(value) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters", details={field: "too long"})
    return value


def _validate_master_data(data: dict) -> dict:
    customer_type = str(data.get("type") or "").strip().upper()
    if customer_type not in CUSTOMER_TYPES:
        raise ValidationError(
            f"type must be one of {', '.join(sorted(CUSTOMER_TYPES))}",
            details={"type": data.get("type")},
        )
    return {
        "type": customer_type,
        "given_name": _required_str(data, "given_name"),
        "middle_name": _optional_str(data, "middle_name"),
        "surname": _required_str(data, "surname"),
        "date_of_birth": parse_date_input(data.get("date_of_birth"), "date_of_birth"),
        "member": parse_bool(data.get("member"), default=False),
        "account_beneficiary": _optional_str(data, "account_beneficiary", 512),
        "reference_customer": _optional_str(data, "reference_customer", _MAX_KEY),
        "assigned_office": _optional_str(data, "assigned_office", _MAX_KEY),
        "assigned_employee": _optional_str(data, "assigned_employee", _MAX_KEY),
    }


def _validate_address(data) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("address is required", details={"address": "missing"})
    country_code = _required_str(data, "country_code", 2).upper()
    return {
        "street": _required_str(data, "street"),
        "city": _required_str(data, "city"),
        "region": _optional_str(data, "region"),
        "postal_code": _optional_str(data, "postal_code", 32),
        "country_code": country_code,
        "country": _required_str(data, "country"),
    }


def _validate_contact_details(items) -> list[dict]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("contact_details must be a list", details={"contact_details": "invalid"})

    cleaned = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"contact_details[{idx}] must be an object")
        contact_type = str(item.get("type") or "").upper()
        if contact_type not in CONTACT_TYPES:
            raise ValidationError(
                f"contact_details[{idx}].type must be one of {', '.join(sorted(CONTACT_TYPES))}",
            )
        group = str(item.get("group") or "").upper()
        if group not in CONTACT_GROUPS:
            raise ValidationError(
                f"contact_details[{idx}].group must be one of {', '.join(sorted(CONTACT_GROUPS))}",
            )
        level = item.get("preference_level")
        if level is not None:
            try:
                level = int(level)
            except (TypeError, ValueError):
                raise ValidationError(f"contact_details[{idx}].preference_level must be an integer")
            if not 1 <= level <= 127:
                raise ValidationError(f"contact_details[{idx}].preference_level must be between 1 and 127")
        cleaned.append({
            "type": contact_type,
            "group": group,
            "value": _required_str(item, "value", 512),
            "preference_level": level,
            "validated": parse_bool(item.get("validated"), default=False),
        })
    return cleaned


def _check_identifier_matches(path_identifier: str, body: dict, field: str = "identifier") -> None:
    body_identifier = body.get(field)
    if body_identifier is not None and body_identifier != path_identifier:
        raise ValidationError(
            f"{field} in body does not match the path",
            details={"path": path_identifier, "body": body_identifier},
        )


def _replace_address(customer: Customer, fields: dict) -> Address:
    existing = CustomerRepository.address(customer)
    if existing is not None:
        db.session.delete(existing)
        db.session.flush()
    address = Address(customer_id=customer.id, **fields)
    db.session.add(address)
    return address


def _replace_contact_details(customer: Customer, items: list[dict]) -> list[ContactDetail]:
    ContactDetail.query.filter_by(customer_id=customer.id).delete()
    contacts = [ContactDetail(customer_id=customer.id, **item) for item in items]
    db.session.add_all(contacts)
    return contacts


# ═════════════════════════════════════════════════════════════════════════════
# Customer
# ═════════════════════════════════════════════════════════════════════════════


def create_customer(data: dict, *, actor: str) -> Customer:
    """
    Create a customer in state PENDING and run the ACTIVATE attachment pass.

    Every predefined task definition tagged ACTIVATE gets an instance on the
    new customer, so activation is gated from the very first moment.

    Raises:
        ValidationError: missing/invalid fields.
        ConflictError: identifier already taken.
    """
    identifier = _required_str(data, "identifier", _MAX_KEY)
    fields = _validate_master_data(data)
    address_fields = _validate_address(data.get("address"))
    contacts = _validate_contact_details(data.get("contact_details"))

    if CustomerRepository.exists(identifier):
        raise ConflictError.duplicate("Customer", "identifier", identifier)

    customer = Customer(identifier=identifier, current_state="PENDING", created_by=actor, **fields)
    db.session.add(customer)
    db.session.flush()

    _replace_address(customer, address_fields)
    _replace_contact_details(customer, contacts)

    attached = task_service.attach_predefined_tasks(customer, "ACTIVATE")
    db.session.flush()

    logger.info(
        "Customer created: %s by %s (%d predefined task(s) attached)",
        identifier, actor, len(attached),
        extra={"customer_id": identifier, "actor": actor},
    )
    return customer


def update_customer(identifier: str, data: dict, *, actor: str) -> Customer:
    """Replace master data, address and contact details. State is untouched."""
    _check_identifier_matches(identifier, data)
    customer = CustomerRepository.get(identifier)

    fields = _validate_master_data(data)
    address_fields = _validate_address(data.get("address"))
    contacts = _validate_contact_details(data.get("contact_details"))

    for key, value in fields.items():
        setattr(customer, key, value)
    _replace_address(customer, address_fields)
    _replace_contact_details(customer, contacts)
    customer.touch(actor)
    db.session.flush()

    logger.info("Customer updated: %s by %s", identifier, actor,
                extra={"customer_id": identifier, "actor": actor})
    return customer


def update_address(identifier: str, data: dict, *, actor: str) -> Address:
    customer = CustomerRepository.get(identifier)
    address = _replace_address(customer, _validate_address(data))
    customer.touch(actor)
    db.session.flush()
    logger.info("Address replaced for customer %s", identifier, extra={"customer_id": identifier})
    return address


def update_contact_details(identifier: str, items, *, actor: str) -> list[ContactDetail]:
    customer = CustomerRepository.get(identifier)
    contacts = _replace_contact_details(customer, _validate_contact_details(items))
    customer.touch(actor)
    db.session.flush()
    logger.info("Contact details replaced for customer %s (%d entries)", identifier, len(contacts),
                extra={"customer_id": identifier})
    return contacts


def get_customer(identifier: str) -> dict:
    """Customer with address and contact details."""
    customer = CustomerRepository.get(identifier)
    return customer.to_dict(
        address=CustomerRepository.address(customer),
        contact_details=CustomerRepository.contact_details(customer),
    )


def _escape_like(term: str) -> str:
    """Make ``%`` and ``_`` in a search term match literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_customers(
    *,
    term: str | None = None,
    include_closed: bool = False,
    page_index: int = 0,
    size: int = 20,
    sort_column: str = "identifier",
    sort_direction: str = "ASC",
) -> dict:
    """
    Paged customer listing.

    ``term`` matches a substring of identifier, given name or surname.
    CLOSED customers are excluded unless ``include_closed`` is set.

    Returns:
        {"customers": [...], "total_pages": int, "total_elements": int}
    """
    if page_index < 0:
        raise ValidationError("pageIndex must be >= 0", details={"pageIndex": page_index})
    if not 1 <= size <= _MAX_PAGE_SIZE:
        raise ValidationError(f"size must be between 1 and {_MAX_PAGE_SIZE}", details={"size": size})

    column = SORT_COLUMNS.get(sort_column)
    if column is None:
        raise ValidationError(
            f"sortColumn must be one of {', '.join(SORT_COLUMNS)}",
            details={"sortColumn": sort_column},
        )
    direction = (sort_direction or "").upper()
    if direction not in SORT_DIRECTIONS:
        raise ValidationError("sortDirection must be ASC or DESC", details={"sortDirection": sort_direction})

    q = Customer.query
    if term:
        pattern = f"%{_escape_like(term)}%"
        q = q.filter(or_(
            Customer.identifier.ilike(pattern, escape="\\"),
            Customer.given_name.ilike(pattern, escape="\\"),
            Customer.surname.ilike(pattern, escape="\\"),
        ))
    if not include_closed:
        q = q.filter(Customer.current_state != "CLOSED")

    total = q.count()
    order = column.desc() if direction == "DESC" else column.asc()
    items = q.order_by(order, Customer.id).offset(page_index * size).limit(size).all()

    return {
        "customers": [c.to_dict() for c in items],
        "total_pages": math.ceil(total / size) if total else 0,
        "total_elements": total,
    }


def list_commands(identifier: str) -> list[dict]:
    """Audit rows of a customer in creation order."""
    customer = CustomerRepository.get(identifier)
    return [c.to_dict() for c in CustomerRepository.commands(customer)]


# ═════════════════════════════════════════════════════════════════════════════
# Identification cards
# ═════════════════════════════════════════════════════════════════════════════


def _validate_card_fields(data: dict) -> dict:
    expiration = parse_date_input(data.get("expiration_date"), "expiration_date")
    if expiration is None:
        raise ValidationError("expiration_date is required", details={"expiration_date": "missing"})
    return {
        "type": _required_str(data, "type", 128),
        "issuer": _optional_str(data, "issuer"),
        "expiration_date": expiration,
    }


def create_identification_card(identifier: str, data: dict, *, actor: str) -> IdentificationCard:
    customer = CustomerRepository.get(identifier)
    number = _required_str(data, "number", _MAX_KEY)
    fields = _validate_card_fields(data)

    if CustomerRepository.find_identification_card(number) is not None:
        raise ConflictError.duplicate("IdentificationCard", "number", number)

    card = IdentificationCard(customer_id=customer.id, number=number, created_by=actor, **fields)
    db.session.add(card)
    db.session.flush()

    logger.info("Identification card %s added to customer %s", number, identifier,
                extra={"customer_id": identifier, "actor": actor})
    return card


def update_identification_card(identifier: str, number: str, data: dict, *, actor: str) -> IdentificationCard:
    _check_identifier_matches(number, data, field="number")
    customer = CustomerRepository.get(identifier)
    card = CustomerRepository.get_identification_card(customer, number)

    for key, value in _validate_card_fields(data).items():
        setattr(card, key, value)
    card.last_modified_by = actor
    card.last_modified_on = datetime.now(timezone.utc)
    db.session.flush()

    logger.info("Identification card %s updated for customer %s", number, identifier,
                extra={"customer_id": identifier, "actor": actor})
    return card


def delete_identification_card(identifier: str, number: str) -> None:
    customer = CustomerRepository.get(identifier)
    card = CustomerRepository.get_identification_card(customer, number)
    db.session.delete(card)
    db.session.flush()
    logger.info("Identification card %s deleted for customer %s", number, identifier,
                extra={"customer_id": identifier})


def list_identification_cards(identifier: str) -> list[dict]:
    customer = CustomerRepository.get(identifier)
    return [c.to_dict() for c in CustomerRepository.identification_cards(customer)]


def get_identification_card(identifier: str, number: str) -> dict:
    customer = CustomerRepository.get(identifier)
    return CustomerRepository.get_identification_card(customer, number).to_dict()
