"""
Repository helpers, one per aggregate root.

Every lookup by business key goes through these helpers instead of ad-hoc
``Model.query.filter_by(...)`` calls in services or blueprints.  Related rows
are fetched explicitly; models carry plain foreign-key columns and no lazy
relationship graphs.

Usage:
    customer = CustomerRepository.get("C-001")          # raises NotFoundError
    customer = CustomerRepository.find("C-001")         # returns None
    doc = DocumentRepository.get(customer, "passport")

``get`` variants raise NotFoundError (→ HTTP 404); ``find`` variants return None.
"""

import logging

from customer_registry.core.exceptions import NotFoundError
from customer_registry.models import db
from customer_registry.models.audit import CustomerCommand
from customer_registry.models.customer import Address, ContactDetail, Customer, IdentificationCard
from customer_registry.models.document import Document, DocumentPage
from customer_registry.models.task import TaskDefinition, TaskInstance

logger = logging.getLogger(__name__)


class CustomerRepository:
    """Customer aggregate: customer row, address, contacts, cards, audit log."""

    @staticmethod
    def find(identifier: str) -> Customer | None:
        return Customer.query.filter_by(identifier=identifier).first()

    @staticmethod
    def get(identifier: str) -> Customer:
        customer = CustomerRepository.find(identifier)
        if customer is None:
            raise NotFoundError(resource="Customer", resource_id=identifier)
        return customer

    @staticmethod
    def exists(identifier: str) -> bool:
        return db.session.query(Customer.id).filter_by(identifier=identifier).first() is not None

    @staticmethod
    def address(customer: Customer) -> Address | None:
        return Address.query.filter_by(customer_id=customer.id).first()

    @staticmethod
    def contact_details(customer: Customer) -> list[ContactDetail]:
        return ContactDetail.query.filter_by(customer_id=customer.id).order_by(ContactDetail.id).all()

    @staticmethod
    def commands(customer: Customer) -> list[CustomerCommand]:
        return (
            CustomerCommand.query
            .filter_by(customer_id=customer.id)
            .order_by(CustomerCommand.created_on, CustomerCommand.id)
            .all()
        )

    @staticmethod
    def identification_cards(customer: Customer) -> list[IdentificationCard]:
        return (
            IdentificationCard.query
            .filter_by(customer_id=customer.id)
            .order_by(IdentificationCard.id)
            .all()
        )

    @staticmethod
    def has_identification_card(customer: Customer) -> bool:
        return (
            db.session.query(IdentificationCard.id)
            .filter_by(customer_id=customer.id)
            .first()
        ) is not None

    @staticmethod
    def find_identification_card(number: str) -> IdentificationCard | None:
        return IdentificationCard.query.filter_by(number=number).first()

    @staticmethod
    def get_identification_card(customer: Customer, number: str) -> IdentificationCard:
        card = IdentificationCard.query.filter_by(customer_id=customer.id, number=number).first()
        if card is None:
            raise NotFoundError(resource="IdentificationCard", resource_id=number)
        return card


class TaskDefinitionRepository:
    """Task catalog (global, read-mostly) and the task instances referencing it."""

    @staticmethod
    def find(identifier: str) -> TaskDefinition | None:
        return TaskDefinition.query.filter_by(identifier=identifier).first()

    @staticmethod
    def get(identifier: str) -> TaskDefinition:
        definition = TaskDefinitionRepository.find(identifier)
        if definition is None:
            raise NotFoundError(resource="TaskDefinition", resource_id=identifier)
        return definition

    @staticmethod
    def all() -> list[TaskDefinition]:
        return TaskDefinition.query.order_by(TaskDefinition.identifier).all()

    @staticmethod
    def predefined_for(command: str) -> list[TaskDefinition]:
        """Predefined definitions whose assigned commands include *command*."""
        candidates = (
            TaskDefinition.query
            .filter(TaskDefinition.predefined.is_(True))
            .filter(TaskDefinition.assigned_commands.contains(command))
            .order_by(TaskDefinition.identifier)
            .all()
        )
        # Column match is a substring test; confirm exact membership.
        return [d for d in candidates if d.gates(command)]

    @staticmethod
    def instances_for(customer: Customer, *, open_only: bool = False) -> list[tuple[TaskInstance, TaskDefinition]]:
        """(instance, definition) pairs attached to *customer*, oldest first."""
        q = (
            db.session.query(TaskInstance, TaskDefinition)
            .join(TaskDefinition, TaskInstance.task_definition_id == TaskDefinition.id)
            .filter(TaskInstance.customer_id == customer.id)
        )
        if open_only:
            q = q.filter(TaskInstance.executed_by.is_(None))
        return q.order_by(TaskInstance.id).all()

    @staticmethod
    def reference_count(definition: TaskDefinition) -> int:
        return TaskInstance.query.filter_by(task_definition_id=definition.id).count()


class DocumentRepository:
    """Document aggregate: document row plus its pages, keyed by (customer, identifier)."""

    @staticmethod
    def find(customer: Customer, identifier: str) -> Document | None:
        return Document.query.filter_by(customer_id=customer.id, identifier=identifier).first()

    @staticmethod
    def get(customer: Customer, identifier: str) -> Document:
        document = DocumentRepository.find(customer, identifier)
        if document is None:
            raise NotFoundError(
                resource=f"Document for customer '{customer.identifier}'",
                resource_id=identifier,
            )
        return document

    @staticmethod
    def for_customer(customer: Customer) -> list[Document]:
        return Document.query.filter_by(customer_id=customer.id).order_by(Document.identifier).all()

    @staticmethod
    def page_numbers(document: Document) -> list[int]:
        rows = (
            db.session.query(DocumentPage.page_number)
            .filter_by(document_id=document.id)
            .order_by(DocumentPage.page_number)
            .all()
        )
        return [r[0] for r in rows]

    @staticmethod
    def find_page(document: Document, page_number: int) -> DocumentPage | None:
        return DocumentPage.query.filter_by(document_id=document.id, page_number=page_number).first()
