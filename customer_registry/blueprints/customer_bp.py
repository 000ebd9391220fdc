"""
Customer Registry
Customer endpoints.

Blueprint: customer_bp
Prefix: /api/v1

Endpoints:
  Customers:
    GET/POST   /customers                                   -- Search / create
    GET/PUT    /customers/<identifier>                      -- Read / replace master data
    PUT        /customers/<identifier>/address              -- Replace address
    PUT        /customers/<identifier>/contact              -- Replace contact details

  Lifecycle:
    GET/POST   /customers/<identifier>/commands             -- Audit log / run lifecycle command
    GET        /customers/<identifier>/actions              -- Next available commands

  Customer tasks:
    GET        /customers/<identifier>/tasks                -- List attached tasks
    POST       /customers/<identifier>/tasks/<task_id>      -- Attach task
    PUT        /customers/<identifier>/tasks/<task_id>      -- Execute task

  Identification cards:
    GET/POST   /customers/<identifier>/identifications
    GET/PUT/DELETE /customers/<identifier>/identifications/<number>

All mutating endpoints answer 202 with the published event payload.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from customer_registry.auth import current_actor
from customer_registry.blueprints import int_arg, json_body, register_error_handlers
from customer_registry.core.exceptions import ValidationError
from customer_registry.services import command_gateway, customer_lifecycle, customer_service, task_service
from customer_registry.services.command_gateway import (
    AddTaskToCustomer,
    CreateCustomer,
    CreateIdentificationCard,
    DeleteIdentificationCard,
    ExecuteTaskForCustomer,
    UpdateAddress,
    UpdateContactDetails,
    UpdateCustomer,
    UpdateIdentificationCard,
)
from customer_registry.services.helpers.repositories import CustomerRepository
from customer_registry.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

customer_bp = Blueprint("customer", __name__, url_prefix="/api/v1")
register_error_handlers(customer_bp)


def _accepted(payload: dict):
    return jsonify(payload), 202


# ═════════════════════════════════════════════════════════════════════════
# Customers
# ═════════════════════════════════════════════════════════════════════════


@customer_bp.route("/customers", methods=["GET"])
def search_customers():
    """Paged customer search."""
    result = customer_service.search_customers(
        term=request.args.get("term") or None,
        include_closed=parse_bool(request.args.get("includeClosed"), default=False),
        page_index=int_arg("pageIndex", 0),
        size=int_arg("size", current_app.config.get("CUSTOMER_PAGE_SIZE", 20)),
        sort_column=request.args.get("sortColumn") or "identifier",
        sort_direction=request.args.get("sortDirection") or "ASC",
    )
    return jsonify(result), 200


@customer_bp.route("/customers", methods=["POST"])
def create_customer():
    payload = command_gateway.process(CreateCustomer(data=json_body(), actor=current_actor()))
    return _accepted(payload)


@customer_bp.route("/customers/<identifier>", methods=["GET"])
def get_customer(identifier):
    return jsonify(customer_service.get_customer(identifier)), 200


@customer_bp.route("/customers/<identifier>", methods=["PUT"])
def update_customer(identifier):
    payload = command_gateway.process(
        UpdateCustomer(identifier=identifier, data=json_body(), actor=current_actor())
    )
    return _accepted(payload)


@customer_bp.route("/customers/<identifier>/address", methods=["PUT"])
def update_address(identifier):
    payload = command_gateway.process(
        UpdateAddress(identifier=identifier, address=json_body(), actor=current_actor())
    )
    return _accepted(payload)


@customer_bp.route("/customers/<identifier>/contact", methods=["PUT"])
def update_contact_details(identifier):
    """Replace contact details; body is a list or {"contact_details": [...]}."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        data = data.get("contact_details")
    if data is None:
        data = []
    if not isinstance(data, list):
        raise ValidationError("contact_details must be a list")
    payload = command_gateway.process(
        UpdateContactDetails(identifier=identifier, contact_details=data, actor=current_actor())
    )
    return _accepted(payload)


# ═════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════


@customer_bp.route("/customers/<identifier>/commands", methods=["POST"])
def process_command(identifier):
    """Run a lifecycle command: {"action": "ACTIVATE", "comment": "..."}."""
    CustomerRepository.get(identifier)
    data = json_body()
    command = command_gateway.lifecycle_command(
        data.get("action"), identifier,
        comment=data.get("comment"),
        actor=current_actor(),
    )
    return _accepted(command_gateway.process(command))


@customer_bp.route("/customers/<identifier>/commands", methods=["GET"])
def list_commands(identifier):
    return jsonify(customer_service.list_commands(identifier)), 200


@customer_bp.route("/customers/<identifier>/actions", methods=["GET"])
def list_actions(identifier):
    return jsonify(customer_lifecycle.get_process_steps(identifier)), 200


# ═════════════════════════════════════════════════════════════════════════
# Customer tasks
# ═════════════════════════════════════════════════════════════════════════


@customer_bp.route("/customers/<identifier>/tasks", methods=["GET"])
def list_customer_tasks(identifier):
    include_executed = parse_bool(request.args.get("includeExecuted"), default=True)
    return jsonify(task_service.list_tasks_for_customer(identifier, include_executed=include_executed)), 200


@customer_bp.route("/customers/<identifier>/tasks/<task_id>", methods=["POST"])
def add_task(identifier, task_id):
    payload = command_gateway.process(
        AddTaskToCustomer(customer_identifier=identifier, task_identifier=task_id, actor=current_actor())
    )
    return _accepted(payload)


@customer_bp.route("/customers/<identifier>/tasks/<task_id>", methods=["PUT"])
def execute_task(identifier, task_id):
    payload = command_gateway.process(
        ExecuteTaskForCustomer(customer_identifier=identifier, task_identifier=task_id, actor=current_actor())
    )
    return _accepted(payload)


# ═════════════════════════════════════════════════════════════════════════
# Identification cards
# ═════════════════════════════════════════════════════════════════════════


@customer_bp.route("/customers/<identifier>/identifications", methods=["GET"])
def list_identification_cards(identifier):
    return jsonify(customer_service.list_identification_cards(identifier)), 200


@customer_bp.route("/customers/<identifier>/identifications", methods=["POST"])
def create_identification_card(identifier):
    payload = command_gateway.process(
        CreateIdentificationCard(customer_identifier=identifier, data=json_body(), actor=current_actor())
    )
    return _accepted(payload)


@customer_bp.route("/customers/<identifier>/identifications/<number>", methods=["GET"])
def get_identification_card(identifier, number):
    return jsonify(customer_service.get_identification_card(identifier, number)), 200


@customer_bp.route("/customers/<identifier>/identifications/<number>", methods=["PUT"])
def update_identification_card(identifier, number):
    payload = command_gateway.process(
        UpdateIdentificationCard(
            customer_identifier=identifier, number=number, data=json_body(), actor=current_actor(),
        )
    )
    return _accepted(payload)


@customer_bp.route("/customers/<identifier>/identifications/<number>", methods=["DELETE"])
def delete_identification_card(identifier, number):
    payload = command_gateway.process(
        DeleteIdentificationCard(customer_identifier=identifier, number=number, actor=current_actor())
    )
    return _accepted(payload)
