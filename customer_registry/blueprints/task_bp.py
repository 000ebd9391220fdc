"""
Customer Registry
Task catalog endpoints.

Blueprint: task_bp
Prefix: /api/v1

Endpoints:
    GET/POST        /tasks               -- List / create definitions
    GET/PUT/DELETE  /tasks/<task_id>     -- Single definition
"""

import logging

from flask import Blueprint, jsonify

from customer_registry.auth import current_actor
from customer_registry.blueprints import json_body, register_error_handlers
from customer_registry.services import command_gateway, task_service
from customer_registry.services.command_gateway import (
    CreateTaskDefinition,
    DeleteTaskDefinition,
    UpdateTaskDefinition,
)

logger = logging.getLogger(__name__)

task_bp = Blueprint("task", __name__, url_prefix="/api/v1")
register_error_handlers(task_bp)


@task_bp.route("/tasks", methods=["GET"])
def list_tasks():
    return jsonify([d.to_dict() for d in task_service.list_task_definitions()]), 200


@task_bp.route("/tasks", methods=["POST"])
def create_task():
    payload = command_gateway.process(CreateTaskDefinition(data=json_body(), actor=current_actor()))
    return jsonify(payload), 202


@task_bp.route("/tasks/<task_id>", methods=["GET"])
def get_task(task_id):
    return jsonify(task_service.get_task_definition(task_id).to_dict()), 200


@task_bp.route("/tasks/<task_id>", methods=["PUT"])
def update_task(task_id):
    payload = command_gateway.process(
        UpdateTaskDefinition(identifier=task_id, data=json_body(), actor=current_actor())
    )
    return jsonify(payload), 202


@task_bp.route("/tasks/<task_id>", methods=["DELETE"])
def delete_task(task_id):
    """Absent definitions are deleted silently."""
    payload = command_gateway.process(DeleteTaskDefinition(identifier=task_id, actor=current_actor()))
    return jsonify(payload), 202
