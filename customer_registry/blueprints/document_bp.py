"""
Customer Registry
Customer document endpoints.

Blueprint: document_bp
Prefix: /api/v1/customers/<customer_id>/documents

Endpoints:
    GET                  /                                   -- List documents
    GET/POST/PUT/DELETE  /<document_id>                      -- Single document
    POST                 /<document_id>/completed            -- {"completed": true}
    GET                  /<document_id>/pages                -- Page numbers, ascending
    GET/POST/DELETE      /<document_id>/pages/<int:page>     -- Page image (multipart upload)

Page uploads are multipart/form-data with the image in the ``image`` part.
"""

import logging

from flask import Blueprint, Response, jsonify, request

from customer_registry.auth import current_actor
from customer_registry.blueprints import json_body, register_error_handlers
from customer_registry.core.exceptions import ValidationError
from customer_registry.services import command_gateway, document_service
from customer_registry.services.command_gateway import (
    ChangeDocument,
    CompleteDocument,
    CreateDocument,
    CreateDocumentPage,
    DeleteDocument,
    DeleteDocumentPage,
)

logger = logging.getLogger(__name__)

document_bp = Blueprint("document", __name__, url_prefix="/api/v1/customers/<customer_id>/documents")
register_error_handlers(document_bp)


# ── Documents ────────────────────────────────────────────────────────────────

@document_bp.route("", methods=["GET"])
def list_documents(customer_id):
    return jsonify(document_service.list_documents(customer_id)), 200


@document_bp.route("/<document_id>", methods=["GET"])
def get_document(customer_id, document_id):
    return jsonify(document_service.get_document(customer_id, document_id)), 200


@document_bp.route("/<document_id>", methods=["POST"])
def create_document(customer_id, document_id):
    payload = command_gateway.process(CreateDocument(
        customer_identifier=customer_id, document_identifier=document_id,
        data=json_body(), actor=current_actor(),
    ))
    return jsonify(payload), 202


@document_bp.route("/<document_id>", methods=["PUT"])
def change_document(customer_id, document_id):
    payload = command_gateway.process(ChangeDocument(
        customer_identifier=customer_id, document_identifier=document_id,
        data=json_body(), actor=current_actor(),
    ))
    return jsonify(payload), 202


@document_bp.route("/<document_id>", methods=["DELETE"])
def delete_document(customer_id, document_id):
    payload = command_gateway.process(DeleteDocument(
        customer_identifier=customer_id, document_identifier=document_id, actor=current_actor(),
    ))
    return jsonify(payload), 202


@document_bp.route("/<document_id>/completed", methods=["POST"])
def complete_document(customer_id, document_id):
    data = json_body()
    if "completed" not in data:
        raise ValidationError("completed is required", details={"completed": "missing"})
    payload = command_gateway.process(CompleteDocument(
        customer_identifier=customer_id, document_identifier=document_id,
        completed=data["completed"], actor=current_actor(),
    ))
    return jsonify(payload), 202


# ── Pages ────────────────────────────────────────────────────────────────────

@document_bp.route("/<document_id>/pages", methods=["GET"])
def list_pages(customer_id, document_id):
    return jsonify(document_service.list_page_numbers(customer_id, document_id)), 200


@document_bp.route("/<document_id>/pages/<int:page_number>", methods=["GET"])
def get_page(customer_id, document_id, page_number):
    page = document_service.get_page(customer_id, document_id, page_number)
    return Response(page.image, status=200, mimetype=page.content_type)


@document_bp.route("/<document_id>/pages/<int:page_number>", methods=["POST"])
def add_page(customer_id, document_id, page_number):
    upload = request.files.get("image")
    if upload is None:
        raise ValidationError("image part is required", details={"image": "missing"})
    payload = command_gateway.process(CreateDocumentPage(
        customer_identifier=customer_id,
        document_identifier=document_id,
        page_number=page_number,
        content_type=upload.mimetype,
        image=upload.read(),
        actor=current_actor(),
    ))
    return jsonify(payload), 202


@document_bp.route("/<document_id>/pages/<int:page_number>", methods=["DELETE"])
def delete_page(customer_id, document_id, page_number):
    payload = command_gateway.process(DeleteDocumentPage(
        customer_identifier=customer_id, document_identifier=document_id,
        page_number=page_number, actor=current_actor(),
    ))
    return jsonify(payload), 202
