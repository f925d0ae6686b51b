"""
Ticket blueprint: HTTP surface of the lifecycle engine.

Endpoints:
    POST   /api/v1/tickets                              - create (201)
    GET    /api/v1/tickets                              - list, paginated
    GET    /api/v1/tickets/<id>?include_history=true    - detail
    PUT    /api/v1/tickets/<id>                         - edit descriptive fields
    GET    /api/v1/tickets/<id>/transitions             - allowed next states
    POST   /api/v1/tickets/<id>/transition              - status change + evidence
    PUT    /api/v1/tickets/<id>/assignment              - (re)assign
    PUT    /api/v1/tickets/<id>/costs                   - cost components
    POST   /api/v1/tickets/<id>/location-override       - admin override
    GET    /api/v1/tickets/<id>/history                 - ledger, newest first
    DELETE /api/v1/tickets/<id>                         - retire

Request bodies accept snake_case or camelCase keys.
"""

import logging

from flask import Blueprint, jsonify, request

from fieldops.auth import require_actor, require_role
from fieldops.blueprints import (
    apply_pagination_headers,
    datetime_arg,
    int_arg,
    json_body,
    page_args,
    register_error_handlers,
)
from fieldops.core.exceptions import ValidationError
from fieldops.services import ticket_lifecycle, workflow
from fieldops.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

ticket_bp = Blueprint("tickets", __name__, url_prefix="/api/v1/tickets")
register_error_handlers(ticket_bp)


@ticket_bp.route("", methods=["POST"])
def create_ticket():
    actor = require_actor()
    ticket = ticket_lifecycle.create_ticket(json_body(), actor)
    return jsonify(ticket_lifecycle.ticket_view(ticket)), 201


@ticket_bp.route("", methods=["GET"])
def list_tickets():
    page, per_page = page_args()
    filters = {
        "category": request.args.get("category"),
        "status": request.args.get("status"),
        "priority_level": int_arg("priority_level"),
        "location_id": int_arg("location_id"),
        "assigned_to_id": request.args.get("assigned_to_id"),
        "requester_id": request.args.get("requester_id"),
        "search": request.args.get("search"),
        "sla_status": request.args.get("sla_status"),
        "date_from": datetime_arg("date_from"),
        "date_to": datetime_arg("date_to", end_of_day=True),
    }
    items, pagination = ticket_lifecycle.list_tickets(
        filters,
        page=page,
        per_page=per_page,
        sort_by=request.args.get("sort_by", "created_at"),
        sort_order=request.args.get("sort_order", "desc"),
    )
    response = jsonify({"items": items, "pagination": pagination})
    return apply_pagination_headers(response, pagination)


@ticket_bp.route("/<int:ticket_id>", methods=["GET"])
def get_ticket(ticket_id):
    include_history = parse_bool(request.args.get("include_history"))
    return jsonify(ticket_lifecycle.get_ticket(ticket_id, include_history=include_history))


@ticket_bp.route("/<int:ticket_id>", methods=["PUT"])
def update_ticket(ticket_id):
    actor = require_actor()
    data = json_body()
    expected_version = data.pop("expected_version", None)
    ticket = ticket_lifecycle.update_details(ticket_id, data, actor, expected_version=expected_version)
    return jsonify(ticket_lifecycle.ticket_view(ticket))


@ticket_bp.route("/<int:ticket_id>/transitions", methods=["GET"])
def get_transitions(ticket_id):
    ticket = ticket_lifecycle.get_ticket(ticket_id)
    return jsonify({
        "ticket_id": ticket_id,
        "status": ticket["status"],
        "allowed_transitions": workflow.allowed_transitions(ticket["status"], ticket["category"]),
    })


@ticket_bp.route("/<int:ticket_id>/transition", methods=["POST"])
def transition_ticket(ticket_id):
    actor = require_actor()
    data = json_body()
    status = data.pop("status", None)
    if not status:
        raise ValidationError("status is required", details={"status": "status is required"})
    expected_version = data.pop("expected_version", None)
    ticket = ticket_lifecycle.transition(
        ticket_id, status, actor, evidence=data, expected_version=expected_version,
    )
    return jsonify(ticket_lifecycle.ticket_view(ticket))


@ticket_bp.route("/<int:ticket_id>/assignment", methods=["PUT"])
def assign_ticket(ticket_id):
    actor = require_actor()
    data = json_body()
    ticket = ticket_lifecycle.assign(
        ticket_id,
        data.get("assigned_to_id"),
        data.get("assigned_to_name"),
        actor,
        expected_version=data.get("expected_version"),
    )
    return jsonify(ticket_lifecycle.ticket_view(ticket))


@ticket_bp.route("/<int:ticket_id>/costs", methods=["PUT"])
def update_costs(ticket_id):
    actor = require_actor()
    data = json_body()
    expected_version = data.pop("expected_version", None)
    ticket = ticket_lifecycle.record_costs(ticket_id, data, actor, expected_version=expected_version)
    return jsonify(ticket_lifecycle.ticket_view(ticket))


@ticket_bp.route("/<int:ticket_id>/location-override", methods=["POST"])
@require_role("admin")
def override_location(ticket_id):
    actor = require_actor()
    data = json_body()
    ticket = ticket_lifecycle.override_location(
        ticket_id, actor, data.get("reason"), expected_version=data.get("expected_version"),
    )
    return jsonify(ticket_lifecycle.ticket_view(ticket))


@ticket_bp.route("/<int:ticket_id>/history", methods=["GET"])
def get_history(ticket_id):
    items = ticket_lifecycle.get_history(ticket_id)
    return jsonify({"items": items, "total": len(items)})


@ticket_bp.route("/<int:ticket_id>", methods=["DELETE"])
def retire_ticket(ticket_id):
    actor = require_actor()
    ticket = ticket_lifecycle.retire(ticket_id, actor)
    return jsonify({"message": "Ticket retired", "id": ticket.id, "reference_code": ticket.reference_code})
