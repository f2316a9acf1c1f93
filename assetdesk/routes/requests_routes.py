from __future__ import annotations

from datetime import datetime
from typing import Any

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy.exc import IntegrityError

from assetdesk.access import admin_required
from assetdesk.board import TICKET_BOARD, board_payload
from assetdesk.cache import get_query_cache
from assetdesk.drag import TICKET_ACTIVATION, GestureSummary, NoChange, OpenDetail, resolve_move
from assetdesk.extensions import db
from assetdesk.forms import PublicFormFieldForm, RequestUpdateForm, form_errors, json_formdata
from assetdesk.models import FieldType, MaintenanceRequest, PublicFormField
from assetdesk.mutations import TICKET_CACHE_KEYS, apply_patch, move_ticket
from assetdesk.workflow import OPEN_REQUEST_STATUSES, TicketState, ticket_transition

requests_bp = Blueprint("requests", __name__, url_prefix="/api")


def _serialized_tickets() -> list[dict[str, Any]]:
    tickets = MaintenanceRequest.query.order_by(MaintenanceRequest.created_at.desc(), MaintenanceRequest.id.desc()).all()
    return [ticket.to_dict() for ticket in tickets]


def _board() -> dict[str, Any]:
    return get_query_cache().fetch(
        ("maintenanceRequests", "board"),
        lambda: board_payload(_serialized_tickets(), TICKET_BOARD),
    )


def open_requests_count() -> int:
    def load() -> int:
        return MaintenanceRequest.query.filter(MaintenanceRequest.status.in_(OPEN_REQUEST_STATUSES)).count()

    return get_query_cache().fetch(("openRequestsCount",), load)


@requests_bp.route("/requests", methods=["GET"])
@login_required
def list_requests():
    return jsonify(get_query_cache().fetch(("maintenanceRequests", "list"), _serialized_tickets))


@requests_bp.route("/requests/board", methods=["GET"])
@login_required
def requests_board():
    return jsonify(_board())


@requests_bp.route("/requests/open-count", methods=["GET"])
@login_required
def requests_open_count():
    return jsonify({"count": open_requests_count()})


@requests_bp.route("/requests/<int:ticket_id>", methods=["GET"])
@login_required
def get_request(ticket_id: int):
    ticket = db.get_or_404(MaintenanceRequest, ticket_id, description="Request not found")
    return jsonify(ticket.to_dict())


@requests_bp.route("/requests/<int:ticket_id>/move", methods=["POST"])
@login_required
def move_request_card(ticket_id: int):
    ticket = db.get_or_404(MaintenanceRequest, ticket_id, description="Request not found")
    body = request.get_json(silent=True) or {}
    target = (body.get("target_status") or "").strip() or None
    try:
        gesture = GestureSummary.from_payload(body.get("gesture"))
    except ValueError as exc:
        return jsonify({"message": str(exc)}), 400

    outcome = resolve_move(ticket.id, ticket.status, target, TICKET_BOARD, TICKET_ACTIVATION, gesture)
    if isinstance(outcome, OpenDetail):
        return jsonify({"action": "open", "request": ticket.to_dict()})
    if isinstance(outcome, NoChange):
        return jsonify({"action": "none", "reason": outcome.reason, "request": ticket.to_dict()})

    try:
        patch = move_ticket(ticket.id, outcome.new_status)
    except ValueError as exc:
        return jsonify({"message": str(exc)}), 400
    except LookupError as exc:
        return jsonify({"message": str(exc)}), 404

    moved = db.session.get(MaintenanceRequest, ticket_id)
    current_app.logger.info("Ticket %s moved to %s by %s", ticket_id, outcome.new_status, current_user.id)
    return jsonify(
        {
            "message": "Request updated.",
            "action": "moved",
            "changed": sorted(patch),
            "request": moved.to_dict(),
            "board": _board(),
        }
    )


@requests_bp.route("/requests/<int:ticket_id>", methods=["PUT", "PATCH"])
@login_required
def update_request(ticket_id: int):
    """Detail-view edit: status through the same transition rules, plus the technician."""
    ticket = db.get_or_404(MaintenanceRequest, ticket_id, description="Request not found")
    form = RequestUpdateForm(formdata=json_formdata())
    if not form.validate():
        return jsonify({"message": "Please review the highlighted fields.", "errors": form_errors(form)}), 400

    patch: dict[str, Any] = {}
    if form.status.data:
        patch.update(ticket_transition(TicketState.of(ticket), form.status.data, now=datetime.utcnow()))
    body = request.get_json(silent=True) or {}
    if "technician_name" in body:
        technician = (form.technician_name.data or "").strip() or None
        if technician != ticket.technician_name:
            patch["technician_name"] = technician

    try:
        apply_patch(MaintenanceRequest, ticket_id, patch, TICKET_CACHE_KEYS)
    except LookupError as exc:
        return jsonify({"message": str(exc)}), 404
    updated = db.session.get(MaintenanceRequest, ticket_id)
    return jsonify({"message": "Request updated.", "changed": sorted(patch), "request": updated.to_dict()})


@requests_bp.route("/requests/<int:ticket_id>", methods=["DELETE"])
@login_required
@admin_required
def delete_request(ticket_id: int):
    ticket = db.get_or_404(MaintenanceRequest, ticket_id, description="Request not found")
    db.session.delete(ticket)
    db.session.commit()
    get_query_cache().invalidate_many(TICKET_CACHE_KEYS)
    return jsonify({"message": "Request deleted.", "id": ticket_id})


@requests_bp.route("/form-fields", methods=["GET"])
@login_required
def list_form_fields():
    fields = PublicFormField.query.order_by(PublicFormField.created_at.asc(), PublicFormField.id.asc()).all()
    return jsonify([field.to_dict() for field in fields])


@requests_bp.route("/form-fields", methods=["POST"])
@login_required
@admin_required
def create_form_field():
    form = PublicFormFieldForm(formdata=json_formdata())
    if not form.validate():
        return jsonify({"message": "Please review the highlighted fields.", "errors": form_errors(form)}), 400

    field = PublicFormField(
        field_label=form.field_label.data.strip(),
        field_type=FieldType(form.field_type.data),
        is_required=bool(form.is_required.data),
        user_id=current_user.id,
    )
    db.session.add(field)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"message": "A field with this label already exists.", "errors": {"field_label": ["Duplicate label."]}}), 400
    return jsonify(field.to_dict()), 201


@requests_bp.route("/form-fields/<int:field_id>", methods=["DELETE"])
@login_required
@admin_required
def delete_form_field(field_id: int):
    field = db.get_or_404(PublicFormField, field_id, description="Field not found")
    db.session.delete(field)
    db.session.commit()
    return jsonify({"message": "Field deleted.", "id": field_id})
