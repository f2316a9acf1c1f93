from __future__ import annotations

from typing import Any

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy.orm import joinedload, selectinload

from assetdesk.access import owner_query
from assetdesk.board import RECORD_BOARD, board_payload
from assetdesk.cache import get_query_cache
from assetdesk.drag import RECORD_ACTIVATION, GestureSummary, NoChange, OpenDetail, resolve_move
from assetdesk.extensions import db
from assetdesk.forms import CompleteMaintenanceForm, MaintenanceRecordForm, form_errors, json_formdata
from assetdesk.inventory import ProductLine, attach_products, restore_products
from assetdesk.models import Asset, MaintenanceRecord, Task
from assetdesk.mutations import RECORD_CACHE_KEYS, complete_record, move_record
from assetdesk.workflow import CompletionRequired, RecordStatus

maintenance_bp = Blueprint("maintenance", __name__, url_prefix="/api")

STOCK_CACHE_KEYS = ("inventory", "purchases")


def _records_query():
    return MaintenanceRecord.query.options(
        joinedload(MaintenanceRecord.asset), selectinload(MaintenanceRecord.products)
    ).order_by(MaintenanceRecord.scheduled_date.desc(), MaintenanceRecord.id.desc())


def _serialized_records() -> list[dict[str, Any]]:
    return [record.to_dict() for record in _records_query().all()]


def _board() -> dict[str, Any]:
    return get_query_cache().fetch(
        ("maintenanceRecords", "board"),
        lambda: board_payload(_serialized_records(), RECORD_BOARD),
    )


def _apply_record_form(record: MaintenanceRecord, form: MaintenanceRecordForm) -> None:
    record.asset_id = form.asset_id.data
    record.maintenance_type = form.maintenance_type.data.strip()
    record.description = form.description.data or None
    record.scheduled_date = form.scheduled_date.data
    record.completion_date = form.completion_date.data
    record.cost = form.cost.data
    record.status = form.status.data or record.status or RecordStatus.SCHEDULED.value
    record.notes = form.notes.data or None
    record.technician_name = (form.technician_name.data or "").strip() or None


def _completion_missing_technician(form: MaintenanceRecordForm) -> bool:
    return form.status.data == RecordStatus.COMPLETED.value and not (form.technician_name.data or "").strip()


@maintenance_bp.route("/maintenance", methods=["GET"])
@login_required
def list_records():
    records = get_query_cache().fetch(("maintenanceRecords", "list"), _serialized_records)
    status = (request.args.get("status") or "").strip()
    if status:
        records = [record for record in records if record["status"] == status]
    return jsonify(records)


@maintenance_bp.route("/maintenance/board", methods=["GET"])
@login_required
def records_board():
    return jsonify(_board())


@maintenance_bp.route("/maintenance/<int:record_id>", methods=["GET"])
@login_required
def get_record(record_id: int):
    record = db.get_or_404(MaintenanceRecord, record_id, description="Maintenance record not found")
    return jsonify(record.to_dict())


@maintenance_bp.route("/maintenance", methods=["POST"])
@login_required
def create_record():
    body = request.get_json(silent=True) or {}
    form = MaintenanceRecordForm(formdata=json_formdata(body))
    if not form.validate():
        return jsonify({"message": "Please review the highlighted fields.", "errors": form_errors(form)}), 400
    if _completion_missing_technician(form):
        return jsonify({"message": "Please provide the technician name.", "errors": {"technician_name": ["Required to complete."]}}), 400
    try:
        lines = ProductLine.parse_many(body.get("products"))
    except ValueError as exc:
        return jsonify({"message": str(exc), "errors": {"products": [str(exc)]}}), 400

    asset = db.session.get(Asset, form.asset_id.data)
    if asset is None:
        return jsonify({"message": "Asset not found.", "errors": {"asset_id": ["Asset not found."]}}), 400

    record = MaintenanceRecord(user_id=current_user.id, asset=asset)
    _apply_record_form(record, form)
    db.session.add(record)
    attach_products(record, lines, current_user.id)
    db.session.commit()

    get_query_cache().invalidate_many(RECORD_CACHE_KEYS + STOCK_CACHE_KEYS)
    return jsonify(record.to_dict()), 201


@maintenance_bp.route("/maintenance/<int:record_id>", methods=["PUT", "PATCH"])
@login_required
def update_record(record_id: int):
    record = db.get_or_404(MaintenanceRecord, record_id, description="Maintenance record not found")
    body = request.get_json(silent=True) or {}
    form = MaintenanceRecordForm(formdata=json_formdata({**record.to_dict(), **body}))
    if not form.validate():
        return jsonify({"message": "Please review the highlighted fields.", "errors": form_errors(form)}), 400
    if _completion_missing_technician(form):
        return jsonify({"message": "Please provide the technician name.", "errors": {"technician_name": ["Required to complete."]}}), 400

    _apply_record_form(record, form)
    db.session.commit()
    get_query_cache().invalidate_many(RECORD_CACHE_KEYS)
    return jsonify(record.to_dict())


@maintenance_bp.route("/maintenance/<int:record_id>", methods=["DELETE"])
@login_required
def delete_record(record_id: int):
    record = db.get_or_404(MaintenanceRecord, record_id, description="Maintenance record not found")
    restored = restore_products(record, current_user.id)
    db.session.delete(record)
    db.session.commit()
    get_query_cache().invalidate_many(RECORD_CACHE_KEYS + STOCK_CACHE_KEYS)
    return jsonify({"message": "Maintenance deleted.", "id": record_id, "restored_products": restored})


@maintenance_bp.route("/maintenance/<int:record_id>/move", methods=["POST"])
@login_required
def move_record_card(record_id: int):
    record = db.get_or_404(MaintenanceRecord, record_id, description="Maintenance record not found")
    body = request.get_json(silent=True) or {}
    target = (body.get("target_status") or "").strip() or None
    try:
        gesture = GestureSummary.from_payload(body.get("gesture"))
    except ValueError as exc:
        return jsonify({"message": str(exc)}), 400

    outcome = resolve_move(record.id, record.status, target, RECORD_BOARD, RECORD_ACTIVATION, gesture)
    if isinstance(outcome, OpenDetail):
        return jsonify({"action": "open", "record": record.to_dict()})
    if isinstance(outcome, NoChange):
        return jsonify({"action": "none", "reason": outcome.reason, "record": record.to_dict()})

    try:
        patch = move_record(record.id, outcome.new_status)
    except CompletionRequired as exc:
        return jsonify({"message": str(exc), "action": "complete", "record": record.to_dict()}), 400
    except ValueError as exc:
        return jsonify({"message": str(exc)}), 400
    except LookupError as exc:
        return jsonify({"message": str(exc)}), 404

    moved = db.session.get(MaintenanceRecord, record_id)
    current_app.logger.info("Maintenance %s moved to %s by %s", record_id, outcome.new_status, current_user.id)
    return jsonify(
        {
            "message": "Maintenance updated.",
            "action": "moved",
            "changed": sorted(patch),
            "record": moved.to_dict(),
            "board": _board(),
        }
    )


@maintenance_bp.route("/maintenance/<int:record_id>/complete", methods=["POST"])
@login_required
def complete_record_card(record_id: int):
    db.get_or_404(MaintenanceRecord, record_id, description="Maintenance record not found")
    form = CompleteMaintenanceForm(formdata=json_formdata())
    if not form.validate():
        return jsonify({"message": "Please provide the technician name.", "errors": form_errors(form)}), 400
    try:
        complete_record(record_id, form.technician_name.data)
    except ValueError as exc:
        return jsonify({"message": str(exc)}), 400
    except LookupError as exc:
        return jsonify({"message": str(exc)}), 404

    completed = db.session.get(MaintenanceRecord, record_id)
    return jsonify({"message": "Maintenance completed.", "record": completed.to_dict(), "board": _board()})


@maintenance_bp.route("/calendar", methods=["GET"])
@login_required
def calendar():
    events: list[dict[str, Any]] = []
    for record in _records_query().all():
        events.append(
            {
                "id": f"maintenance-{record.id}",
                "kind": "maintenance",
                "title": f"{record.maintenance_type}: {record.asset.name if record.asset else 'N/A'}",
                "date": record.scheduled_date.isoformat(),
                "status": record.status,
                "entity_id": record.id,
            }
        )
    tasks = owner_query(Task).filter(Task.due_date.isnot(None)).order_by(Task.due_date.asc()).all()
    for task in tasks:
        events.append(
            {
                "id": f"task-{task.id}",
                "kind": "task",
                "title": task.title,
                "date": task.due_date.isoformat(),
                "status": task.status.value,
                "entity_id": task.id,
            }
        )
    events.sort(key=lambda event: event["date"])
    return jsonify(events)
