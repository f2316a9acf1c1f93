from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, current_app, jsonify, request, send_file
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from assetdesk.cache import get_query_cache
from assetdesk.extensions import db
from assetdesk.forms import LoginForm, MaintenanceRequestForm, form_errors, json_formdata, validate_custom_data
from assetdesk.models import MaintenanceRequest, Profile, PublicFormField
from assetdesk.mutations import TICKET_CACHE_KEYS
from assetdesk.notifications import fan_out_new_request
from assetdesk.storage import StorageError, get_storage
from assetdesk.workflow import RequestStatus

main_bp = Blueprint("main", __name__)


def _session_payload(user: Profile | None) -> dict[str, object]:
    return {
        "authenticated": user is not None,
        "user": user.to_dict() if user is not None else None,
        "csrf_token": generate_csrf(),
    }


@main_bp.route("/health", methods=["GET"])
def health():
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Health check could not reach the database")
        return jsonify({"status": "error", "message": str(exc)}), 503
    return jsonify({"status": "ok"})


@main_bp.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "GET":
        user = current_user if current_user.is_authenticated else None
        payload = _session_payload(user)
        if user is not None:
            payload["redirect"] = "/"
        return jsonify(payload)

    form = LoginForm(formdata=json_formdata())
    if not form.validate():
        return jsonify({"message": "Invalid login data.", "errors": form_errors(form)}), 400

    email = form.email.data.strip().lower()
    user = Profile.query.filter_by(email=email).first()
    if not user or not user.check_password(form.password.data):
        return jsonify({"message": "Invalid email or password."}), 401
    if not user.is_active:
        return jsonify({"message": "This account is disabled."}), 403

    login_user(user, remember=bool(form.remember_me.data))
    user.last_login_at = datetime.utcnow()
    db.session.commit()
    current_app.logger.info("Profile %s signed in", user.id)
    return jsonify({**_session_payload(user), "redirect": "/"})


@main_bp.route("/login/accept-invite", methods=["POST"])
def accept_invite():
    body = request.get_json(silent=True) or {}
    email = (body.get("email") or "").strip().lower()
    token = (body.get("token") or "").strip()
    password = body.get("password") or ""
    if not email or not token:
        return jsonify({"message": "Email and invitation token are required."}), 400
    if len(password) < 8:
        return jsonify({"message": "Password must be at least 8 characters.", "errors": {"password": ["Too short."]}}), 400

    user = Profile.query.filter_by(email=email).first()
    if not user or not user.invite_token_is_valid(token):
        return jsonify({"message": "This invitation link is invalid or has expired."}), 400

    user.set_password(password)
    user.clear_invite_token()
    user.last_login_at = datetime.utcnow()
    db.session.commit()
    login_user(user)
    return jsonify({**_session_payload(user), "redirect": "/"})


@main_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"message": "Signed out.", "redirect": "/login"})


@main_bp.route("/api/auth/session", methods=["GET"])
@login_required
def session_info():
    return jsonify(_session_payload(current_user))


@main_bp.route("/solicitar-manutencao", methods=["GET"])
def public_form():
    fields = PublicFormField.query.order_by(PublicFormField.created_at.asc(), PublicFormField.id.asc()).all()
    return jsonify({"fields": [field.to_dict() for field in fields], "csrf_token": generate_csrf()})


@main_bp.route("/solicitar-manutencao", methods=["POST"])
def open_ticket():
    body = request.get_json(silent=True) or {}
    form = MaintenanceRequestForm(formdata=json_formdata(body))
    errors = {} if form.validate() else form_errors(form)

    fields = PublicFormField.query.all()
    custom_data, custom_errors = validate_custom_data(fields, body.get("custom_data"))
    if custom_errors:
        errors["custom_data"] = custom_errors
    if errors:
        return jsonify({"message": "Please review the highlighted fields.", "errors": errors}), 400

    ticket = MaintenanceRequest(
        requester_name=form.requester_name.data.strip(),
        requester_email=(form.requester_email.data or "").strip().lower() or None,
        requester_phone=(form.requester_phone.data or "").strip() or None,
        description=form.description.data.strip(),
        custom_data=custom_data or None,
        status=RequestStatus.NEW.value,
    )
    db.session.add(ticket)
    db.session.commit()
    get_query_cache().invalidate_many(TICKET_CACHE_KEYS)

    notified = fan_out_new_request(ticket)
    current_app.logger.info("Ticket %s opened; %d administrators notified", ticket.id, notified)
    return jsonify({"message": "Request submitted.", "request": ticket.to_dict()}), 201


@main_bp.route("/solicitar-manutencao/consulta", methods=["GET"])
def lookup_tickets():
    email = (request.args.get("email") or "").strip().lower()
    if not email:
        return jsonify({"message": "Email is required.", "errors": {"email": ["Email is required."]}}), 400
    tickets = (
        MaintenanceRequest.query.filter(db.func.lower(MaintenanceRequest.requester_email) == email)
        .order_by(MaintenanceRequest.created_at.desc(), MaintenanceRequest.id.desc())
        .all()
    )
    return jsonify({"requests": [ticket.to_dict() for ticket in tickets]})


@main_bp.route("/storage/<bucket>/<path:object_path>", methods=["GET"])
def storage_object(bucket: str, object_path: str):
    try:
        path = get_storage().resolve(bucket, object_path)
    except StorageError:
        abort(404, description="File not found")
    if not path.is_file():
        abort(404, description="File not found")
    return send_file(path)
