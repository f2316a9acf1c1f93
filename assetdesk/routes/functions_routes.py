from __future__ import annotations

import secrets
from urllib.parse import urlencode

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from assetdesk.access import admin_required
from assetdesk.ai_service import get_assistant
from assetdesk.cache import get_query_cache
from assetdesk.email_service import MailDeliveryError, send_invite_email
from assetdesk.extensions import db
from assetdesk.forms import InviteUserForm, form_errors, json_formdata
from assetdesk.models import Profile, ProfileRole

functions_bp = Blueprint("functions", __name__, url_prefix="/api/functions")


@functions_bp.route("/update-user-role", methods=["POST"])
@login_required
@admin_required
def update_user_role():
    body = request.get_json(silent=True) or {}
    user_id = body.get("userId")
    new_role = (body.get("newRole") or "").strip().lower()
    if not user_id or not new_role:
        return jsonify({"message": "userId and newRole are required"}), 400
    try:
        role = ProfileRole(new_role)
    except ValueError:
        return jsonify({"message": f"Unknown role: {new_role}"}), 400
    try:
        profile = db.session.get(Profile, int(user_id))
    except (TypeError, ValueError):
        return jsonify({"message": "Invalid userId"}), 400
    if profile is None:
        return jsonify({"message": "User not found"}), 404

    profile.role = role
    db.session.commit()
    current_app.logger.info("Profile %s role set to %s by %s", profile.id, role.value, current_user.id)
    return jsonify([profile.to_dict()])


@functions_bp.route("/invite-user", methods=["POST"])
@login_required
def invite_user():
    form = InviteUserForm(formdata=json_formdata())
    if not form.validate():
        message = "O e-mail é obrigatório" if not form.email.data else "E-mail inválido"
        return jsonify({"message": message, "errors": form_errors(form)}), 400

    email = form.email.data.strip().lower()
    if Profile.query.filter_by(email=email).first() is not None:
        return jsonify({"message": "A user with this email is already registered."}), 400

    expiry_hours = int(current_app.config.get("INVITE_EXPIRY_HOURS", 72))
    raw_token = secrets.token_urlsafe(32)
    profile = Profile(email=email, role=ProfileRole.USER)
    profile.issue_invite_token(raw_token, expires_in_hours=expiry_hours)
    db.session.add(profile)
    db.session.commit()

    base_url = current_app.config.get("INVITE_REDIRECT_URL", "/login")
    invite_link = f"{base_url}?{urlencode({'invite': raw_token, 'email': email})}"
    email_sent = True
    try:
        send_invite_email(profile, invite_link, expires_in_hours=expiry_hours)
    except MailDeliveryError:
        email_sent = False
        current_app.logger.exception("Failed to send invitation to %s", email)

    return jsonify({"message": "Invitation created.", "user": profile.to_dict(), "email_sent": email_sent}), 201


@functions_bp.route("/gemini-chat", methods=["POST"])
@login_required
def gemini_chat():
    body = request.get_json(silent=True) or {}
    try:
        result = get_assistant().chat(body.get("prompt") or "", current_user._get_current_object())
    except PermissionError as exc:
        return jsonify({"message": str(exc)}), 403
    except ValueError as exc:
        return jsonify({"message": str(exc)}), 400
    except RuntimeError as exc:
        current_app.logger.exception("Assistant request failed")
        return jsonify({"message": str(exc)}), 502

    called = result.get("functionCalled") or {}
    if called.get("name") == "createAsset":
        get_query_cache().invalidate_many(("assets", "dashboard"))
    return jsonify(result)
