from __future__ import annotations

import json
import queue

from flask import Blueprint, Response, current_app, jsonify
from flask_login import current_user, login_required

from assetdesk.cache import get_query_cache
from assetdesk.extensions import db
from assetdesk.forms import NotificationForm, form_errors, json_formdata
from assetdesk.models import NotificationType, Profile
from assetdesk.notifications import (
    create_notification,
    list_notifications,
    mark_read,
    resolve_notification_sound,
    unread_count,
)
from assetdesk.realtime import NotificationBridge, get_change_feed

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.route("", methods=["GET"])
@login_required
def list_own():
    return jsonify(list_notifications(current_user.id))


@notifications_bp.route("/unread-count", methods=["GET"])
@login_required
def unread():
    return jsonify({"count": unread_count(current_user.id)})


@notifications_bp.route("/<int:notification_id>/read", methods=["POST"])
@login_required
def read(notification_id: int):
    try:
        notification = mark_read(notification_id, current_user.id)
    except LookupError:
        return jsonify({"message": "Notification not found."}), 404
    return jsonify(notification.to_dict())


@notifications_bp.route("", methods=["POST"])
@login_required
def create():
    form = NotificationForm(formdata=json_formdata())
    if not form.validate():
        return jsonify({"message": "Please review the highlighted fields.", "errors": form_errors(form)}), 400

    target_id = form.target_user_id.data or current_user.id
    if db.session.get(Profile, target_id) is None:
        return jsonify({"message": "Recipient not found.", "errors": {"target_user_id": ["Unknown user."]}}), 400

    notification = create_notification(
        target_id,
        form.title.data.strip(),
        form.body.data.strip(),
        NotificationType(form.type.data or NotificationType.INFO.value),
        form.link.data,
    )
    return jsonify(notification.to_dict()), 201


@notifications_bp.route("/stream", methods=["GET"])
@login_required
def stream():
    """Server-sent events carrying one alert per notification inserted for the caller."""
    app = current_app._get_current_object()
    user_id = current_user.id
    heartbeat = float(app.config.get("REALTIME_HEARTBEAT_SECONDS", 15))
    alerts: queue.Queue = queue.Queue()

    def sound_resolver() -> str:
        # Runs inside the publishing commit; the lookup needs its own session
        with app.app_context():
            return resolve_notification_sound()

    bridge = NotificationBridge(
        get_change_feed(),
        get_query_cache(),
        on_alert=alerts.put,
        sound_resolver=sound_resolver,
        invalidate_delay=float(app.config.get("NOTIFICATION_INVALIDATE_DELAY_SECONDS", 0.5)),
    )
    bridge.mount(user_id)

    def events():
        try:
            yield ": connected\n\n"
            while True:
                try:
                    alert = alerts.get(timeout=heartbeat)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: notification\ndata: {json.dumps(alert.to_dict())}\n\n"
        finally:
            bridge.unmount()
            app.logger.debug("Notification stream closed for %s", user_id)

    return Response(
        events(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
