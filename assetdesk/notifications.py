from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .access import admin_user_ids
from .cache import get_query_cache
from .extensions import db
from .models import CompanySettings, MaintenanceRequest, Notification, NotificationType
from .realtime import NOTIFICATION_QUERY_KEYS

logger = logging.getLogger(__name__)

NEW_REQUEST_TITLE = "Novo Chamado Aberto!"
NEW_REQUEST_LINK = "/requests"
DESCRIPTION_PREVIEW_CHARS = 50


def _invalidate_for(user_ids: Iterable[int]) -> None:
    cache = get_query_cache()
    for user_id in set(user_ids):
        for key in NOTIFICATION_QUERY_KEYS:
            cache.invalidate((key, user_id))


def create_notification(
    user_id: int,
    title: str,
    body: str,
    notification_type: NotificationType | str = NotificationType.INFO,
    link: str | None = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        title=title,
        body=body,
        type=NotificationType(notification_type),
        link=link or None,
        read_at=None,
    )
    db.session.add(notification)
    db.session.commit()
    _invalidate_for([user_id])
    return notification


def list_notifications(user_id: int) -> list[dict[str, Any]]:
    def load() -> list[dict[str, Any]]:
        rows = (
            Notification.query.filter_by(user_id=user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .all()
        )
        return [row.to_dict() for row in rows]

    return get_query_cache().fetch(("notifications", user_id), load)


def unread_count(user_id: int) -> int:
    def load() -> int:
        return Notification.query.filter_by(user_id=user_id).filter(Notification.read_at.is_(None)).count()

    return get_query_cache().fetch(("unreadNotificationsCount", user_id), load)


def mark_read(notification_id: int, user_id: int) -> Notification:
    notification = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
    if notification is None:
        raise LookupError("Notification not found")
    if notification.read_at is None:
        notification.read_at = datetime.utcnow()
        db.session.commit()
    _invalidate_for([user_id])
    return notification


def resolve_notification_sound() -> str:
    default = current_app.config.get("DEFAULT_NOTIFICATION_SOUND_URL", "/sounds/notification.mp3")
    settings = db.session.get(CompanySettings, CompanySettings.SINGLETON_ID)
    if settings and settings.notification_sound_url:
        return settings.notification_sound_url
    return default


@dataclass(frozen=True)
class AdminFanOutPolicy:
    """Who hears about a new ticket and what they are told."""

    title: str = NEW_REQUEST_TITLE
    link: str = NEW_REQUEST_LINK
    preview_chars: int = DESCRIPTION_PREVIEW_CHARS
    notification_type: NotificationType = NotificationType.ALERT

    def recipients(self) -> list[int]:
        return admin_user_ids()

    def body_for(self, ticket: MaintenanceRequest) -> str:
        preview = (ticket.description or "")[: self.preview_chars]
        return f'Um novo chamado foi aberto por {ticket.requester_name}: "{preview}..."'


def fan_out_new_request(ticket: MaintenanceRequest, policy: AdminFanOutPolicy | None = None) -> int:
    """Notify every administrator about a new ticket.

    Failures are logged and swallowed; the ticket is already stored. Returns
    the number of notifications written.
    """
    policy = policy or AdminFanOutPolicy()
    try:
        recipients = policy.recipients()
        if not recipients:
            logger.warning("No administrator found to notify about ticket %s", ticket.id)
            return 0
        body = policy.body_for(ticket)
        for admin_id in recipients:
            db.session.add(
                Notification(
                    user_id=admin_id,
                    title=policy.title,
                    body=body,
                    type=policy.notification_type,
                    link=policy.link,
                )
            )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to notify administrators about ticket %s", ticket.id)
        return 0
    _invalidate_for(recipients)
    return len(recipients)


__all__ = [
    "AdminFanOutPolicy",
    "create_notification",
    "fan_out_new_request",
    "list_notifications",
    "mark_read",
    "resolve_notification_sound",
    "unread_count",
]
