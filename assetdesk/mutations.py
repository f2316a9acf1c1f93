"""Applies status moves as a single partial row update and refreshes the caches they touch."""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable, Type

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from .cache import get_query_cache
from .extensions import db
from .models import MaintenanceRecord, MaintenanceRequest
from .workflow import RecordState, TicketState, record_completion, record_transition, ticket_transition

logger = logging.getLogger(__name__)

TICKET_CACHE_KEYS: tuple[str, ...] = ("maintenanceRequests", "openRequestsCount", "dashboard")
RECORD_CACHE_KEYS: tuple[str, ...] = ("maintenanceRecords", "dashboard")


def apply_patch(model: Type[db.Model], entity_id: int, patch: dict[str, Any], cache_keys: Iterable[str]) -> bool:
    """Write ``patch`` to one row with one UPDATE; nothing is sent for an empty patch."""
    if not patch:
        return False
    try:
        result = db.session.execute(update(model).where(model.id == entity_id).values(**patch))
        if result.rowcount == 0:
            db.session.rollback()
            raise LookupError(f"{model.__name__} {entity_id} not found")
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Status update rejected for %s %s", model.__tablename__, entity_id)
        raise
    get_query_cache().invalidate_many(cache_keys)
    return True


def _load(model: Type[db.Model], entity_id: int):
    entity = db.session.get(model, entity_id)
    if entity is None:
        raise LookupError(f"{model.__name__} {entity_id} not found")
    return entity


def move_ticket(ticket_id: int, target_status: Any, now: datetime | None = None) -> dict[str, Any]:
    ticket = _load(MaintenanceRequest, ticket_id)
    patch = ticket_transition(TicketState.of(ticket), target_status, now=now or datetime.utcnow())
    apply_patch(MaintenanceRequest, ticket_id, patch, TICKET_CACHE_KEYS)
    return patch


def move_record(record_id: int, target_status: Any) -> dict[str, Any]:
    record = _load(MaintenanceRecord, record_id)
    patch = record_transition(RecordState.of(record), target_status)
    apply_patch(MaintenanceRecord, record_id, patch, RECORD_CACHE_KEYS)
    return patch


def complete_record(record_id: int, technician_name: str | None, today: date | None = None) -> dict[str, Any]:
    record = _load(MaintenanceRecord, record_id)
    patch = record_completion(RecordState.of(record), technician_name, today=today or date.today())
    apply_patch(MaintenanceRecord, record_id, patch, RECORD_CACHE_KEYS)
    return patch
