"""Lifecycle statuses for tickets and maintenance records and the side effects of moving between them.

Any status may move to any other status; only the derived timestamp fields
differ by destination. Every function here is pure: it receives the current
state and returns the patch that a single partial update should apply.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any


class RequestStatus(str, Enum):
    NEW = "Novo"
    IN_PROGRESS = "Em Andamento"
    STANDBY = "Standby"
    COMPLETED = "Concluído"
    CANCELLED = "Cancelado"


class RecordStatus(str, Enum):
    SCHEDULED = "Agendada"
    IN_PROGRESS = "Em Andamento"
    COMPLETED = "Concluída"
    CANCELLED = "Cancelada"


REQUEST_STATUSES: tuple[str, ...] = tuple(status.value for status in RequestStatus)
RECORD_STATUSES: tuple[str, ...] = tuple(status.value for status in RecordStatus)

# Tickets still waiting on staff; drives the dashboard KPI and the open-tickets banner
OPEN_REQUEST_STATUSES: tuple[str, ...] = (
    RequestStatus.NEW.value,
    RequestStatus.IN_PROGRESS.value,
    RequestStatus.STANDBY.value,
)
OPEN_RECORD_STATUSES: tuple[str, ...] = (RecordStatus.SCHEDULED.value, RecordStatus.IN_PROGRESS.value)


class CompletionRequired(ValueError):
    """Raised when a maintenance record is moved to completed without the completion details."""


@dataclass(frozen=True)
class TicketState:
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def of(cls, entity: Any) -> "TicketState":
        return cls(
            status=getattr(entity, "status"),
            started_at=getattr(entity, "started_at", None),
            completed_at=getattr(entity, "completed_at", None),
        )


@dataclass(frozen=True)
class RecordState:
    status: str
    completion_date: date | None = None
    technician_name: str | None = None

    @classmethod
    def of(cls, entity: Any) -> "RecordState":
        return cls(
            status=getattr(entity, "status"),
            completion_date=getattr(entity, "completion_date", None),
            technician_name=getattr(entity, "technician_name", None),
        )


def _normalize(raw: Any, allowed: tuple[str, ...], label: str) -> str:
    value = raw.value if isinstance(raw, Enum) else str(raw or "").strip()
    if value not in allowed:
        raise ValueError(f"Unknown {label} status: {value!r}")
    return value


def normalize_request_status(raw: Any) -> str:
    return _normalize(raw, REQUEST_STATUSES, "ticket")


def normalize_record_status(raw: Any) -> str:
    return _normalize(raw, RECORD_STATUSES, "maintenance")


def ticket_transition(state: TicketState, target: Any, *, now: datetime) -> dict[str, Any]:
    """Return the patch for moving a ticket to ``target``; empty when nothing changes.

    started_at is stamped the first time the ticket enters In Progress and is
    cleared when it lands anywhere other than In Progress or Completed.
    completed_at is stamped the first time it enters Completed and cleared
    when it leaves Completed.
    """
    new_status = normalize_request_status(target)
    if new_status == state.status:
        return {}

    patch: dict[str, Any] = {"status": new_status}
    in_progress = new_status == RequestStatus.IN_PROGRESS.value
    completed = new_status == RequestStatus.COMPLETED.value

    if in_progress and state.started_at is None:
        patch["started_at"] = now
    if completed and state.completed_at is None:
        patch["completed_at"] = now
    if not completed and state.completed_at is not None:
        patch["completed_at"] = None
    if not in_progress and not completed and state.started_at is not None:
        patch["started_at"] = None
    return patch


def record_transition(state: RecordState, target: Any) -> dict[str, Any]:
    """Patch for a board move of a maintenance record.

    Completing a record needs a technician name, so the board refuses it and
    the caller must go through :func:`record_completion`.
    """
    new_status = normalize_record_status(target)
    if new_status == state.status:
        return {}
    if new_status == RecordStatus.COMPLETED.value:
        raise CompletionRequired("Completing a maintenance requires the technician name.")

    patch: dict[str, Any] = {"status": new_status}
    if state.completion_date is not None:
        patch["completion_date"] = None
    return patch


def record_completion(state: RecordState, technician_name: str | None, *, today: date) -> dict[str, Any]:
    technician = (technician_name or "").strip()
    if not technician:
        raise CompletionRequired("Please provide the technician name.")
    if state.status == RecordStatus.COMPLETED.value:
        raise ValueError("Maintenance is already completed.")
    if state.status == RecordStatus.CANCELLED.value:
        raise ValueError("Cancelled maintenance cannot be completed.")
    return {
        "status": RecordStatus.COMPLETED.value,
        "completion_date": today,
        "technician_name": technician,
    }


__all__ = [
    "CompletionRequired",
    "OPEN_RECORD_STATUSES",
    "OPEN_REQUEST_STATUSES",
    "RECORD_STATUSES",
    "REQUEST_STATUSES",
    "RecordState",
    "RecordStatus",
    "RequestStatus",
    "TicketState",
    "normalize_record_status",
    "normalize_request_status",
    "record_completion",
    "record_transition",
    "ticket_transition",
]
