"""Pointer gesture recognition for the status boards.

A press only becomes a drag once the activation constraint is met; anything
short of that is a click, which opens the card's detail view. A drag that
ends over another column yields a status change; ending over the card's own
column or outside every column changes nothing.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Union

from .board import RECORD_BOARD, TICKET_BOARD, BoardSpec


class PointerType(str, Enum):
    MOUSE = "mouse"
    TOUCH = "touch"


@dataclass(frozen=True)
class ActivationConstraint:
    """Drag starts when the pointer travels ``distance_px`` or is held ``delay_ms``.

    A constraint with neither threshold activates on the first press.
    """

    distance_px: float | None = None
    delay_ms: int | None = None

    def is_met(self, *, distance_px: float, elapsed_ms: float) -> bool:
        if self.distance_px is None and self.delay_ms is None:
            return True
        if self.distance_px is not None and distance_px >= self.distance_px:
            return True
        if self.delay_ms is not None and elapsed_ms >= self.delay_ms:
            return True
        return False


TICKET_ACTIVATION = ActivationConstraint(distance_px=10, delay_ms=250)
RECORD_ACTIVATION = ActivationConstraint()


@dataclass(frozen=True)
class OpenDetail:
    entity_id: int


@dataclass(frozen=True)
class StatusChange:
    entity_id: int
    new_status: str


@dataclass(frozen=True)
class NoChange:
    entity_id: int
    reason: str


GestureOutcome = Union[OpenDetail, StatusChange, NoChange]


def resolve_drop(entity_id: int, current_status: Any, over: str | None, board: BoardSpec) -> StatusChange | NoChange:
    """Turn the drop target of an active drag into a status change, if any."""
    if not board.has_column(over):
        return NoChange(entity_id, "outside")
    current = board.column_for(current_status)
    if over == current:
        return NoChange(entity_id, "same_column")
    return StatusChange(entity_id, over)  # type: ignore[arg-type]


class DragGesture:
    """Tracks one press-move-release sequence on a board card."""

    def __init__(
        self,
        entity_id: int,
        current_status: Any,
        board: BoardSpec,
        constraint: ActivationConstraint,
        pointer: PointerType = PointerType.MOUSE,
    ) -> None:
        self.entity_id = entity_id
        self.current_status = current_status
        self.board = board
        self.constraint = constraint
        self.pointer = PointerType(pointer)
        self._origin: tuple[float, float] | None = None
        self._pressed_at: float = 0.0
        self._travel: float = 0.0
        self.active = False

    def press(self, x: float, y: float, at_ms: float) -> None:
        self._origin = (x, y)
        self._pressed_at = at_ms
        self._travel = 0.0
        self.active = self.constraint.is_met(distance_px=0.0, elapsed_ms=0.0)

    def move(self, x: float, y: float, at_ms: float) -> bool:
        if self._origin is None:
            raise RuntimeError("Pointer moved before it was pressed")
        self._travel = max(self._travel, math.hypot(x - self._origin[0], y - self._origin[1]))
        if not self.active:
            self.active = self.constraint.is_met(distance_px=self._travel, elapsed_ms=at_ms - self._pressed_at)
        return self.active

    def release(self, over: str | None, at_ms: float) -> GestureOutcome:
        if self._origin is None:
            raise RuntimeError("Pointer released before it was pressed")
        if not self.active:
            self.active = self.constraint.is_met(distance_px=self._travel, elapsed_ms=at_ms - self._pressed_at)
        outcome: GestureOutcome
        if self.active:
            outcome = resolve_drop(self.entity_id, self.current_status, over, self.board)
        else:
            outcome = OpenDetail(self.entity_id)
        self._origin = None
        self.active = False
        return outcome


@dataclass(frozen=True)
class GestureSummary:
    """What the browser measured for a finished gesture, sent along with a move."""

    pointer: PointerType
    distance_px: float
    duration_ms: float

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "GestureSummary | None":
        if not payload:
            return None
        try:
            pointer = PointerType(str(payload.get("pointer") or PointerType.MOUSE.value).lower())
            distance = float(payload.get("distance_px", 0) or 0)
            duration = float(payload.get("duration_ms", 0) or 0)
        except (TypeError, ValueError) as exc:
            raise ValueError("Invalid gesture summary.") from exc
        if distance < 0 or duration < 0:
            raise ValueError("Invalid gesture summary.")
        return cls(pointer=pointer, distance_px=distance, duration_ms=duration)


def resolve_move(
    entity_id: int,
    current_status: Any,
    over: str | None,
    board: BoardSpec,
    constraint: ActivationConstraint,
    gesture: GestureSummary | None = None,
) -> GestureOutcome:
    """Resolve a move request; without a gesture summary the drag is taken as activated."""
    if gesture is not None and not constraint.is_met(distance_px=gesture.distance_px, elapsed_ms=gesture.duration_ms):
        return OpenDetail(entity_id)
    return resolve_drop(entity_id, current_status, over, board)


BOARD_ACTIVATION: dict[str, ActivationConstraint] = {
    TICKET_BOARD.name: TICKET_ACTIVATION,
    RECORD_BOARD.name: RECORD_ACTIVATION,
}


__all__ = [
    "ActivationConstraint",
    "BOARD_ACTIVATION",
    "DragGesture",
    "GestureOutcome",
    "GestureSummary",
    "NoChange",
    "OpenDetail",
    "PointerType",
    "RECORD_ACTIVATION",
    "StatusChange",
    "TICKET_ACTIVATION",
    "resolve_drop",
    "resolve_move",
]
