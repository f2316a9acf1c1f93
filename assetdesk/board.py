from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from .workflow import RECORD_STATUSES, REQUEST_STATUSES

logger = logging.getLogger(__name__)


class UnknownStatusPolicy(str, Enum):
    FIRST_COLUMN = "first_column"
    DROP = "drop"


@dataclass(frozen=True)
class BoardSpec:
    """Ordered columns of a status board and what to do with cards outside them."""

    name: str
    columns: tuple[str, ...]
    unknown_status: UnknownStatusPolicy = UnknownStatusPolicy.FIRST_COLUMN

    def column_for(self, status: Any) -> str | None:
        value = status.value if isinstance(status, Enum) else status
        if value in self.columns:
            return value
        if self.unknown_status is UnknownStatusPolicy.FIRST_COLUMN:
            return self.columns[0]
        return None

    def has_column(self, column: str | None) -> bool:
        return column is not None and column in self.columns


TICKET_BOARD = BoardSpec(name="maintenance_requests", columns=REQUEST_STATUSES)
RECORD_BOARD = BoardSpec(name="maintenance_records", columns=RECORD_STATUSES)


def _default_status(item: Any) -> Any:
    if isinstance(item, Mapping):
        return item.get("status")
    return getattr(item, "status", None)


def group_by_status(
    items: Iterable[Any],
    board: BoardSpec,
    status_of: Callable[[Any], Any] = _default_status,
) -> dict[str, list[Any]]:
    """Bucket items into the board's columns, keeping input order inside each column.

    Every column is present in the result, empty or not, in the board's order.
    """
    grouped: dict[str, list[Any]] = {column: [] for column in board.columns}
    dropped = 0
    for item in items:
        column = board.column_for(status_of(item))
        if column is None:
            dropped += 1
            continue
        grouped[column].append(item)
    if dropped:
        logger.debug("Board %s dropped %d cards with unknown status", board.name, dropped)
    return grouped


def board_payload(
    items: Iterable[Any],
    board: BoardSpec,
    serialize: Callable[[Any], dict[str, Any]] | None = None,
) -> dict[str, Any]:
    grouped = group_by_status(items, board)
    columns = {
        column: [serialize(item) if serialize else item for item in cards]
        for column, cards in grouped.items()
    }
    counts = {column: len(cards) for column, cards in columns.items()}
    return {"board": board.name, "order": list(board.columns), "columns": columns, "counts": counts}


__all__ = [
    "BoardSpec",
    "RECORD_BOARD",
    "TICKET_BOARD",
    "UnknownStatusPolicy",
    "board_payload",
    "group_by_status",
]
