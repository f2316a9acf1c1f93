import pytest

from assetdesk.board import RECORD_BOARD, TICKET_BOARD
from assetdesk.drag import (
    RECORD_ACTIVATION,
    TICKET_ACTIVATION,
    DragGesture,
    GestureSummary,
    NoChange,
    OpenDetail,
    PointerType,
    StatusChange,
    resolve_move,
)


def _ticket_gesture(pointer=PointerType.MOUSE):
    return DragGesture(7, "Novo", TICKET_BOARD, TICKET_ACTIVATION, pointer)


def test_short_click_opens_detail():
    gesture = _ticket_gesture()
    gesture.press(100, 100, at_ms=0)
    gesture.move(103, 101, at_ms=40)
    assert gesture.release("Standby", at_ms=80) == OpenDetail(7)


def test_travel_past_threshold_activates_drag():
    gesture = _ticket_gesture()
    gesture.press(0, 0, at_ms=0)
    assert gesture.move(6, 8, at_ms=30) is True
    assert gesture.release("Em Andamento", at_ms=60) == StatusChange(7, "Em Andamento")


def test_touch_hold_activates_without_travel():
    gesture = _ticket_gesture(PointerType.TOUCH)
    gesture.press(50, 50, at_ms=1000)
    assert gesture.move(51, 50, at_ms=1100) is False
    assert gesture.move(51, 51, at_ms=1260) is True
    assert gesture.release("Cancelado", at_ms=1400) == StatusChange(7, "Cancelado")


def test_drop_on_own_column_changes_nothing():
    gesture = _ticket_gesture()
    gesture.press(0, 0, at_ms=0)
    gesture.move(30, 0, at_ms=20)
    assert gesture.release("Novo", at_ms=40) == NoChange(7, "same_column")


def test_drop_outside_any_column_changes_nothing():
    gesture = _ticket_gesture()
    gesture.press(0, 0, at_ms=0)
    gesture.move(0, 40, at_ms=20)
    assert gesture.release(None, at_ms=40) == NoChange(7, "outside")


def test_record_board_activates_on_press():
    gesture = DragGesture(3, "Agendada", RECORD_BOARD, RECORD_ACTIVATION)
    gesture.press(10, 10, at_ms=0)
    assert gesture.active is True
    assert gesture.release("Em Andamento", at_ms=5) == StatusChange(3, "Em Andamento")


def test_release_before_press_is_an_error():
    with pytest.raises(RuntimeError):
        _ticket_gesture().release("Novo", at_ms=0)


def test_resolve_move_treats_short_gesture_as_click():
    gesture = GestureSummary.from_payload({"pointer": "mouse", "distance_px": 2, "duration_ms": 90})
    outcome = resolve_move(5, "Novo", "Standby", TICKET_BOARD, TICKET_ACTIVATION, gesture)
    assert outcome == OpenDetail(5)


def test_resolve_move_without_summary_is_a_drop():
    outcome = resolve_move(5, "Novo", "Standby", TICKET_BOARD, TICKET_ACTIVATION)
    assert outcome == StatusChange(5, "Standby")


@pytest.mark.parametrize(
    "payload",
    [{"pointer": "pen"}, {"distance_px": "far"}, {"duration_ms": -1}],
)
def test_invalid_gesture_summary(payload):
    with pytest.raises(ValueError):
        GestureSummary.from_payload(payload)
