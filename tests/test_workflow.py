from datetime import date, datetime

import pytest

from assetdesk.workflow import (
    CompletionRequired,
    RecordState,
    TicketState,
    record_completion,
    record_transition,
    ticket_transition,
)

NOW = datetime(2024, 5, 10, 14, 30)
EARLIER = datetime(2024, 5, 9, 8, 0)


def test_ticket_to_in_progress_stamps_started_at():
    patch = ticket_transition(TicketState("Novo"), "Em Andamento", now=NOW)
    assert patch == {"status": "Em Andamento", "started_at": NOW}


def test_ticket_completion_keeps_started_at_and_stamps_completed_at():
    patch = ticket_transition(TicketState("Em Andamento", started_at=EARLIER), "Concluído", now=NOW)
    assert patch == {"status": "Concluído", "completed_at": NOW}


def test_ticket_straight_to_completed_only_stamps_completed_at():
    patch = ticket_transition(TicketState("Novo"), "Concluído", now=NOW)
    assert patch == {"status": "Concluído", "completed_at": NOW}


def test_ticket_reopened_from_completed_clears_completed_at():
    state = TicketState("Concluído", started_at=EARLIER, completed_at=EARLIER)
    patch = ticket_transition(state, "Em Andamento", now=NOW)
    assert patch == {"status": "Em Andamento", "completed_at": None}


def test_ticket_to_standby_clears_started_at():
    patch = ticket_transition(TicketState("Em Andamento", started_at=EARLIER), "Standby", now=NOW)
    assert patch == {"status": "Standby", "started_at": None}


def test_ticket_back_to_new_clears_both_timestamps():
    state = TicketState("Concluído", started_at=EARLIER, completed_at=EARLIER)
    patch = ticket_transition(state, "Novo", now=NOW)
    assert patch == {"status": "Novo", "started_at": None, "completed_at": None}


def test_ticket_restarting_keeps_first_started_at():
    patch = ticket_transition(TicketState("Standby", started_at=EARLIER), "Em Andamento", now=NOW)
    assert patch == {"status": "Em Andamento"}


def test_ticket_same_status_is_empty_patch():
    assert ticket_transition(TicketState("Standby"), "Standby", now=NOW) == {}


def test_ticket_unknown_status_is_rejected():
    with pytest.raises(ValueError):
        ticket_transition(TicketState("Novo"), "Arquivado", now=NOW)


def test_record_move_to_completed_requires_completion():
    with pytest.raises(CompletionRequired):
        record_transition(RecordState("Em Andamento"), "Concluída")


def test_record_leaving_completed_clears_completion_date():
    state = RecordState("Concluída", completion_date=date(2024, 5, 1), technician_name="Carlos")
    assert record_transition(state, "Em Andamento") == {"status": "Em Andamento", "completion_date": None}


def test_record_move_without_completion_date_only_sets_status():
    assert record_transition(RecordState("Agendada"), "Cancelada") == {"status": "Cancelada"}


def test_record_completion_needs_technician():
    with pytest.raises(CompletionRequired, match="technician"):
        record_completion(RecordState("Em Andamento"), "   ", today=date(2024, 5, 10))


def test_record_completion_stamps_today():
    patch = record_completion(RecordState("Agendada"), " Carlos ", today=date(2024, 5, 10))
    assert patch == {"status": "Concluída", "completion_date": date(2024, 5, 10), "technician_name": "Carlos"}


def test_cancelled_record_cannot_be_completed():
    with pytest.raises(ValueError):
        record_completion(RecordState("Cancelada"), "Carlos", today=date(2024, 5, 10))
