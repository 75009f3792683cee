from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from app import crud
from app.domain import NotFound, ValidationError


@patch("app.crud.ScanRepository")
def test_get_scan_run_scopes_to_user(mock_scan_repo):
    """Verify that get_scan_run passes the owner through to the repository."""
    mock_session = MagicMock()
    mock_scan_repo.return_value.get_run.return_value = "run"

    assert crud.get_scan_run(mock_session, "user-1", "run-1") == "run"
    mock_scan_repo.assert_called_once_with(mock_session)
    mock_scan_repo.return_value.get_run.assert_called_once_with("run-1", user_id="user-1")


@patch("app.crud.ScanRepository")
def test_list_scan_runs_forwards_limit(mock_scan_repo):
    mock_session = MagicMock()

    crud.list_scan_runs(mock_session, "user-1", limit=5)

    mock_scan_repo.return_value.list_runs.assert_called_once_with("user-1", limit=5)


@patch("app.crud.FeedbackRepository")
def test_record_feedback(mock_feedback_repo):
    """Verify that record_feedback calls the repository method correctly."""
    mock_session = MagicMock()

    crud.record_feedback(
        mock_session,
        "user-1",
        market1_question="A?",
        market2_question="B?",
        is_valid_opportunity=True,
    )

    mock_feedback_repo.return_value.add.assert_called_once_with(
        "user-1",
        market1_question="A?",
        market2_question="B?",
        is_valid_opportunity=True,
        reason=None,
        opportunity_id=None,
        market1_id=None,
        market2_id=None,
        expected_profit=None,
    )


def test_record_feedback_requires_both_questions(db_session):
    with pytest.raises(ValidationError):
        crud.record_feedback(
            db_session, "user-1", market1_question="A?", market2_question="  ", is_valid_opportunity=False
        )


def test_schedule_round_trip(db_session):
    schedule = crud.create_schedule(db_session, "user-1", interval_minutes=15, scan_config={"min_volume": 10})

    assert [item.id for item in crud.list_schedules(db_session, "user-1")] == [schedule.id]
    with pytest.raises(NotFound):
        crud.delete_schedule(db_session, "user-2", schedule.id)

    crud.delete_schedule(db_session, "user-1", schedule.id)
    assert crud.list_schedules(db_session, "user-1") == []


def test_create_schedule_rejects_zero_interval(db_session):
    with pytest.raises(ValidationError):
        crud.create_schedule(db_session, "user-1", interval_minutes=0)
