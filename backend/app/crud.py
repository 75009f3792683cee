from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from app.repositories import FeedbackRepository, ScanRepository, ScheduleRepository

from .models import FeedbackRecord, ScanRun, ScanSchedule


def list_scan_runs(session: Session, user_id: str, *, limit: int = 50) -> list[ScanRun]:
    return ScanRepository(session).list_runs(user_id, limit=limit)


def get_scan_run(session: Session, user_id: str, run_id: str) -> ScanRun | None:
    return ScanRepository(session).get_run(run_id, user_id=user_id)


def scan_history_stats(session: Session, user_id: str) -> dict[str, Any]:
    return ScanRepository(session).history_stats(user_id)


def record_feedback(
    session: Session,
    user_id: str,
    *,
    market1_question: str,
    market2_question: str,
    is_valid_opportunity: bool,
    reason: str | None = None,
    opportunity_id: str | None = None,
    market1_id: str | None = None,
    market2_id: str | None = None,
    expected_profit: float | None = None,
) -> FeedbackRecord:
    return FeedbackRepository(session).add(
        user_id,
        market1_question=market1_question,
        market2_question=market2_question,
        is_valid_opportunity=is_valid_opportunity,
        reason=reason,
        opportunity_id=opportunity_id,
        market1_id=market1_id,
        market2_id=market2_id,
        expected_profit=expected_profit,
    )


def list_schedules(session: Session, user_id: str) -> list[ScanSchedule]:
    return ScheduleRepository(session).list_for_user(user_id)


def create_schedule(
    session: Session,
    user_id: str,
    *,
    interval_minutes: int,
    is_active: bool = True,
    email: str | None = None,
    email_on_completion: bool = False,
    email_on_opportunities: bool = True,
    scan_config: dict[str, Any] | None = None,
) -> ScanSchedule:
    return ScheduleRepository(session).create(
        user_id,
        interval_minutes=interval_minutes,
        is_active=is_active,
        email=email,
        email_on_completion=email_on_completion,
        email_on_opportunities=email_on_opportunities,
        scan_config=scan_config,
    )


def delete_schedule(session: Session, user_id: str, schedule_id: str) -> None:
    ScheduleRepository(session).delete(schedule_id, user_id)
