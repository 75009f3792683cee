"""Interval-based scan schedules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.domain import NotFound, ValidationError
from app.models import ScanSchedule


class ScheduleRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(
        self,
        user_id: str,
        *,
        interval_minutes: int,
        email: str | None = None,
        email_on_completion: bool = False,
        email_on_opportunities: bool = True,
        scan_config: dict[str, Any] | None = None,
        is_active: bool = True,
    ) -> ScanSchedule:
        if interval_minutes < 1:
            raise ValidationError("interval_minutes must be at least 1")
        record = ScanSchedule(
            user_id=user_id,
            interval_minutes=interval_minutes,
            is_active=is_active,
            email=email,
            email_on_completion=email_on_completion,
            email_on_opportunities=email_on_opportunities,
            scan_config=scan_config,
            next_run_at=datetime.now(timezone.utc),
        )
        self._session.add(record)
        self._session.flush()
        return record

    def list_for_user(self, user_id: str) -> list[ScanSchedule]:
        stmt = (
            select(ScanSchedule)
            .where(ScanSchedule.user_id == user_id)
            .order_by(ScanSchedule.created_at.desc())
        )
        return list(self._session.scalars(stmt))

    def delete(self, schedule_id: str, user_id: str) -> None:
        record = self._session.get(ScanSchedule, schedule_id)
        if record is None or record.user_id != user_id:
            raise NotFound(f"Schedule {schedule_id} not found")
        self._session.delete(record)
        self._session.flush()

    def due(self, now: datetime) -> list[ScanSchedule]:
        stmt = (
            select(ScanSchedule)
            .where(
                ScanSchedule.is_active.is_(True),
                or_(ScanSchedule.next_run_at.is_(None), ScanSchedule.next_run_at <= now),
            )
            .order_by(ScanSchedule.next_run_at)
        )
        return list(self._session.scalars(stmt))

    def mark_ran(self, schedule: ScanSchedule, now: datetime) -> ScanSchedule:
        schedule.last_run_at = now
        schedule.next_run_at = now + timedelta(minutes=schedule.interval_minutes)
        self._session.flush()
        return schedule
