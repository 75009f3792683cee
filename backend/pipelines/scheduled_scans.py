from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, ContextManager

from loguru import logger
from sqlalchemy.orm import Session

from app.db import init_db, session_scope
from app.domain import ScanConfig
from app.models import ScanSchedule
from app.repositories import ScheduleRepository

from .scan_run import ScanOrchestrator, write_summary


@dataclass(slots=True, frozen=True)
class DueSchedule:
    schedule_id: str
    user_id: str
    config: ScanConfig


def _due_schedule(schedule: ScanSchedule) -> DueSchedule:
    config = ScanConfig.from_dict(
        schedule.scan_config,
        email=schedule.email,
        email_on_completion=schedule.email_on_completion,
        email_on_opportunities=schedule.email_on_opportunities,
    )
    return DueSchedule(schedule_id=schedule.id, user_id=schedule.user_id, config=config)


async def run_due_schedules(
    *,
    now: datetime | None = None,
    session_factory: Callable[[], ContextManager[Session]] | None = None,
    orchestrator: ScanOrchestrator | None = None,
) -> list[dict[str, Any]]:
    """Run every active schedule whose ``next_run_at`` has passed.

    A failing scan is logged and recorded in the summary; the schedule still
    advances so one broken configuration cannot stall the rest.
    """

    now = now or datetime.now(timezone.utc)
    session_factory = session_factory or session_scope
    orchestrator = orchestrator or ScanOrchestrator(session_factory=session_factory)

    with session_factory() as session:
        due = [_due_schedule(schedule) for schedule in ScheduleRepository(session).due(now)]
    logger.info("{} scan schedules due at {}", len(due), now.isoformat())

    results: list[dict[str, Any]] = []
    for item in due:
        entry: dict[str, Any] = {"schedule_id": item.schedule_id, "user_id": item.user_id}
        try:
            outcome = await orchestrator.run(item.user_id, item.config)
        except Exception as exc:
            logger.exception("Scheduled scan {} failed", item.schedule_id)
            entry.update(status="error", error=str(exc))
        else:
            entry.update(
                status=outcome.status,
                run_id=outcome.run_id,
                opportunities_found=outcome.opportunities_found,
                high_confidence=outcome.high_confidence,
            )

        with session_factory() as session:
            repo = ScheduleRepository(session)
            schedule = session.get(ScanSchedule, item.schedule_id)
            if schedule is not None:
                repo.mark_ran(schedule, now)
        results.append(entry)
    return results


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run scan schedules that are due")
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Write JSON summary to the specified path",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    init_db()
    results = asyncio.run(run_due_schedules())
    if args.summary_path:
        write_summary(args.summary_path, {"schedules": results})


if __name__ == "__main__":
    main()
