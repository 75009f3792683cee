"""Scan run lifecycle persistence."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.domain import (
    ConfidenceLabel,
    ExhaustiveSet,
    InvalidTransition,
    MarketPair,
    NotFound,
    ScanConfig,
)
from app.models import ScanOpportunity, ScanRun, ScanStatus


class ScanRepository:
    """Create scan runs and move them exactly once into a terminal state."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def create_run(self, user_id: str, config: ScanConfig | None = None) -> ScanRun:
        record = ScanRun(
            user_id=user_id,
            status=ScanStatus.RUNNING.value,
            started_at=datetime.now(timezone.utc),
            scan_config=config.to_dict() if config else None,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def complete_run(
        self,
        run_id: str,
        *,
        markets_scanned: int,
        tradeable_markets: int,
        clusters_found: int,
        pairs: Sequence[MarketPair],
        exhaustive_sets: Sequence[ExhaustiveSet] = (),
    ) -> ScanRun:
        record = self._require_running(run_id)
        for pair in pairs:
            self._session.add(_opportunity_record(record.id, pair))
        for item in exhaustive_sets:
            self._session.add(_exhaustive_set_record(record.id, item))

        counts = {label: 0 for label in ConfidenceLabel}
        for found in (*pairs, *exhaustive_sets):
            counts[found.label] += 1

        record.status = ScanStatus.COMPLETED.value
        record.completed_at = datetime.now(timezone.utc)
        record.markets_scanned = markets_scanned
        record.tradeable_markets = tradeable_markets
        record.clusters_found = clusters_found
        record.opportunities_found = len(pairs) + len(exhaustive_sets)
        record.high_confidence = counts[ConfidenceLabel.HIGH]
        record.medium_confidence = counts[ConfidenceLabel.MEDIUM]
        record.low_confidence = counts[ConfidenceLabel.LOW]
        self._session.flush()
        return record

    def fail_run(self, run_id: str, *, error_message: str) -> ScanRun:
        record = self._require_running(run_id)
        record.status = ScanStatus.FAILED.value
        record.completed_at = datetime.now(timezone.utc)
        record.markets_scanned = 0
        record.tradeable_markets = 0
        record.clusters_found = 0
        record.opportunities_found = 0
        record.high_confidence = 0
        record.medium_confidence = 0
        record.low_confidence = 0
        record.error_message = error_message
        self._session.flush()
        return record

    def _require_running(self, run_id: str) -> ScanRun:
        record = self._session.get(ScanRun, run_id)
        if record is None:
            raise NotFound(f"Scan run {run_id} not found")
        if record.is_terminal:
            raise InvalidTransition(f"Scan run {run_id} is already {record.status}")
        return record

    # ------------------------------------------------------------------
    # Queries

    def get_run(self, run_id: str, *, user_id: str | None = None) -> ScanRun | None:
        stmt = (
            select(ScanRun)
            .options(selectinload(ScanRun.opportunities))
            .where(ScanRun.id == run_id)
        )
        if user_id is not None:
            stmt = stmt.where(ScanRun.user_id == user_id)
        return self._session.scalars(stmt).first()

    def list_runs(self, user_id: str, *, limit: int = 50) -> list[ScanRun]:
        stmt = (
            select(ScanRun)
            .where(ScanRun.user_id == user_id)
            .order_by(ScanRun.started_at.desc())
            .limit(limit)
        )
        return list(self._session.scalars(stmt))

    def history_stats(self, user_id: str) -> dict[str, Any]:
        stmt = select(
            func.count(ScanRun.id),
            func.coalesce(func.sum(ScanRun.opportunities_found), 0),
            func.coalesce(func.sum(ScanRun.high_confidence), 0),
            func.avg(ScanRun.markets_scanned),
        ).where(
            ScanRun.user_id == user_id,
            ScanRun.status == ScanStatus.COMPLETED.value,
        )
        total, opportunities, high, average = self._session.execute(stmt).one()
        return {
            "total_scans": int(total or 0),
            "total_opportunities": int(opportunities or 0),
            "total_high_confidence": int(high or 0),
            "avg_markets_scanned": int(round(float(average))) if average is not None else 0,
        }


def _opportunity_record(run_id: str, pair: MarketPair) -> ScanOpportunity:
    return ScanOpportunity(
        scan_run_id=run_id,
        opportunity_id=pair.opportunity_id,
        kind=pair.kind,
        cluster_id=pair.cluster_id,
        market1_id=pair.market1.market_id,
        market1_question=pair.market1.question,
        market1_probability=pair.market1.probability,
        market1_action=pair.action1.value,
        market2_id=pair.market2.market_id,
        market2_question=pair.market2.question,
        market2_probability=pair.market2.probability,
        market2_action=pair.action2.value,
        expected_profit=pair.expected_profit,
        gap=pair.gap,
        confidence=pair.label.value,
        opposite=pair.opposite,
        match_reason=pair.match_reason,
        payload=pair.to_payload(),
    )


def _exhaustive_set_record(run_id: str, item: ExhaustiveSet) -> ScanOpportunity:
    return ScanOpportunity(
        scan_run_id=run_id,
        opportunity_id=item.opportunity_id,
        kind=item.kind,
        market1_id=item.market.market_id,
        market1_question=item.market.question,
        market1_probability=item.total_probability,
        market1_action=item.action.value,
        expected_profit=item.expected_profit,
        gap=item.gap,
        confidence=item.label.value,
        match_reason=f"{len(item.market.answers)} answers sum to {item.total_probability:.1%}",
        payload=item.to_payload(),
    )
