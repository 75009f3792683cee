"""Human feedback labels on candidate pairs."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.domain import FeedbackExample, ValidationError
from app.models import FeedbackRecord


class FeedbackRepository:
    """Append-only store; labels only influence future scoring."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def add(
        self,
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
        if not market1_question.strip() or not market2_question.strip():
            raise ValidationError("Both market questions are required for feedback")
        record = FeedbackRecord(
            user_id=user_id,
            opportunity_id=opportunity_id,
            market1_id=market1_id,
            market1_question=market1_question,
            market2_id=market2_id,
            market2_question=market2_question,
            expected_profit=expected_profit,
            is_valid_opportunity=is_valid_opportunity,
            reason=reason,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def recent(
        self,
        user_id: str,
        *,
        limit: int = 20,
        is_valid: bool | None = None,
    ) -> list[FeedbackExample]:
        stmt = select(FeedbackRecord).where(FeedbackRecord.user_id == user_id)
        if is_valid is not None:
            stmt = stmt.where(FeedbackRecord.is_valid_opportunity.is_(is_valid))
        stmt = stmt.order_by(FeedbackRecord.created_at.desc()).limit(limit)
        return [_to_example(record) for record in self._session.scalars(stmt)]

    def few_shot(self, user_id: str, *, per_label: int = 3) -> list[FeedbackExample]:
        """Most recent valid and invalid labels, for prompting the pair reviewer."""

        return self.recent(user_id, limit=per_label, is_valid=True) + self.recent(
            user_id, limit=per_label, is_valid=False
        )


def _to_example(record: FeedbackRecord) -> FeedbackExample:
    return FeedbackExample(
        market1_question=record.market1_question,
        market2_question=record.market2_question,
        is_valid_opportunity=record.is_valid_opportunity,
        reason=record.reason,
    )
