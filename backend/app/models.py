from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class ScanStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationType(str, Enum):
    OPPORTUNITY_FOUND = "opportunity_found"
    SCAN_COMPLETE = "scan_complete"
    OTHER = "other"


class AlertDirection(str, Enum):
    UP = "up"
    DOWN = "down"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on round trip; treat naive values as UTC."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class ScanRun(Base):
    __tablename__ = "scan_runs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=ScanStatus.RUNNING.value)
    markets_scanned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tradeable_markets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    clusters_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    opportunities_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    high_confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    medium_confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    low_confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scan_config: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    opportunities: Mapped[list["ScanOpportunity"]] = relationship(
        "ScanOpportunity",
        back_populates="scan_run",
        cascade="all, delete-orphan",
        order_by="ScanOpportunity.expected_profit.desc()",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != ScanStatus.RUNNING.value


class ScanOpportunity(Base):
    __tablename__ = "scan_opportunities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scan_run_id: Mapped[str] = mapped_column(String, ForeignKey("scan_runs.id"), nullable=False, index=True)
    opportunity_id: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False, default="pair")
    cluster_id: Mapped[str | None] = mapped_column(String, nullable=True)
    market1_id: Mapped[str] = mapped_column(String, nullable=False)
    market1_question: Mapped[str] = mapped_column(Text, nullable=False)
    market1_probability: Mapped[float] = mapped_column(Float, nullable=False)
    market1_action: Mapped[str] = mapped_column(String, nullable=False)
    market2_id: Mapped[str | None] = mapped_column(String, nullable=True)
    market2_question: Mapped[str | None] = mapped_column(Text, nullable=True)
    market2_probability: Mapped[float | None] = mapped_column(Float, nullable=True)
    market2_action: Mapped[str | None] = mapped_column(String, nullable=True)
    expected_profit: Mapped[float] = mapped_column(Float, nullable=False)
    gap: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[str] = mapped_column(String, nullable=False)
    opposite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    match_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    scan_run: Mapped[ScanRun] = relationship("ScanRun", back_populates="opportunities")


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_type_dedup", "user_id", "type", "dedup_key"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dedup_key: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class WatchlistEntry(Base):
    __tablename__ = "watchlist_entries"
    __table_args__ = (UniqueConstraint("user_id", "market_id", name="uq_watchlist_user_market"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    market_id: Mapped[str] = mapped_column(String, nullable=False)
    market_question: Mapped[str] = mapped_column(Text, nullable=False)
    market_url: Mapped[str | None] = mapped_column(String, nullable=True)
    initial_probability: Mapped[float] = mapped_column(Float, nullable=False)
    current_probability: Mapped[float] = mapped_column(Float, nullable=False)
    liquidity: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    alert_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=0.1)
    alert_direction: Mapped[str | None] = mapped_column(String, nullable=True)
    last_alerted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class FeedbackRecord(Base):
    __tablename__ = "feedback_examples"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    opportunity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    market1_id: Mapped[str | None] = mapped_column(String, nullable=True)
    market1_question: Mapped[str] = mapped_column(Text, nullable=False)
    market2_id: Mapped[str | None] = mapped_column(String, nullable=True)
    market2_question: Mapped[str] = mapped_column(Text, nullable=False)
    expected_profit: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_valid_opportunity: Mapped[bool] = mapped_column(Boolean, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ScanSchedule(Base):
    __tablename__ = "scan_schedules"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    email_on_completion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_on_opportunities: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    scan_config: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
