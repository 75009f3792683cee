from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, SecretStr, field_validator

from .domain import ScanConfig


class ScanConfigIn(BaseModel):
    min_liquidity: float = Field(0.0, ge=0)
    min_volume: float = Field(0.0, ge=0)
    max_markets: int | None = Field(None, ge=1)
    email: str | None = None
    email_on_completion: bool = False
    email_on_opportunities: bool = False

    def to_domain(self) -> ScanConfig:
        return ScanConfig(**self.model_dump())


class ScanOpportunity(BaseModel):
    opportunity_id: str
    kind: str = "pair"
    cluster_id: str | None = None
    market1_id: str
    market1_question: str
    market1_probability: float
    market1_action: str
    market2_id: str | None = None
    market2_question: str | None = None
    market2_probability: float | None = None
    market2_action: str | None = None
    expected_profit: float
    gap: float
    confidence: str
    opposite: bool
    match_reason: str | None = None
    payload: dict[str, Any] | None = None

    model_config = {"from_attributes": True}


class ScanRunSummary(BaseModel):
    id: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    markets_scanned: int
    tradeable_markets: int
    clusters_found: int
    opportunities_found: int
    high_confidence: int
    medium_confidence: int
    low_confidence: int
    scan_config: dict[str, Any] | None = None
    error_message: str | None = None

    model_config = {"from_attributes": True}


class ScanRunDetail(ScanRunSummary):
    opportunities: list[ScanOpportunity] = Field(default_factory=list)


class ScanRunList(BaseModel):
    total: int
    items: list[ScanRunSummary]


class ScanStats(BaseModel):
    total_scans: int
    total_opportunities: int
    total_high_confidence: int
    avg_markets_scanned: int


class Notification(BaseModel):
    id: str
    type: str
    title: str
    message: str
    data: dict[str, Any] | None = None
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationList(BaseModel):
    unread_count: int
    items: list[Notification]


class MarkAllReadResult(BaseModel):
    updated: int


class WatchlistCreate(BaseModel):
    market_id: str = Field(..., min_length=1)
    market_question: str = Field(..., min_length=1)
    market_url: str | None = None
    probability: float = Field(..., ge=0, le=1)
    liquidity: float | None = Field(None, ge=0)
    notes: str | None = None
    alert_threshold: float | None = Field(None, gt=0, le=1)


class WatchlistNotesUpdate(BaseModel):
    notes: str | None = None


class WatchlistEntry(BaseModel):
    id: str
    market_id: str
    market_question: str
    market_url: str | None = None
    initial_probability: float
    current_probability: float
    liquidity: float | None = None
    notes: str | None = None
    alert_threshold: float
    alert_direction: str | None = None
    last_alerted_at: datetime | None = None
    added_at: datetime

    model_config = {"from_attributes": True}


class WatchlistContains(BaseModel):
    market_id: str
    is_watched: bool


class WatchlistRefreshResult(BaseModel):
    refreshed: int
    alerts: int
    failures: list[str]


class FeedbackCreate(BaseModel):
    market1_question: str = Field(..., min_length=1)
    market2_question: str = Field(..., min_length=1)
    is_valid_opportunity: bool
    reason: str | None = None
    opportunity_id: str | None = None
    market1_id: str | None = None
    market2_id: str | None = None
    expected_profit: float | None = None


class Feedback(BaseModel):
    id: str
    market1_question: str
    market2_question: str
    is_valid_opportunity: bool
    reason: str | None = None
    opportunity_id: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ReviewMarket(BaseModel):
    id: str
    question: str
    probability: float = Field(..., ge=0, le=1)
    liquidity: float | None = None


class ReviewPair(BaseModel):
    market1: ReviewMarket
    market2: ReviewMarket
    expected_profit: float
    match_reason: str | None = None


class ReviewRequest(BaseModel):
    pairs: list[ReviewPair] = Field(..., min_length=1, max_length=20)


class PairReviewResult(BaseModel):
    pair_index: int
    is_valid: bool
    confidence: float
    reason: str
    suggested_action: str


class ReviewResponse(BaseModel):
    results: list[PairReviewResult]


class TradeTargetIn(BaseModel):
    market_id: str
    allocation_percent: float
    question: str = ""
    outcome: Literal["YES", "NO"] = "YES"


class TradeRequest(BaseModel):
    api_key: SecretStr
    capital: float
    targets: list[TradeTargetIn]


class TradeResult(BaseModel):
    trades_executed: int
    errors: list[str]
    requested_count: int
    message: str


class ScheduleCreate(BaseModel):
    interval_minutes: int = Field(60, ge=1, le=10080)
    is_active: bool = True
    email: str | None = None
    email_on_completion: bool = False
    email_on_opportunities: bool = True
    scan_config: ScanConfigIn | None = None

    @field_validator("email")
    @classmethod
    def _strip_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


class Schedule(BaseModel):
    id: str
    interval_minutes: int
    is_active: bool
    email: str | None = None
    email_on_completion: bool
    email_on_opportunities: bool
    scan_config: dict[str, Any] | None = None
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
