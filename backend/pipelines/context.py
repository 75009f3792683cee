from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from app.core.config import Settings
from app.domain import ScanConfig
from app.services.scoring import FeedbackIndex


@dataclass(slots=True)
class ScanContext:
    """State owned by a single scan invocation; never shared across runs."""

    run_id: str
    user_id: str
    config: ScanConfig
    settings: Settings
    started_at: datetime
    feedback: FeedbackIndex
    markets_scanned: int = 0
    tradeable_markets: int = 0
    clusters_found: int = 0
    low_confidence_clusters: int = 0
    error_message: str | None = None
