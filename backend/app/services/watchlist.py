"""User watchlists with probability-drift alerts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import settings
from app.domain import ArbitrageError, Market, ValidationError
from app.models import AlertDirection, Notification, NotificationType, WatchlistEntry
from app.repositories import WatchlistRepository
from ingestion.client import MarketSource

from .notifications import NotificationDispatcher

_EPSILON = 1e-9


@dataclass(slots=True, frozen=True)
class ThresholdDecision:
    alert: bool
    direction: str | None


def evaluate_threshold(
    initial_probability: float,
    current_probability: float,
    threshold: float,
    alerted_direction: str | None,
) -> ThresholdDecision:
    """Alert once per crossing direction; re-arm after returning inside the band."""

    drift = current_probability - initial_probability
    if abs(drift) + _EPSILON < threshold:
        return ThresholdDecision(alert=False, direction=None)
    direction = AlertDirection.UP.value if drift > 0 else AlertDirection.DOWN.value
    return ThresholdDecision(alert=direction != alerted_direction, direction=direction)


@dataclass(slots=True)
class RefreshSummary:
    refreshed: int = 0
    alerts: int = 0
    failures: list[str] = field(default_factory=list)


class WatchlistTracker:
    def __init__(
        self,
        session: Session,
        *,
        source: MarketSource | None = None,
        dispatcher: NotificationDispatcher | None = None,
        default_threshold: float | None = None,
    ) -> None:
        self._repo = WatchlistRepository(session)
        self.source = source
        self.dispatcher = dispatcher or NotificationDispatcher(session)
        self.default_threshold = (
            settings.watchlist_default_alert_threshold
            if default_threshold is None
            else default_threshold
        )

    def add(
        self,
        user_id: str,
        market: Market,
        *,
        notes: str | None = None,
        alert_threshold: float | None = None,
    ) -> WatchlistEntry:
        threshold = self.default_threshold if alert_threshold is None else alert_threshold
        if not 0 < threshold <= 1:
            raise ValidationError("alert_threshold must be within (0, 1]")
        if market.probability is None or not 0 <= market.probability <= 1:
            raise ValidationError("probability must be within [0, 1]")
        entry = self._repo.add(user_id, market, notes=notes, alert_threshold=threshold)
        logger.info("User {} now watching market {}", user_id, market.market_id)
        return entry

    def remove(self, user_id: str, entry_id: str) -> None:
        self._repo.remove(entry_id, user_id)

    def update_notes(self, user_id: str, entry_id: str, notes: str | None) -> WatchlistEntry:
        return self._repo.update_notes(entry_id, user_id, notes)

    def is_watched(self, user_id: str, market_id: str) -> bool:
        return self._repo.is_watched(user_id, market_id)

    def list(self, user_id: str) -> list[WatchlistEntry]:
        return self._repo.list_for_user(user_id)

    def apply_quote(self, entry: WatchlistEntry, market: Market) -> Notification | None:
        """Record a fresh quote on ``entry`` and raise an alert on a new crossing."""

        if market.probability is None:
            raise ValidationError(f"Market {market.market_id} returned no probability")
        entry.current_probability = market.probability
        if market.liquidity is not None:
            entry.liquidity = market.liquidity

        decision = evaluate_threshold(
            entry.initial_probability,
            entry.current_probability,
            entry.alert_threshold,
            entry.alert_direction,
        )
        entry.alert_direction = decision.direction
        if not decision.alert:
            return None

        entry.last_alerted_at = datetime.now(timezone.utc)
        moved = "up" if decision.direction == AlertDirection.UP.value else "down"
        return self.dispatcher.create(
            entry.user_id,
            type=NotificationType.OTHER,
            title="Watchlist alert",
            message=(
                f"{entry.market_question[:80]} moved {moved} from "
                f"{entry.initial_probability:.0%} to {entry.current_probability:.0%}"
            ),
            data={
                "kind": "watchlist_alert",
                "entry_id": entry.id,
                "market_id": entry.market_id,
                "direction": decision.direction,
                "initial_probability": entry.initial_probability,
                "current_probability": entry.current_probability,
            },
        )

    async def refresh(self, user_id: str) -> RefreshSummary:
        if self.source is None:
            raise ValidationError("A market source is required to refresh the watchlist")

        summary = RefreshSummary()
        for entry in self._repo.list_for_user(user_id):
            try:
                market = await self.source.fetch_market(entry.market_id)
                alert = self.apply_quote(entry, market)
            except ArbitrageError as exc:
                logger.warning("Watchlist refresh skipped {}: {}", entry.market_id, exc)
                summary.failures.append(f"{entry.market_id}: {exc}")
                continue
            if alert is not None:
                summary.alerts += 1
            summary.refreshed += 1
        logger.info(
            "Refreshed {} watchlist entries for {} ({} alerts)",
            summary.refreshed,
            user_id,
            summary.alerts,
        )
        return summary


__all__ = ["RefreshSummary", "ThresholdDecision", "WatchlistTracker", "evaluate_threshold"]
