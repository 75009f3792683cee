"""Watchlist persistence with the one-entry-per-market rule."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.domain import DuplicateEntry, Market, NotFound
from app.models import WatchlistEntry


class WatchlistRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def add(
        self,
        user_id: str,
        market: Market,
        *,
        notes: str | None = None,
        alert_threshold: float,
    ) -> WatchlistEntry:
        if self.find_by_market(user_id, market.market_id) is not None:
            raise DuplicateEntry(f"Market {market.market_id} is already on your watchlist")

        record = WatchlistEntry(
            user_id=user_id,
            market_id=market.market_id,
            market_question=market.question,
            market_url=market.url,
            initial_probability=market.probability,
            current_probability=market.probability,
            liquidity=market.liquidity,
            notes=notes,
            alert_threshold=alert_threshold,
        )
        try:
            with self._session.begin_nested():
                self._session.add(record)
                self._session.flush()
        except IntegrityError as exc:
            raise DuplicateEntry(
                f"Market {market.market_id} is already on your watchlist"
            ) from exc
        return record

    def remove(self, entry_id: str, user_id: str) -> None:
        record = self.get(entry_id, user_id)
        self._session.delete(record)
        self._session.flush()

    def update_notes(self, entry_id: str, user_id: str, notes: str | None) -> WatchlistEntry:
        record = self.get(entry_id, user_id)
        record.notes = notes
        self._session.flush()
        return record

    # ------------------------------------------------------------------
    # Queries

    def get(self, entry_id: str, user_id: str) -> WatchlistEntry:
        record = self._session.get(WatchlistEntry, entry_id)
        if record is None or record.user_id != user_id:
            raise NotFound(f"Watchlist entry {entry_id} not found")
        return record

    def find_by_market(self, user_id: str, market_id: str) -> WatchlistEntry | None:
        stmt = select(WatchlistEntry).where(
            WatchlistEntry.user_id == user_id, WatchlistEntry.market_id == market_id
        )
        return self._session.scalars(stmt).first()

    def is_watched(self, user_id: str, market_id: str) -> bool:
        return self.find_by_market(user_id, market_id) is not None

    def list_for_user(self, user_id: str) -> list[WatchlistEntry]:
        stmt = (
            select(WatchlistEntry)
            .where(WatchlistEntry.user_id == user_id)
            .order_by(WatchlistEntry.added_at.desc())
        )
        return list(self._session.scalars(stmt))
