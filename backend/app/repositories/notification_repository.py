"""Notification storage and read-state transitions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.domain import NotFound
from app.models import Notification


class NotificationRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(
        self,
        user_id: str,
        *,
        type: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
        dedup_key: str | None = None,
    ) -> Notification:
        record = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data,
            dedup_key=dedup_key,
            is_read=False,
            created_at=datetime.now(timezone.utc),
        )
        self._session.add(record)
        self._session.flush()
        return record

    def find_duplicate(
        self, user_id: str, *, type: str, dedup_key: str, since: datetime
    ) -> Notification | None:
        stmt = (
            select(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.type == type,
                Notification.dedup_key == dedup_key,
                Notification.created_at >= since,
            )
            .limit(1)
        )
        return self._session.scalars(stmt).first()

    def list_for_user(self, user_id: str, *, limit: int = 50) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        return list(self._session.scalars(stmt))

    def get(self, notification_id: str, user_id: str) -> Notification:
        record = self._session.get(Notification, notification_id)
        if record is None or record.user_id != user_id:
            raise NotFound(f"Notification {notification_id} not found")
        return record

    def mark_read(self, notification_id: str, user_id: str) -> Notification:
        record = self.get(notification_id, user_id)
        if not record.is_read:
            record.is_read = True
            self._session.flush()
        return record

    def mark_all_read(self, user_id: str) -> int:
        result = self._session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session="evaluate")
        )
        return int(result.rowcount or 0)

    def unread_count(self, user_id: str) -> int:
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == user_id, Notification.is_read.is_(False)
        )
        return int(self._session.scalar(stmt) or 0)
