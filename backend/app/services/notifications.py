"""Notification creation with dedup, read-state tracking and email forwarding."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from html import escape
from typing import Any, Protocol

import httpx
from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models import Notification, NotificationType
from app.repositories import NotificationRepository


class EmailSink(Protocol):
    async def send_email(self, address: str, subject: str, body: str) -> bool:
        ...


class HttpEmailSink:
    """Best-effort delivery through a Resend-compatible ``POST /emails`` endpoint."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        from_address: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.email_api_key
        self.base_url = base_url or str(settings.email_api_base_url)
        self.from_address = from_address or settings.email_from_address
        self.timeout = timeout or settings.http_timeout_seconds
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def send_email(self, address: str, subject: str, body: str) -> bool:
        if not self.enabled:
            logger.debug("Email forwarding disabled; skipping message to {}", address)
            return False

        payload = {
            "from": self.from_address,
            "to": [address],
            "subject": subject,
            "html": body,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post("/emails", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Email send to {} failed: {}", address, exc)
            return False
        if response.is_error:
            logger.warning(
                "Email API rejected message to {} with status {}", address, response.status_code
            )
            return False
        return True


@dataclass(slots=True, frozen=True)
class OutgoingEmail:
    """Detached copy of a stored notification, safe to send after the session closes."""

    notification_id: str
    title: str
    message: str
    data: dict[str, Any] | None = None

    @classmethod
    def from_notification(cls, notification: Notification) -> "OutgoingEmail":
        return cls(
            notification_id=notification.id,
            title=notification.title,
            message=notification.message,
            data=dict(notification.data) if notification.data else None,
        )


def render_email_body(notification: OutgoingEmail) -> str:
    data = notification.data or {}
    rows = ""
    for opportunity in data.get("opportunities", [])[:10]:
        counterpart = (opportunity.get("market2") or {}).get("question", "")
        if opportunity.get("kind") == "exhaustive_set":
            total = float(opportunity.get("total_probability", 0.0))
            counterpart = f"{len(opportunity.get('legs', []))} answers sum to {total:.1%}"
        rows += (
            "<tr>"
            f"<td>{escape(str(opportunity.get('market1', {}).get('question', '')))}</td>"
            f"<td>{escape(str(counterpart))}</td>"
            f"<td>{float(opportunity.get('expected_profit', 0.0)):.1f}%</td>"
            "</tr>"
        )
    table = f"<table>{rows}</table>" if rows else ""
    return (
        f"<h2>{escape(notification.title)}</h2>"
        f"<p>{escape(notification.message)}</p>"
        f"{table}"
    )


class NotificationDispatcher:
    """Stores notifications per user; the unread count is always derived from stored rows."""

    def __init__(
        self,
        session: Session,
        *,
        dedup_window_minutes: int | None = None,
    ) -> None:
        self._repo = NotificationRepository(session)
        self.dedup_window = timedelta(
            minutes=settings.notification_dedup_window_minutes
            if dedup_window_minutes is None
            else dedup_window_minutes
        )

    def list(self, user_id: str, *, limit: int = 50) -> list[Notification]:
        return self._repo.list_for_user(user_id, limit=limit)

    def unread_count(self, user_id: str) -> int:
        return self._repo.unread_count(user_id)

    def mark_read(self, user_id: str, notification_id: str) -> Notification:
        return self._repo.mark_read(notification_id, user_id)

    def mark_all_read(self, user_id: str) -> int:
        return self._repo.mark_all_read(user_id)

    def create(
        self,
        user_id: str,
        *,
        type: NotificationType | str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
        dedup_key: str | None = None,
    ) -> Notification | None:
        """Store a notification; returns ``None`` when an identical one is still fresh."""

        type_value = type.value if isinstance(type, NotificationType) else NotificationType(type).value
        if dedup_key:
            since = datetime.now(timezone.utc) - self.dedup_window
            existing = self._repo.find_duplicate(
                user_id, type=type_value, dedup_key=dedup_key, since=since
            )
            if existing is not None:
                logger.debug("Skipping duplicate {} notification {}", type_value, dedup_key)
                return None

        return self._repo.create(
            user_id,
            type=type_value,
            title=title,
            message=message,
            data=data,
            dedup_key=dedup_key,
        )


async def forward_email(
    sink: EmailSink | None, email: OutgoingEmail, address: str | None
) -> bool:
    """Mirror a stored notification to email.

    Delivery is its own failure domain: errors are logged and reported as
    ``False``, the stored record is never touched.
    """

    if not address or sink is None:
        return False
    try:
        return await sink.send_email(address, email.title, render_email_body(email))
    except Exception:
        logger.exception("Email sink raised while forwarding notification {}", email.notification_id)
        return False


__all__ = [
    "EmailSink",
    "HttpEmailSink",
    "NotificationDispatcher",
    "OutgoingEmail",
    "forward_email",
    "render_email_body",
]
