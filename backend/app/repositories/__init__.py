"""Repository abstractions for database interactions."""

from .feedback_repository import FeedbackRepository
from .notification_repository import NotificationRepository
from .scan_repository import ScanRepository
from .schedule_repository import ScheduleRepository
from .watchlist_repository import WatchlistRepository

__all__ = [
    "FeedbackRepository",
    "NotificationRepository",
    "ScanRepository",
    "ScheduleRepository",
    "WatchlistRepository",
]
