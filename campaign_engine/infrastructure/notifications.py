"""
Notification Sink
User-facing alerts raised by the campaign engine (run completed, run failed).
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from campaign_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    CAMPAIGN_COMPLETED = "CAMPAIGN_COMPLETED"
    CAMPAIGN_FAILED = "CAMPAIGN_FAILED"


@dataclass
class Notification:
    type: NotificationType
    title: str
    body: str
    ref_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


class NotificationSink(ABC):
    """Destination for staff-facing notifications."""

    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        pass


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log and keeps the most recent ones in memory."""

    def __init__(self, keep_last: int = 100):
        self.keep_last = keep_last
        self.recent: List[Notification] = []

    async def notify(self, notification: Notification) -> None:
        level = logging.ERROR if notification.type == NotificationType.CAMPAIGN_FAILED else logging.INFO
        logger.log(level, f"[{notification.type.value}] {notification.title}: {notification.body}")
        self.recent.append(notification)
        del self.recent[:-self.keep_last]
