"""
Message Dispatch Base Classes
Abstract contract for the external SMS/email delivery client.
"""
from abc import ABC, abstractmethod
from typing import Optional
from dataclasses import dataclass
from datetime import datetime
import logging

from campaign_engine.domain.models.message import MessageChannel

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Result of a send operation."""
    success: bool
    external_id: Optional[str] = None
    provider: str = ""
    channel: Optional[MessageChannel] = None
    to: str = ""
    error: Optional[str] = None
    sent_at: Optional[datetime] = None


class DispatchClient(ABC):
    """
    Abstract base class for message dispatch clients.

    Implementations must provide:
    - send(): deliver one message on a channel
    - provider_name: identifier stored alongside results
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (e.g., 'console', 'twilio')."""
        pass

    @abstractmethod
    async def send(
        self,
        channel: MessageChannel,
        to: str,
        body: str,
        subject: Optional[str] = None,
    ) -> DispatchResult:
        """
        Send a message.

        Args:
            channel: SMS or EMAIL
            to: Phone number or email address
            body: Rendered message body
            subject: Email subject (ignored for SMS)

        Returns:
            DispatchResult with the provider's external id on success
        """
        pass
