"""
Console Dispatch Client
Logs messages instead of delivering them. Default until a real provider is wired in.
"""
import logging
import uuid
from typing import Optional

from campaign_engine.domain.models.message import MessageChannel
from campaign_engine.infrastructure.dispatch.base import DispatchClient, DispatchResult
from campaign_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)


class ConsoleDispatchClient(DispatchClient):
    """Mock provider that writes each message to the log."""

    @property
    def provider_name(self) -> str:
        return "console"

    async def send(
        self,
        channel: MessageChannel,
        to: str,
        body: str,
        subject: Optional[str] = None,
    ) -> DispatchResult:
        external_id = f"{channel.value.lower()}_mock_{uuid.uuid4().hex[:12]}"
        if channel == MessageChannel.EMAIL:
            logger.info(f"[EMAIL DISPATCH] to={to} subject={subject or '(no subject)'} id={external_id}")
        else:
            logger.info(f"[SMS DISPATCH] to={to} id={external_id}")
        logger.debug(f"[{channel.value} DISPATCH] body={body}")

        return DispatchResult(
            success=True,
            external_id=external_id,
            provider=self.provider_name,
            channel=channel,
            to=to,
            sent_at=utcnow(),
        )


_dispatch_client: Optional[DispatchClient] = None


def get_dispatch_client() -> DispatchClient:
    """Get or create the process-wide dispatch client."""
    global _dispatch_client
    if _dispatch_client is None:
        _dispatch_client = ConsoleDispatchClient()
    return _dispatch_client
