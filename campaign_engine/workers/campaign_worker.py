"""
Campaign Worker
Background worker that runs due campaigns on a fixed interval.

Alternative to the /cron/campaigns endpoint for deployments without an
external scheduler. Run as separate process:
    python -m campaign_engine.workers.campaign_worker
"""
import asyncio
import logging
import signal
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from campaign_engine.core.config import ConfigManager  # noqa: E402
from campaign_engine.infrastructure.storage.database import get_engine, init_schema  # noqa: E402
from campaign_engine.services.campaign_service import CampaignService  # noqa: E402

logger = logging.getLogger(__name__)

# Configure logging for worker
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class CampaignWorker:
    """
    Background worker for campaign processing.

    Responsibilities:
    - Run every ACTIVE campaign whose next run is due
    - Wait for deliveries before the next scan
    - Back off on repeated errors
    """

    POLL_INTERVAL = 60.0  # Seconds between scans
    MAX_CONSECUTIVE_ERRORS = 10

    def __init__(self, service: Optional[CampaignService] = None, config: Optional[ConfigManager] = None):
        self.running = False
        self._service = service
        self._config = config or ConfigManager()
        self.poll_interval = float(self._config.get("worker.poll_interval_seconds", self.POLL_INTERVAL))

        # Stats
        self._passes = 0
        self._messages_queued = 0
        self._messages_failed = 0

    async def initialize(self) -> None:
        """Create tables and the campaign service."""
        logger.info("Initializing Campaign Worker...")
        if self._service is None:
            init_schema(get_engine())
            self._service = CampaignService(config=self._config)
        logger.info("Campaign Worker initialized successfully")

    async def run(self) -> None:
        """
        Main worker loop.

        Continuously:
        1. Run due campaigns
        2. Wait for their deliveries
        3. Sleep until the next scan
        """
        await self.initialize()

        self.running = True
        consecutive_errors = 0

        logger.info("Campaign Worker started - scanning for due campaigns")

        while self.running:
            try:
                await self.run_once()
                consecutive_errors = 0
                await asyncio.sleep(self.poll_interval)

            except asyncio.CancelledError:
                logger.info("Worker received cancellation signal")
                break
            except Exception as e:
                consecutive_errors += 1
                logger.error(f"Worker error ({consecutive_errors}): {e}", exc_info=True)

                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    logger.critical("Too many consecutive errors, stopping worker")
                    break

                await asyncio.sleep(min(5 * consecutive_errors, 60))

        await self.shutdown()

    async def run_once(self) -> int:
        """
        Run one scan over due campaigns.

        Returns:
            Number of campaigns that ran
        """
        outcome = await self._service.process_due_campaigns()
        if "error" in outcome:
            raise RuntimeError(outcome["error"])
        await self._service.run_processor.wait_for_dispatches()

        results = [r for r in outcome["results"] if not r.get("skipped")]
        self._passes += 1
        self._messages_queued += sum(r["messagesQueued"] for r in results)
        self._messages_failed += sum(r["messagesFailed"] for r in results)
        if results:
            logger.info(f"Processed {len(results)} campaigns")
        return len(results)

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        logger.info("Shutting down Campaign Worker...")
        self.running = False
        if self._service is not None:
            await self._service.run_processor.wait_for_dispatches()

        logger.info(
            f"Campaign Worker shutdown complete. "
            f"Passes: {self._passes}, "
            f"Queued: {self._messages_queued}, "
            f"Failed: {self._messages_failed}"
        )

    def get_stats(self) -> dict:
        """Get worker statistics."""
        return {
            "running": self.running,
            "passes": self._passes,
            "messages_queued": self._messages_queued,
            "messages_failed": self._messages_failed,
        }


async def main():
    """Entry point for running campaign worker as separate process."""
    worker = CampaignWorker()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        worker.running = False

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    asyncio.run(main())
