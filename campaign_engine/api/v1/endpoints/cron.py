"""
Cron API
Entry point for the external scheduler that drives campaign processing.
"""
import logging
import time

from fastapi import APIRouter, Depends, HTTPException, status

from campaign_engine.api.v1.dependencies import get_service, verify_cron_secret
from campaign_engine.services.campaign_service import CampaignService
from campaign_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


@router.get("/campaigns", dependencies=[Depends(verify_cron_secret)])
async def process_campaigns(service: CampaignService = Depends(get_service)):
    """
    Run every due campaign, wait for deliveries and return a summary.

    Secured with a Bearer token (CRON_SECRET).
    """
    started = time.monotonic()
    logger.info("[cron/campaigns] Starting campaign processing run...")

    outcome = await service.process_due_campaigns()
    if "error" in outcome:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": outcome["error"], "code": outcome.get("code")},
        )
    await service.run_processor.wait_for_dispatches()

    results = outcome["results"]
    summary = {
        "processedAt": utcnow().isoformat() + "Z",
        "durationMs": int((time.monotonic() - started) * 1000),
        "campaigns": len(results),
        "totalQueued": sum(r["messagesQueued"] for r in results),
        "totalFailed": sum(r["messagesFailed"] for r in results),
        "results": results,
    }
    logger.info(f"[cron/campaigns] Done: {summary['campaigns']} campaigns, {summary['totalQueued']} queued")
    return summary
