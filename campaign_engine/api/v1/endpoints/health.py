"""
Health Check Endpoint
Liveness check polled by the process supervisor and the cron scheduler
before it calls /cron/campaigns.
"""
from fastapi import APIRouter, status
from typing import Dict

from campaign_engine.utils.clock import utcnow

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> Dict[str, str]:
    """Report that the campaign engine API is up."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat() + "Z",
        "service": "campaign-engine"
    }
