"""
Workers Package
Background worker for scheduled campaign runs
"""
from campaign_engine.workers.campaign_worker import CampaignWorker

__all__ = [
    "CampaignWorker",
]
