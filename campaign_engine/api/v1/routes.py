"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from campaign_engine.api.v1.endpoints import (
    campaigns,
    cron,
    health,
)

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(campaigns.router)

# External scheduler entry point
api_router.include_router(cron.router)
