"""
API Dependencies
Caller identity, service access and cron authorization.

Authentication itself happens upstream: the session layer forwards the
verified user id and role in X-User-Id / X-User-Role headers.
"""
import logging
import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from campaign_engine.core.config import Settings, get_settings
from campaign_engine.domain.models import CallerContext, UserRole
from campaign_engine.services.campaign_service import CampaignService, get_campaign_service

logger = logging.getLogger(__name__)


async def get_caller_context(
    user_id: Optional[str] = Header(None, alias="X-User-Id"),
    role: Optional[str] = Header(None, alias="X-User-Role"),
    user_name: Optional[str] = Header(None, alias="X-User-Name"),
) -> CallerContext:
    """
    Build the caller context from identity headers.

    Raises:
        HTTPException: 401 if the identity headers are missing or malformed
    """
    if not user_id or not role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    try:
        parsed_role = UserRole(role.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role: {role}",
        )
    return CallerContext(user_id=user_id, role=parsed_role, name=user_name)


def get_service() -> CampaignService:
    """Campaign service dependency (overridden in tests)."""
    return get_campaign_service()


async def verify_cron_secret(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Check the scheduler's bearer token against CRON_SECRET.

    When no secret is configured the endpoint is open, which is only
    acceptable for local development.
    """
    if not settings.cron_secret:
        logger.warning("CRON_SECRET not configured - cron endpoint is unauthenticated")
        return
    expected = f"Bearer {settings.cron_secret}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
