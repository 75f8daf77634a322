"""
Campaigns API
Campaign CRUD, lifecycle transitions, recipients, runs, segment previews,
message templates and analytics.

Request bodies are passed to CampaignService as raw JSON so that validation
errors come back in the same {"error", "code"} shape as domain errors.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import Field

from campaign_engine.api.v1.dependencies import get_caller_context, get_service
from campaign_engine.domain.models import CallerContext
from campaign_engine.domain.models.base import CamelModel
from campaign_engine.services.campaign_service import CampaignService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/campaigns", tags=["campaigns"])

# Error code -> HTTP status
ERROR_STATUS = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "cooldown": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "storage": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _respond(result: Dict[str, Any]) -> Dict[str, Any]:
    """Raise for error results, pass successes through."""
    if "error" in result:
        code = result.get("code", "error")
        raise HTTPException(
            status_code=ERROR_STATUS.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail={"error": result["error"], "code": code},
        )
    return result


class EnrollRequest(CamelModel):
    """Body for POST /campaigns/{id}/recipients"""
    customer_id: str = Field(..., min_length=1)


class OptOutRequest(CamelModel):
    """Body for POST /campaigns/opt-outs"""
    customer_id: str = Field(..., min_length=1)
    source: str = Field("staff", min_length=1)
    reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Collection-level routes (declared before /{campaign_id})
# ---------------------------------------------------------------------------

@router.get("")
def list_campaigns(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    """List campaigns, newest first"""
    return _respond(service.list_campaigns(caller, status_filter, limit, offset))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_campaign(
    payload: Dict[str, Any] = Body(...),
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    """Create a DRAFT campaign"""
    return _respond(service.create_campaign(caller, payload))


@router.get("/segment-fields")
def list_segment_fields(
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return service.list_segment_fields(caller)


@router.post("/segments/preview")
def preview_segment(
    payload: Dict[str, Any] = Body(...),
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    """Count and sample customers matching a segment. Read-only."""
    return _respond(service.preview_segment(caller, payload))


@router.get("/template-variables")
def list_template_variables(
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return service.list_template_variables(caller)


@router.get("/templates")
def list_message_templates(
    channel: Optional[str] = Query(None),
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.list_message_templates(caller, channel))


@router.post("/templates", status_code=status.HTTP_201_CREATED)
def create_message_template(
    payload: Dict[str, Any] = Body(...),
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.create_message_template(caller, payload))


@router.patch("/templates/{template_id}")
def update_message_template(
    template_id: str,
    payload: Dict[str, Any] = Body(...),
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.update_message_template(caller, template_id, payload))


@router.delete("/templates/{template_id}")
def delete_message_template(
    template_id: str,
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.delete_message_template(caller, template_id))


@router.post("/opt-outs")
def process_opt_out(
    request: OptOutRequest,
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    """Opt a customer out of marketing and close their active enrollments"""
    return _respond(service.process_opt_out(caller, request.customer_id, request.source, request.reason))


@router.delete("/recipients/{recipient_id}")
def remove_recipient(
    recipient_id: str,
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.remove_recipient(caller, recipient_id))


# ---------------------------------------------------------------------------
# Single campaign
# ---------------------------------------------------------------------------

@router.get("/{campaign_id}")
def get_campaign(
    campaign_id: str,
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.get_campaign(caller, campaign_id))


@router.patch("/{campaign_id}")
def update_campaign(
    campaign_id: str,
    payload: Dict[str, Any] = Body(...),
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.update_campaign(caller, campaign_id, payload))


@router.delete("/{campaign_id}")
def delete_campaign(
    campaign_id: str,
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.delete_campaign(caller, campaign_id))


@router.post("/{campaign_id}/activate")
def activate_campaign(
    campaign_id: str,
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.activate_campaign(caller, campaign_id))


@router.post("/{campaign_id}/pause")
def pause_campaign(
    campaign_id: str,
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.pause_campaign(caller, campaign_id))


@router.post("/{campaign_id}/archive")
def archive_campaign(
    campaign_id: str,
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.archive_campaign(caller, campaign_id))


@router.post("/{campaign_id}/run")
async def trigger_campaign_run(
    campaign_id: str,
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    """Run a campaign pass now (admin only). Delivery continues in the background."""
    return _respond(await service.trigger_campaign_run(caller, campaign_id))


@router.get("/{campaign_id}/recipients")
def list_recipients(
    campaign_id: str,
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.list_recipients(caller, campaign_id, status_filter, limit, offset))


@router.post("/{campaign_id}/recipients", status_code=status.HTTP_201_CREATED)
def enroll_customer(
    campaign_id: str,
    request: EnrollRequest,
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.enroll_customer(caller, campaign_id, request.customer_id))


@router.get("/{campaign_id}/analytics")
def get_campaign_analytics(
    campaign_id: str,
    caller: CallerContext = Depends(get_caller_context),
    service: CampaignService = Depends(get_service),
):
    return _respond(service.get_campaign_analytics(caller, campaign_id))
