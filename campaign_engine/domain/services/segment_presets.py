"""
Segment Presets
Default audience per campaign type, applied when an automatic campaign is
created without a segment.
"""
import copy
from datetime import datetime
from typing import Any, Dict, Optional

from campaign_engine.domain.models.campaign import CampaignType
from campaign_engine.domain.models.segment import SegmentDefinition
from campaign_engine.utils.clock import utcnow


SEGMENT_PRESETS: Dict[CampaignType, Dict[str, Any]] = {
    CampaignType.EXAM_REMINDER: {
        "logic": "AND",
        "conditions": [
            {"field": "daysSinceLastExam", "operator": "between", "value": 330, "value2": 395},
        ],
        "excludeMarketingOptOut": True,
        "excludeRecentlyContacted": 30,
    },
    CampaignType.INSURANCE_RENEWAL: {
        "logic": "AND",
        "conditions": [
            {"field": "hasActiveInsurance", "operator": "eq", "value": True},
            {"field": "insuranceRenewalMonth", "operator": "in", "value": [10, 11, 12]},
        ],
        "excludeMarketingOptOut": True,
        "excludeRecentlyContacted": 60,
    },
    CampaignType.ONE_TIME_BLAST: {
        "logic": "AND",
        "conditions": [],
        "excludeMarketingOptOut": True,
    },
    CampaignType.SECOND_PAIR: {
        "logic": "AND",
        "conditions": [
            {"field": "lifetimeOrderCount", "operator": "eq", "value": 1},
            {"field": "daysSinceLastOrder", "operator": "between", "value": 30, "value2": 90},
        ],
        "excludeMarketingOptOut": True,
        "excludeRecentlyContacted": 30,
    },
    CampaignType.PRESCRIPTION_EXPIRY: {
        "logic": "AND",
        "conditions": [
            {"field": "rxExpiresInDays", "operator": "between", "value": 0, "value2": 30},
        ],
        "excludeMarketingOptOut": True,
        "excludeRecentlyContacted": 14,
    },
    CampaignType.FAMILY_ADDON: {
        "logic": "AND",
        "conditions": [
            {"field": "hasFamilyMembers", "operator": "eq", "value": True},
            {"field": "lifetimeOrderCount", "operator": "gte", "value": 1},
        ],
        "excludeMarketingOptOut": True,
        "excludeRecentlyContacted": 90,
    },
    CampaignType.POST_PURCHASE_REFERRAL: {
        "logic": "AND",
        "conditions": [
            {"field": "daysSinceLastOrder", "operator": "between", "value": 2, "value2": 7},
        ],
        "excludeMarketingOptOut": True,
        "excludeRecentlyContacted": 90,
    },
    CampaignType.DORMANT_REACTIVATION: {
        "logic": "AND",
        "conditions": [
            {"field": "daysSinceLastOrder", "operator": "gte", "value": 730},
        ],
        "excludeMarketingOptOut": True,
        "excludeRecentlyContacted": 180,
    },
}


def get_segment_preset(campaign_type: CampaignType,
                       now: Optional[datetime] = None) -> Optional[SegmentDefinition]:
    """
    Preset segment for a campaign type.

    BIRTHDAY targets the month of creation. Types without a preset (walk-in
    follow-ups, custom and generic drips) return None and need an explicit
    segment before they can run automatically.
    """
    campaign_type = CampaignType(campaign_type)
    if campaign_type == CampaignType.BIRTHDAY:
        month = (now or utcnow()).month
        return SegmentDefinition.model_validate({
            "logic": "AND",
            "conditions": [{"field": "birthdayMonth", "operator": "eq", "value": month}],
            "excludeMarketingOptOut": True,
            "excludeRecentlyContacted": 365,
        })
    preset = SEGMENT_PRESETS.get(campaign_type)
    if preset is None:
        return None
    return SegmentDefinition.model_validate(copy.deepcopy(preset))
