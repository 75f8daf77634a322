"""
Drip Presets
Default step sequences per campaign type, used when a campaign is created
without an explicit config.
"""
import copy
from typing import Any, Dict

from campaign_engine.domain.models.campaign import CampaignConfig, CampaignType


DRIP_PRESETS: Dict[CampaignType, Dict[str, Any]] = {
    CampaignType.EXAM_REMINDER: {
        "steps": [
            {
                "stepIndex": 0,
                "delayDays": 0,
                "channel": "SMS",
                "templateBody": (
                    "Hi {{firstName}}! It's been about a year since your last eye exam at {{storeName}}. "
                    "Keep your vision sharp - book your annual exam today. Call us at {{storePhone}}."
                ),
            },
            {
                "stepIndex": 1,
                "delayDays": 14,
                "channel": "EMAIL",
                "templateSubject": "Your Annual Eye Exam Reminder - {{storeName}}",
                "templateBody": (
                    "Dear {{firstName}},\n\nYour last eye exam was about a year ago. Regular eye exams "
                    "are the best way to catch vision changes early.\n\nBook your appointment today at "
                    "{{storeName}}.\n\nCall: {{storePhone}}\n\nSee you soon!"
                ),
            },
        ],
        "stopOnConversion": True,
        "cooldownDays": 365,
        "enrollmentMode": "automatic",
    },
    CampaignType.WALKIN_FOLLOWUP: {
        "steps": [
            {
                "stepIndex": 0,
                "delayDays": 2,
                "channel": "SMS",
                "templateBody": (
                    "Hi {{firstName}}! Thanks for visiting {{storeName}}. Still thinking about those frames? "
                    "We'd love to help you find the perfect pair. Call us at {{storePhone}}."
                ),
            },
            {
                "stepIndex": 1,
                "delayDays": 7,
                "channel": "EMAIL",
                "templateSubject": "We saved your favourites - {{storeName}}",
                "templateBody": (
                    "Hi {{firstName}},\n\nWe loved having you in the store! The frames you tried on are "
                    "still waiting for you.\n\nCome back anytime or call {{storePhone}} to reserve your favourites."
                ),
            },
            {
                "stepIndex": 2,
                "delayDays": 14,
                "channel": "SMS",
                "templateBody": (
                    "{{firstName}}, your visit to {{storeName}} is still on our mind! We have a special "
                    "offer this week. Call {{storePhone}} to learn more."
                ),
            },
        ],
        "stopOnConversion": True,
        "cooldownDays": 90,
        "enrollmentMode": "automatic",
    },
    CampaignType.SECOND_PAIR: {
        "steps": [
            {
                "stepIndex": 0,
                "delayDays": 0,
                "channel": "EMAIL",
                "templateSubject": "Protect your backup pair - exclusive second-pair offer",
                "templateBody": (
                    "Hi {{firstName}},\n\nNow that you're loving your {{frameBrand}} frames, have you thought "
                    "about a backup pair? Accidents happen!\n\nAs a valued customer, we're offering you a "
                    "special deal on a second pair. Call us at {{storePhone}} or stop in at {{storeName}}."
                ),
            },
            {
                "stepIndex": 1,
                "delayDays": 21,
                "channel": "SMS",
                "templateBody": (
                    "{{firstName}}, two pairs are always better than one! Ask us about our second-pair "
                    "special at {{storeName}}. {{storePhone}}"
                ),
            },
        ],
        "stopOnConversion": True,
        "cooldownDays": 180,
        "enrollmentMode": "automatic",
    },
    CampaignType.PRESCRIPTION_EXPIRY: {
        "steps": [
            {
                "stepIndex": 0,
                "delayDays": 0,
                "channel": "SMS",
                "templateBody": (
                    "Hi {{firstName}}! Your prescription expires on {{rxExpiryDate}}. Book your eye exam "
                    "soon to stay current. Call {{storeName}} at {{storePhone}}."
                ),
            },
            {
                "stepIndex": 1,
                "delayDays": 14,
                "channel": "EMAIL",
                "templateSubject": "Your prescription is expiring - time to book your exam",
                "templateBody": (
                    "Dear {{firstName}},\n\nYour current prescription expires on {{rxExpiryDate}}. An "
                    "up-to-date prescription ensures you're seeing your best.\n\nBook your exam at "
                    "{{storeName}} today. Call {{storePhone}}."
                ),
            },
        ],
        "stopOnConversion": True,
        "cooldownDays": 365,
        "enrollmentMode": "automatic",
    },
    CampaignType.POST_PURCHASE_REFERRAL: {
        "steps": [
            {
                "stepIndex": 0,
                "delayDays": 3,
                "channel": "SMS",
                "templateBody": (
                    "Hi {{firstName}}! Loving your new frames? Refer a friend to {{storeName}} and you "
                    "both get a reward. Ask us for details at {{storePhone}}."
                ),
            },
            {
                "stepIndex": 1,
                "delayDays": 10,
                "channel": "EMAIL",
                "templateSubject": "Share {{storeName}} with a friend - earn rewards",
                "templateBody": (
                    "Hi {{firstName}},\n\nWe hope you're enjoying your new eyewear! When you refer a friend "
                    "to {{storeName}}, you both benefit.\n\nSimply have them mention your name when they "
                    "visit or call {{storePhone}}."
                ),
            },
        ],
        "stopOnConversion": False,
        "cooldownDays": 180,
        "enrollmentMode": "automatic",
    },
    CampaignType.BIRTHDAY: {
        "steps": [
            {
                "stepIndex": 0,
                "delayDays": 0,
                "channel": "SMS",
                "templateBody": (
                    "Happy Birthday {{firstName}}! As a gift from {{storeName}}, enjoy a special birthday "
                    "treat on your next visit. Call us at {{storePhone}}!"
                ),
            },
        ],
        "stopOnConversion": False,
        "cooldownDays": 365,
        "enrollmentMode": "automatic",
    },
    CampaignType.DORMANT_REACTIVATION: {
        "steps": [
            {
                "stepIndex": 0,
                "delayDays": 0,
                "channel": "EMAIL",
                "templateSubject": "We miss you, {{firstName}} - come back to {{storeName}}",
                "templateBody": (
                    "Hi {{firstName}},\n\nIt's been a while since we've seen you at {{storeName}}! New "
                    "frames, new technology, and the same great service.\n\nWe'd love to welcome you back. "
                    "Call {{storePhone}} or stop in anytime."
                ),
            },
            {
                "stepIndex": 1,
                "delayDays": 21,
                "channel": "SMS",
                "templateBody": (
                    "Hi {{firstName}}, {{storeName}} has exciting new frames in stock! It's been too long, "
                    "come see us. {{storePhone}}"
                ),
            },
        ],
        "stopOnConversion": True,
        "cooldownDays": 365,
        "enrollmentMode": "automatic",
    },
    CampaignType.INSURANCE_RENEWAL: {
        "steps": [
            {
                "stepIndex": 0,
                "delayDays": 0,
                "channel": "SMS",
                "templateBody": (
                    "Hi {{firstName}}! Your vision insurance with {{insuranceProvider}} renews in "
                    "{{insuranceRenewalMonth}}. Book your annual exam at {{storeName}} to use your "
                    "benefits. Call {{storePhone}}."
                ),
            },
            {
                "stepIndex": 1,
                "delayDays": 14,
                "channel": "EMAIL",
                "templateSubject": "Your {{insuranceProvider}} vision benefits renew in {{insuranceRenewalMonth}}",
                "templateBody": (
                    "Dear {{firstName}},\n\nYour vision insurance with {{insuranceProvider}} renews in "
                    "{{insuranceRenewalMonth}}. Don't let your benefits go unused!\n\nCall {{storeName}} "
                    "at {{storePhone}} to schedule your appointment."
                ),
            },
        ],
        "stopOnConversion": True,
        "cooldownDays": 365,
        "enrollmentMode": "automatic",
    },
    CampaignType.ONE_TIME_BLAST: {
        "steps": [
            {
                "stepIndex": 0,
                "delayDays": 0,
                "channel": "SMS",
                "templateBody": (
                    "Hi {{firstName}}! {{storeName}} has a special announcement for you. Call us at "
                    "{{storePhone}} or check in for details."
                ),
            },
        ],
        "stopOnConversion": False,
        "cooldownDays": 30,
        "enrollmentMode": "manual",
    },
    CampaignType.FAMILY_ADDON: {
        "steps": [
            {
                "stepIndex": 0,
                "delayDays": 0,
                "channel": "EMAIL",
                "templateSubject": "Family eyecare at {{storeName}} - see together",
                "templateBody": (
                    "Hi {{firstName}},\n\nDoes everyone in your family have their glasses and annual "
                    "exams up to date?\n\nBring the whole family to {{storeName}}. Call {{storePhone}}."
                ),
            },
        ],
        "stopOnConversion": True,
        "cooldownDays": 180,
        "enrollmentMode": "automatic",
    },
}

DEFAULT_PRESET: Dict[str, Any] = {
    "steps": [
        {
            "stepIndex": 0,
            "delayDays": 0,
            "channel": "SMS",
            "templateBody": "Hi {{firstName}}! A message from {{storeName}}. Call {{storePhone}}.",
        },
    ],
    "stopOnConversion": False,
    "cooldownDays": 30,
    "enrollmentMode": "automatic",
}


def get_drip_config(campaign_type: CampaignType) -> CampaignConfig:
    """Preset config for a campaign type, falling back to a single SMS step."""
    preset = DRIP_PRESETS.get(CampaignType(campaign_type), DEFAULT_PRESET)
    return CampaignConfig.model_validate(copy.deepcopy(preset))
