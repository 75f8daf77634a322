"""
Segment Domain Models
Declarative customer filters used for previews and automatic enrollment.
"""
from typing import Any, List, Optional
from enum import Enum

from pydantic import Field

from campaign_engine.domain.models.base import CamelModel
from campaign_engine.domain.models.message import MessageChannel


class SegmentLogic(str, Enum):
    """How conditions combine. Mixed grouping is not supported."""
    AND = "AND"
    OR = "OR"


class SegmentOperator(str, Enum):
    """Comparison operators available to segment conditions"""
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    BETWEEN = "between"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


class SegmentCondition(CamelModel):
    """Single {field, operator, value} condition"""
    field: str = Field(..., min_length=1, description="Registered segment field name")
    operator: SegmentOperator
    value: Optional[Any] = None
    value2: Optional[Any] = Field(None, description="Upper bound for 'between'")


class SegmentDefinition(CamelModel):
    """
    A segment: conditions joined by a single logic operator plus
    population-wide exclusions.
    """
    logic: SegmentLogic = SegmentLogic.AND
    conditions: List[SegmentCondition] = Field(default_factory=list)
    exclude_marketing_opt_out: bool = True
    exclude_recently_contacted: Optional[int] = Field(
        None, ge=1, description="Skip customers messaged within this many days"
    )
    require_channel: Optional[MessageChannel] = Field(
        None, description="Only customers reachable on this channel"
    )
