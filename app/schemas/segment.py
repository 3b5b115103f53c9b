"""
Segment and trigger rule schemas.

Two shapes of trigger configuration exist side by side:

- ``TriggerConfig``: rule list + rule groups, one model per rule kind
  (property, behavior, interest) discriminated on ``rule_type``.
- ``LegacyTriggerConfig``: the older flat shape still stored on journeys
  created before rule groups existed.

Conversion between the two lives in ``app.services.journeys.trigger_mapping``.
"""

from datetime import timedelta
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    DOES_NOT_CONTAIN = "does_not_contain"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "not_in"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    DOES_NOT_EXIST = "does_not_exist"
    IN_LAST_DAYS = "in_last_days"
    BEFORE_DATE = "before_date"
    AFTER_DATE = "after_date"


# Segment condition trees


class Condition(BaseModel):
    id: Optional[str] = None
    field: str
    operator: ConditionOperator
    value: Any = None


class ConditionGroup(BaseModel):
    """Direct conditions and nested groups combined with one operator."""

    id: Optional[str] = None
    logical_operator: LogicalOperator = LogicalOperator.AND
    conditions: list[Condition] = Field(default_factory=list)
    nested_groups: list["ConditionGroup"] = Field(default_factory=list)


class SegmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    conditions: ConditionGroup = Field(default_factory=ConditionGroup)


class SegmentResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    conditions: ConditionGroup

    model_config = ConfigDict(from_attributes=True)


class SegmentEvaluateRequest(BaseModel):
    conditions: ConditionGroup
    customer_ids: Optional[list[str]] = None


class SegmentMembersResponse(BaseModel):
    segment_id: Optional[str] = None
    customer_ids: list[str]
    count: int
    cached: bool = False


# Trigger rules


class TimeFramePeriod(str, Enum):
    LAST_24_HOURS = "last_24_hours"
    LAST_7_DAYS = "last_7_days"
    LAST_30_DAYS = "last_30_days"
    LAST_90_DAYS = "last_90_days"
    CUSTOM = "custom"


PERIOD_DAYS = {
    TimeFramePeriod.LAST_24_HOURS: 1,
    TimeFramePeriod.LAST_7_DAYS: 7,
    TimeFramePeriod.LAST_30_DAYS: 30,
    TimeFramePeriod.LAST_90_DAYS: 90,
}


class TimeFrame(BaseModel):
    period: TimeFramePeriod = TimeFramePeriod.LAST_30_DAYS
    custom_days: Optional[int] = None

    @property
    def days(self) -> Optional[int]:
        if self.period == TimeFramePeriod.CUSTOM:
            return self.custom_days if self.custom_days and self.custom_days > 0 else None
        return PERIOD_DAYS[self.period]

    def window(self) -> Optional[timedelta]:
        """Look-back window, or None when a custom frame has no usable day count."""
        days = self.days
        return timedelta(days=days) if days else None


class EventCondition(BaseModel):
    id: Optional[str] = None
    property: str
    operator: ConditionOperator
    value: Any = None


class UserPropertyRule(BaseModel):
    id: Optional[str] = None
    rule_type: Literal["user_property", "property"] = "user_property"
    subcategory: Optional[str] = None
    conditions: list[EventCondition] = Field(default_factory=list)


class UserBehaviorRule(BaseModel):
    id: Optional[str] = None
    rule_type: Literal["user_behavior", "behavior"] = "user_behavior"
    subcategory: Optional[str] = None
    event_name: Optional[str] = None
    action: Literal["did", "did_not"] = "did"
    time_frame: TimeFrame = Field(default_factory=TimeFrame)
    conditions: list[EventCondition] = Field(default_factory=list)


class UserInterestRule(BaseModel):
    id: Optional[str] = None
    rule_type: Literal["user_interests", "interest"] = "user_interests"
    interest: Optional[str] = None
    conditions: list[EventCondition] = Field(default_factory=list)


TriggerRule = Annotated[
    Union[UserPropertyRule, UserBehaviorRule, UserInterestRule],
    Field(discriminator="rule_type"),
]


class RuleGroup(BaseModel):
    id: Optional[str] = None
    operator: LogicalOperator = LogicalOperator.AND
    rules: list[TriggerRule] = Field(default_factory=list)


class TargetSegment(BaseModel):
    """Main rules are AND-ed together and with every group's own result."""

    type: Literal["new_segment", "existing_segment"] = "new_segment"
    segment_id: Optional[str] = None
    segment_name: Optional[str] = None
    rules: list[TriggerRule] = Field(default_factory=list)
    rule_groups: list[RuleGroup] = Field(default_factory=list)


class TriggerConfig(BaseModel):
    name: Optional[str] = None
    target_segment: TargetSegment = Field(default_factory=TargetSegment)
    subscription_groups: list[str] = Field(default_factory=list)
    estimated_user_count: Optional[int] = None


class ReachEstimate(BaseModel):
    estimated_count: int
    evaluated_customers: int


# Legacy trigger shape


class LegacyOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    DOES_NOT_CONTAIN = "does_not_contain"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EXISTS = "exists"
    DOES_NOT_EXIST = "does_not_exist"


class LegacyRuleCondition(BaseModel):
    property: str
    operator: LegacyOperator
    value: Optional[Union[str, int, float]] = None


class LegacyTimeFrame(BaseModel):
    period: Literal["last_24_hours", "last_7_days", "last_30_days", "custom"]
    custom_days: Optional[int] = None


class LegacyTriggerRule(BaseModel):
    rule_type: Literal["user_property", "user_behavior", "user_interests"]
    category: str = ""
    event_name: Optional[str] = None
    conditions: list[LegacyRuleCondition] = Field(default_factory=list)
    time_frame: Optional[LegacyTimeFrame] = None


class LegacyRuleGroup(BaseModel):
    operator: LogicalOperator = LogicalOperator.AND
    rules: list[LegacyTriggerRule] = Field(default_factory=list)


class LegacyTargetSegment(BaseModel):
    type: Literal["new_segment", "existing_segment"] = "new_segment"
    rules: list[LegacyTriggerRule] = Field(default_factory=list)
    rule_groups: list[LegacyRuleGroup] = Field(default_factory=list)


class LegacyTriggerConfig(BaseModel):
    segment_name: Optional[str] = None
    target_segment: LegacyTargetSegment = Field(default_factory=LegacyTargetSegment)
    subscription_groups: list[str] = Field(default_factory=list)
