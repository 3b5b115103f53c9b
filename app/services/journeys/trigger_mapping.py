"""
Conversion between the legacy and the rule-group trigger configurations.

Only these two functions translate between the shapes. Fields both shapes
carry (rule kinds, event names, conditions with shared operators, time
frames, groups, subscription groups) survive ``to_enhanced(to_legacy(x))``.
Operators the legacy shape lacks are narrowed on the way down
(``greater_than_or_equal`` becomes ``greater_than`` and so on).
"""

from typing import Any, Optional

from app.schemas.segment import (
    PERIOD_DAYS,
    ConditionOperator,
    EventCondition,
    LegacyOperator,
    LegacyRuleCondition,
    LegacyRuleGroup,
    LegacyTargetSegment,
    LegacyTimeFrame,
    LegacyTriggerConfig,
    LegacyTriggerRule,
    RuleGroup,
    TargetSegment,
    TimeFrame,
    TimeFramePeriod,
    TriggerConfig,
    UserBehaviorRule,
    UserInterestRule,
    UserPropertyRule,
)

LEGACY_TO_CONDITION_OPERATOR = {
    LegacyOperator.EQUALS: ConditionOperator.EQUALS,
    LegacyOperator.NOT_EQUALS: ConditionOperator.NOT_EQUALS,
    LegacyOperator.CONTAINS: ConditionOperator.CONTAINS,
    LegacyOperator.DOES_NOT_CONTAIN: ConditionOperator.NOT_CONTAINS,
    LegacyOperator.GREATER_THAN: ConditionOperator.GREATER_THAN,
    LegacyOperator.LESS_THAN: ConditionOperator.LESS_THAN,
    LegacyOperator.EXISTS: ConditionOperator.EXISTS,
    LegacyOperator.DOES_NOT_EXIST: ConditionOperator.NOT_EXISTS,
}

CONDITION_TO_LEGACY_OPERATOR = {
    ConditionOperator.EQUALS: LegacyOperator.EQUALS,
    ConditionOperator.NOT_EQUALS: LegacyOperator.NOT_EQUALS,
    ConditionOperator.CONTAINS: LegacyOperator.CONTAINS,
    ConditionOperator.NOT_CONTAINS: LegacyOperator.DOES_NOT_CONTAIN,
    ConditionOperator.DOES_NOT_CONTAIN: LegacyOperator.DOES_NOT_CONTAIN,
    ConditionOperator.GREATER_THAN: LegacyOperator.GREATER_THAN,
    ConditionOperator.LESS_THAN: LegacyOperator.LESS_THAN,
    ConditionOperator.GREATER_THAN_OR_EQUAL: LegacyOperator.GREATER_THAN,
    ConditionOperator.LESS_THAN_OR_EQUAL: LegacyOperator.LESS_THAN,
    ConditionOperator.EXISTS: LegacyOperator.EXISTS,
    ConditionOperator.IS_NOT_EMPTY: LegacyOperator.EXISTS,
    ConditionOperator.NOT_EXISTS: LegacyOperator.DOES_NOT_EXIST,
    ConditionOperator.DOES_NOT_EXIST: LegacyOperator.DOES_NOT_EXIST,
    ConditionOperator.IS_EMPTY: LegacyOperator.DOES_NOT_EXIST,
    ConditionOperator.IN: LegacyOperator.CONTAINS,
    ConditionOperator.NOT_IN: LegacyOperator.DOES_NOT_CONTAIN,
}

RULE_TYPE_TO_LEGACY = {
    "user_property": "user_property",
    "property": "user_property",
    "user_behavior": "user_behavior",
    "behavior": "user_behavior",
    "user_interests": "user_interests",
    "interest": "user_interests",
}

_DAYS_TO_PERIOD = {days: period for period, days in PERIOD_DAYS.items()}


def _legacy_value(value: Any) -> Optional[Any]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    return str(value)


def _legacy_time_frame(time_frame: TimeFrame) -> LegacyTimeFrame:
    if time_frame.period == TimeFramePeriod.LAST_90_DAYS:
        return LegacyTimeFrame(period="custom", custom_days=90)
    if time_frame.period == TimeFramePeriod.CUSTOM:
        return LegacyTimeFrame(period="custom", custom_days=time_frame.custom_days)
    return LegacyTimeFrame(period=time_frame.period.value)


def derive_time_frame(legacy: Optional[LegacyTimeFrame]) -> TimeFrame:
    """Named period for the standard day counts, ``custom`` otherwise."""
    if legacy is None:
        return TimeFrame()
    if legacy.period != "custom":
        return TimeFrame(period=TimeFramePeriod(legacy.period))
    period = _DAYS_TO_PERIOD.get(legacy.custom_days)
    if period is not None:
        return TimeFrame(period=period)
    return TimeFrame(period=TimeFramePeriod.CUSTOM, custom_days=legacy.custom_days)


def _rule_to_legacy(rule) -> LegacyTriggerRule:
    conditions = [
        LegacyRuleCondition(
            property=condition.property,
            operator=CONDITION_TO_LEGACY_OPERATOR.get(condition.operator, LegacyOperator.EQUALS),
            value=_legacy_value(condition.value),
        )
        for condition in rule.conditions
    ]
    rule_type = RULE_TYPE_TO_LEGACY[rule.rule_type]
    if isinstance(rule, UserBehaviorRule):
        return LegacyTriggerRule(
            rule_type=rule_type,
            category=rule.subcategory or "",
            event_name=rule.event_name,
            conditions=conditions,
            time_frame=_legacy_time_frame(rule.time_frame),
        )
    if isinstance(rule, UserInterestRule):
        return LegacyTriggerRule(rule_type=rule_type, category=rule.interest or "", conditions=conditions)
    return LegacyTriggerRule(rule_type=rule_type, category=rule.subcategory or "", conditions=conditions)


def _rule_to_enhanced(rule: LegacyTriggerRule):
    conditions = [
        EventCondition(
            property=condition.property,
            operator=LEGACY_TO_CONDITION_OPERATOR[condition.operator],
            value=condition.value,
        )
        for condition in rule.conditions
    ]
    category = rule.category or None
    if rule.rule_type == "user_behavior":
        return UserBehaviorRule(
            subcategory=category,
            event_name=rule.event_name,
            time_frame=derive_time_frame(rule.time_frame),
            conditions=conditions,
        )
    if rule.rule_type == "user_interests":
        return UserInterestRule(interest=category, conditions=conditions)
    return UserPropertyRule(subcategory=category, conditions=conditions)


def to_legacy(config: TriggerConfig) -> LegacyTriggerConfig:
    target = config.target_segment
    return LegacyTriggerConfig(
        segment_name=target.segment_name or config.name,
        target_segment=LegacyTargetSegment(
            type=target.type,
            rules=[_rule_to_legacy(rule) for rule in target.rules],
            rule_groups=[
                LegacyRuleGroup(operator=group.operator, rules=[_rule_to_legacy(rule) for rule in group.rules])
                for group in target.rule_groups
            ],
        ),
        subscription_groups=list(config.subscription_groups),
    )


def to_enhanced(legacy: LegacyTriggerConfig, name: Optional[str] = None) -> TriggerConfig:
    target = legacy.target_segment
    return TriggerConfig(
        name=name or legacy.segment_name,
        target_segment=TargetSegment(
            type=target.type,
            segment_name=legacy.segment_name,
            rules=[_rule_to_enhanced(rule) for rule in target.rules],
            rule_groups=[
                RuleGroup(operator=group.operator, rules=[_rule_to_enhanced(rule) for rule in group.rules])
                for group in target.rule_groups
            ],
        ),
        subscription_groups=list(legacy.subscription_groups),
    )
