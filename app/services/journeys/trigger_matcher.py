"""
Trigger Rule Matcher

Decides whether a customer satisfies a journey's target segment.

- property rules: conditions against the customer snapshot
- behavior rules: the named event within the time frame, with every
  condition true on that occurrence's properties; ``did`` needs at least
  one such occurrence, ``did_not`` needs none
- interest rules: the customer declares the interest (tags or interests)
  and the conditions hold

Main rules are AND-ed; each rule group combines its own rules with its
operator; the target matches when the main rules and every group match.
An ``existing_segment`` target also requires membership of that segment,
which the caller resolves into ``EvaluationContext.segment_ids``.
"""

import logging
from typing import Iterable, Sequence

from app.schemas.customer import CustomerSnapshot, EventOccurrence, OrderSnapshot
from app.schemas.segment import (
    Condition,
    EventCondition,
    LogicalOperator,
    RuleGroup,
    TargetSegment,
    UserBehaviorRule,
    UserInterestRule,
    UserPropertyRule,
)
from app.services.journeys.condition_evaluator import (
    MISSING,
    EvaluationContext,
    evaluate_condition,
    safe_compare,
)

logger = logging.getLogger(__name__)

ORDER_PLACED_EVENT = "order_placed"


def orders_as_events(orders: Iterable[OrderSnapshot]) -> list[EventOccurrence]:
    """Expose orders to behaviour rules as ``order_placed`` occurrences."""
    return [
        EventOccurrence(
            customer_id=order.customer_id or order.email or "",
            event_name=ORDER_PLACED_EVENT,
            properties={
                "order_id": order.id,
                "total_price": order.total_price,
                "item_count": len(order.line_items),
            },
            occurred_at=order.created_at,
        )
        for order in orders
    ]


def _same_event(a: str, b: str) -> bool:
    return a.strip().casefold() == b.strip().casefold()


def _event_conditions_hold(
    conditions: Sequence[EventCondition], occurrence: EventOccurrence, ctx: EvaluationContext
) -> bool:
    return all(
        safe_compare(
            occurrence.properties.get(condition.property, MISSING),
            condition.operator,
            condition.value,
            ctx.now,
        )
        for condition in conditions
    )


def _customer_conditions_hold(
    conditions: Sequence[EventCondition], customer: CustomerSnapshot, ctx: EvaluationContext
) -> bool:
    return all(
        evaluate_condition(
            customer,
            Condition(field=condition.property, operator=condition.operator, value=condition.value),
            ctx,
        )
        for condition in conditions
    )


def qualifying_occurrences(
    rule: UserBehaviorRule, ctx: EvaluationContext
) -> list[EventOccurrence]:
    """Occurrences of the rule's event inside its time frame that satisfy its conditions."""
    window = rule.time_frame.window()
    if not rule.event_name or window is None:
        return []
    since = ctx.now - window
    return [
        occurrence
        for occurrence in ctx.events
        if _same_event(occurrence.event_name, rule.event_name)
        and since <= occurrence.occurred_at <= ctx.now
        and _event_conditions_hold(rule.conditions, occurrence, ctx)
    ]


def match_behavior_rule(rule: UserBehaviorRule, customer: CustomerSnapshot, ctx: EvaluationContext) -> bool:
    if not rule.event_name or rule.time_frame.window() is None:
        # Malformed rules never match; validation reports them
        logger.debug(f"Behavior rule {rule.id} is incomplete, treating as no match")
        return False
    found = len(qualifying_occurrences(rule, ctx)) > 0
    return found if rule.action == "did" else not found


def match_property_rule(rule: UserPropertyRule, customer: CustomerSnapshot, ctx: EvaluationContext) -> bool:
    return _customer_conditions_hold(rule.conditions, customer, ctx)


def match_interest_rule(rule: UserInterestRule, customer: CustomerSnapshot, ctx: EvaluationContext) -> bool:
    if rule.interest:
        wanted = rule.interest.strip().casefold()
        declared = {value.strip().casefold() for value in [*customer.tags, *customer.interests]}
        if wanted not in declared:
            return False
    return _customer_conditions_hold(rule.conditions, customer, ctx)


def match_rule(rule, customer: CustomerSnapshot, ctx: EvaluationContext) -> bool:
    if isinstance(rule, UserBehaviorRule):
        return match_behavior_rule(rule, customer, ctx)
    if isinstance(rule, UserInterestRule):
        return match_interest_rule(rule, customer, ctx)
    return match_property_rule(rule, customer, ctx)


def match_group(group: RuleGroup, customer: CustomerSnapshot, ctx: EvaluationContext) -> bool:
    if not group.rules:
        return True
    results = (match_rule(rule, customer, ctx) for rule in group.rules)
    if group.operator == LogicalOperator.OR:
        return any(results)
    return all(results)


def match_target(target: TargetSegment, customer: CustomerSnapshot, ctx: EvaluationContext) -> bool:
    """Whether the customer belongs to the trigger's target segment."""
    if target.type == "existing_segment":
        if not target.segment_id or target.segment_id not in ctx.segment_ids:
            return False
    if not all(match_rule(rule, customer, ctx) for rule in target.rules):
        return False
    return all(match_group(group, customer, ctx) for group in target.rule_groups)
