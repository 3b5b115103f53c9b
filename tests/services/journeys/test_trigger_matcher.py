"""
Tests for the Trigger Rule Matcher.
"""

from datetime import datetime, timedelta

from pydantic import TypeAdapter

from app.schemas.customer import CustomerSnapshot, EventOccurrence, OrderSnapshot
from app.schemas.segment import RuleGroup, TargetSegment, TriggerRule
from app.services.journeys.condition_evaluator import EvaluationContext
from app.services.journeys.trigger_matcher import (
    match_behavior_rule,
    match_group,
    match_rule,
    match_target,
    orders_as_events,
)

NOW = datetime(2024, 6, 1, 12, 0, 0)
rule_adapter = TypeAdapter(TriggerRule)


def rule(**data):
    return rule_adapter.validate_python(data)


def customer(**fields) -> CustomerSnapshot:
    return CustomerSnapshot(**{"id": "c1", "email": "c1@example.com", **fields})


def ctx_with_orders(*days_ago: int) -> EvaluationContext:
    orders = [
        OrderSnapshot(id=f"o{d}", customer_id="c1", total_price=80, created_at=NOW - timedelta(days=d))
        for d in days_ago
    ]
    return EvaluationContext(now=NOW, orders=orders, events=orders_as_events(orders))


ORDERED_LAST_7_DAYS = {
    "rule_type": "user_behavior",
    "event_name": "order_placed",
    "action": "did",
    "time_frame": {"period": "last_7_days"},
}


class TestBehaviorRules:
    """Tests for event/time-frame matching."""

    def test_order_outside_time_frame_does_not_match(self):
        group = RuleGroup(operator="OR", rules=[rule(**ORDERED_LAST_7_DAYS)])
        assert match_group(group, customer(), ctx_with_orders(10)) is False

    def test_order_inside_time_frame_matches(self):
        assert match_rule(rule(**ORDERED_LAST_7_DAYS), customer(), ctx_with_orders(3)) is True

    def test_did_not_inverts(self):
        did_not = rule(**{**ORDERED_LAST_7_DAYS, "action": "did_not"})
        assert match_rule(did_not, customer(), ctx_with_orders(10)) is True
        assert match_rule(did_not, customer(), ctx_with_orders(2)) is False

    def test_event_conditions_filter_occurrences(self):
        big_order = rule(**{**ORDERED_LAST_7_DAYS, "conditions": [
            {"property": "total_price", "operator": "greater_than", "value": 100},
        ]})
        assert match_rule(big_order, customer(), ctx_with_orders(1)) is False

    def test_custom_events(self):
        events = [EventOccurrence(
            customer_id="c1", event_name="Viewed Product", occurred_at=NOW - timedelta(hours=3),
        )]
        viewed = rule(rule_type="user_behavior", event_name="viewed product",
                      time_frame={"period": "last_24_hours"})
        assert match_rule(viewed, customer(), EvaluationContext(now=NOW, events=events))

    def test_incomplete_rules_never_match(self):
        no_event = rule(rule_type="user_behavior", action="did_not", time_frame={"period": "last_7_days"})
        bad_frame = rule(**{**ORDERED_LAST_7_DAYS, "time_frame": {"period": "custom"}})
        assert match_behavior_rule(no_event, customer(), ctx_with_orders()) is False
        assert match_behavior_rule(bad_frame, customer(), ctx_with_orders(1)) is False


class TestPropertyAndInterestRules:
    """Tests for profile-based rules."""

    def test_property_rule(self):
        spender = rule(rule_type="user_property", conditions=[
            {"property": "total_spent", "operator": "greater_than", "value": 500},
        ])
        ctx = EvaluationContext(now=NOW)
        assert match_rule(spender, customer(total_spent=900), ctx)
        assert not match_rule(spender, customer(total_spent=100), ctx)

    def test_interest_rule_checks_tags_and_interests(self):
        skincare = rule(rule_type="user_interests", interest="Skincare")
        ctx = EvaluationContext(now=NOW)
        assert match_rule(skincare, customer(interests=["skincare"]), ctx)
        assert match_rule(skincare, customer(tags=["SKINCARE"]), ctx)
        assert not match_rule(skincare, customer(tags=["haircare"]), ctx)


class TestTargets:
    """Tests for whole target segments."""

    def test_rules_and_groups_are_all_required(self):
        target = TargetSegment(
            rules=[rule(rule_type="user_interests", interest="vip")],
            rule_groups=[RuleGroup(operator="OR", rules=[rule(**ORDERED_LAST_7_DAYS)])],
        )
        assert match_target(target, customer(tags=["vip"]), ctx_with_orders(2))
        assert not match_target(target, customer(tags=["vip"]), ctx_with_orders(20))
        assert not match_target(target, customer(), ctx_with_orders(2))

    def test_empty_target_matches_everyone(self):
        assert match_target(TargetSegment(), customer(), EvaluationContext(now=NOW))

    def test_existing_segment_requires_membership(self):
        target = TargetSegment(type="existing_segment", segment_id="seg-1")
        member = EvaluationContext(now=NOW, segment_ids=frozenset({"seg-1"}))
        outsider = EvaluationContext(now=NOW)
        assert match_target(target, customer(), member)
        assert not match_target(target, customer(), outsider)
