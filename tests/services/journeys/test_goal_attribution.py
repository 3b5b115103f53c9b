"""
Tests for the Goal Attribution Evaluator.
"""

from datetime import datetime, timedelta

import pytest

from app.schemas.customer import EventOccurrence
from app.schemas.journey import GoalConfig
from app.services.journeys.goal_attribution import (
    Touch,
    attribute_conversion,
    event_matches_goal,
    event_revenue,
)

ENTERED = datetime(2024, 6, 1, 9, 0, 0)


def goal(**fields) -> GoalConfig:
    return GoalConfig.model_validate({
        "goal_type": "shopify_event",
        "attribution_window": {"value": 7, "unit": "days"},
        **fields,
    })


def order_event(day: int, **properties) -> EventOccurrence:
    return EventOccurrence(
        customer_id="c1",
        event_name="order_placed",
        properties=properties,
        occurred_at=ENTERED + timedelta(days=day),
    )


ENTRY_TOUCH = Touch(at=ENTERED, kind="journey_started")


class TestAttributionWindow:
    """Only events inside a touch's window count."""

    def test_day_two_counts_day_nine_does_not(self):
        config = goal(attribution_model="last_touch")
        conversions = 0
        outcomes = []
        for day in (2, 9):
            result = attribute_conversion(config, order_event(day), [ENTRY_TOUCH], conversions)
            outcomes.append(result.reason)
            conversions += int(result.counted)
        assert outcomes == ["converted", "outside_window"]
        assert conversions == 1

    def test_window_edge_is_inclusive(self):
        result = attribute_conversion(goal(), order_event(7), [ENTRY_TOUCH], 0)
        assert result.counted

    def test_event_before_touch_is_outside(self):
        result = attribute_conversion(goal(), order_event(-1), [ENTRY_TOUCH], 0)
        assert result.reason == "outside_window"

    def test_non_positive_window_is_rejected(self):
        config = goal(attribution_window={"value": 0, "unit": "days"})
        assert attribute_conversion(config, order_event(1), [ENTRY_TOUCH], 0).reason == "invalid_window"


class TestAttributionModels:
    """Credit distribution between qualifying touches."""

    touches = [
        ENTRY_TOUCH,
        Touch(at=ENTERED + timedelta(days=1), node_id="welcome"),
        Touch(at=ENTERED + timedelta(days=3), node_id="reminder"),
    ]

    def test_first_touch(self):
        result = attribute_conversion(goal(attribution_model="first_touch"), order_event(4), self.touches, 0)
        assert [(t.kind, share) for t, share in result.credits] == [("journey_started", 1.0)]

    def test_last_touch(self):
        result = attribute_conversion(goal(attribution_model="last_touch"), order_event(4), self.touches, 0)
        assert [(t.node_id, share) for t, share in result.credits] == [("reminder", 1.0)]

    def test_linear_splits_evenly(self):
        result = attribute_conversion(
            goal(attribution_model="linear"), order_event(4, total_price=90), self.touches, 0
        )
        shares = [share for _, share in result.credits]
        assert len(shares) == 3
        assert sum(shares) == pytest.approx(1.0)
        assert result.revenue == 90
        assert result.to_metadata()["credits"][0]["revenue"] == 30.0

    def test_only_touches_in_window_share_linear_credit(self):
        config = goal(attribution_model="linear", attribution_window={"value": 2, "unit": "days"})
        result = attribute_conversion(config, order_event(4), self.touches, 0)
        assert [t.node_id for t, _ in result.credits] == ["reminder"]


class TestRepeatConversions:
    def test_second_conversion_needs_count_multiple(self):
        once = attribute_conversion(goal(), order_event(3), [ENTRY_TOUCH], 1)
        many = attribute_conversion(goal(count_multiple_conversions=True), order_event(3), [ENTRY_TOUCH], 1)
        assert once.reason == "already_converted"
        assert many.counted

    def test_exit_and_completion_flags_carry_through(self):
        result = attribute_conversion(
            goal(exit_after_goal=True, mark_as_completed=True), order_event(1), [ENTRY_TOUCH], 0
        )
        assert result.should_exit and result.mark_completed


class TestGoalEventMatching:
    def test_default_event_for_goal_type(self):
        assert event_matches_goal(goal(), order_event(1))
        assert not event_matches_goal(goal(goal_type="whatsapp_engagement"), order_event(1))

    def test_custom_event_name_is_case_insensitive(self):
        config = goal(goal_type="custom_event", event_name="Quiz_Completed")
        event = EventOccurrence(customer_id="c1", event_name="quiz_completed", occurred_at=ENTERED)
        assert event_matches_goal(config, event)

    def test_event_filters(self):
        config = goal(event_filters=[{"property": "total_price", "operator": "greater_than", "value": 100}])
        assert event_matches_goal(config, order_event(1, total_price=150))
        assert not event_matches_goal(config, order_event(1, total_price=20))
        assert not event_matches_goal(config, order_event(1))

    def test_segment_entry_checks_segment_id(self):
        config = goal(goal_type="segment_entry", segment_id="seg-vip")
        entered = EventOccurrence(
            customer_id="c1", event_name="segment_entered",
            properties={"segment_id": "seg-vip"}, occurred_at=ENTERED,
        )
        other = entered.model_copy(update={"properties": {"segment_id": "seg-other"}})
        assert event_matches_goal(config, entered)
        assert not event_matches_goal(config, other)

    def test_journey_completion_ignores_events(self):
        assert not event_matches_goal(goal(goal_type="journey_completion"), order_event(1))

    def test_revenue_reads_first_numeric_property(self):
        assert event_revenue(order_event(1, value="49.5")) == 49.5
        assert event_revenue(order_event(1)) is None
