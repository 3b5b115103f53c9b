"""
Goal Attribution Evaluator

Decides whether a conversion event counts toward a journey goal and which
touches (enrollment start, messages sent) get the credit.

A touch qualifies when the event falls inside ``[touch, touch + window]``.
Credit goes to the earliest qualifying touch (first_touch), the latest
(last_touch) or is split evenly (linear). Without
``count_multiple_conversions`` an enrollment converts at most once.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from app.schemas.customer import EventOccurrence
from app.schemas.journey import AttributionModel, GoalConfig, GoalType
from app.services.journeys.condition_evaluator import MISSING, safe_compare, to_number

logger = logging.getLogger(__name__)

DEFAULT_GOAL_EVENTS = {
    GoalType.SHOPIFY_EVENT: ("order_placed",),
    GoalType.WHATSAPP_ENGAGEMENT: ("message_read", "message_replied", "button_clicked"),
    GoalType.SEGMENT_ENTRY: ("segment_entered",),
}

REVENUE_PROPERTIES = ("revenue", "total_price", "value", "amount")


@dataclass(frozen=True)
class Touch:
    at: datetime
    node_id: Optional[str] = None
    kind: str = "message_sent"


@dataclass
class AttributionResult:
    counted: bool
    reason: str
    credits: list[tuple[Touch, float]] = field(default_factory=list)
    revenue: Optional[float] = None
    should_exit: bool = False
    mark_completed: bool = False

    def to_metadata(self) -> dict:
        return {
            "reason": self.reason,
            "revenue": self.revenue,
            "credits": [
                {
                    "touch_at": touch.at.isoformat(),
                    "node_id": touch.node_id,
                    "kind": touch.kind,
                    "share": share,
                    "revenue": self.revenue_for(share),
                }
                for touch, share in self.credits
            ],
        }

    def revenue_for(self, share: float) -> Optional[float]:
        if self.revenue is None:
            return None
        return round(self.revenue * share, 2)


def goal_event_names(goal: GoalConfig) -> tuple[str, ...]:
    if goal.event_name:
        return (goal.event_name,)
    return DEFAULT_GOAL_EVENTS.get(goal.goal_type, ())


def event_matches_goal(goal: GoalConfig, event: EventOccurrence) -> bool:
    """Whether ``event`` is the kind of event this goal waits for."""
    if goal.goal_type == GoalType.JOURNEY_COMPLETION:
        return False
    names = {name.casefold() for name in goal_event_names(goal)}
    if event.event_name.casefold() not in names:
        return False
    if goal.goal_type == GoalType.SEGMENT_ENTRY and goal.segment_id:
        if str(event.properties.get("segment_id")) != goal.segment_id:
            return False
    return all(
        safe_compare(
            event.properties.get(condition.property, MISSING),
            condition.operator,
            condition.value,
            event.occurred_at,
        )
        for condition in goal.event_filters
    )


def qualifying_touches(goal: GoalConfig, touches: Sequence[Touch], event_at: datetime) -> list[Touch]:
    window = goal.attribution_window.to_timedelta()
    return sorted(
        (touch for touch in touches if touch.at <= event_at <= touch.at + window),
        key=lambda touch: touch.at,
    )


def event_revenue(event: EventOccurrence) -> Optional[float]:
    for key in REVENUE_PROPERTIES:
        amount = to_number(event.properties.get(key))
        if amount is not None:
            return amount
    return None


def attribute_conversion(
    goal: GoalConfig,
    event: EventOccurrence,
    touches: Sequence[Touch],
    conversions_so_far: int,
) -> AttributionResult:
    """
    Attribute one conversion event.

    Args:
        goal: goal configuration of the node
        event: the conversion event
        touches: enrollment touches, any order
        conversions_so_far: conversions already counted for this enrollment

    Returns:
        AttributionResult with ``counted`` False when the event is outside
        every touch's window or the enrollment already converted.
    """
    if goal.attribution_window.value <= 0:
        return AttributionResult(counted=False, reason="invalid_window")

    qualifying = qualifying_touches(goal, touches, event.occurred_at)
    if not qualifying:
        return AttributionResult(counted=False, reason="outside_window")

    if conversions_so_far > 0 and not goal.count_multiple_conversions:
        return AttributionResult(counted=False, reason="already_converted")

    if goal.attribution_model == AttributionModel.FIRST_TOUCH:
        credits = [(qualifying[0], 1.0)]
    elif goal.attribution_model == AttributionModel.LAST_TOUCH:
        credits = [(qualifying[-1], 1.0)]
    else:
        share = 1.0 / len(qualifying)
        credits = [(touch, share) for touch in qualifying]

    return AttributionResult(
        counted=True,
        reason="converted",
        credits=credits,
        revenue=event_revenue(event),
        should_exit=goal.exit_after_goal,
        mark_completed=goal.mark_as_completed,
    )
