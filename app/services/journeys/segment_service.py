"""
Segment Service

Evaluates condition trees and trigger targets over the customer base,
caching segment membership in the injected ``SegmentMembershipCache``.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from app.core.clock import Clock, SystemClock
from app.schemas.customer import CustomerFilter, CustomerSnapshot
from app.schemas.segment import ConditionGroup, ReachEstimate, TargetSegment, TriggerConfig, UserBehaviorRule
from app.services.journeys.condition_evaluator import EvaluationContext, matches_group
from app.services.journeys.customer_provider import CustomerProvider
from app.services.journeys.segment_cache import SegmentMembershipCache
from app.services.journeys.trigger_matcher import match_target, orders_as_events

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 20
# Events older than the longest named time frame are never consulted
MAX_LOOKBACK = timedelta(days=90)


def _behavior_lookback(target: Optional[TargetSegment]) -> timedelta:
    if target is None:
        return MAX_LOOKBACK
    rules = [*target.rules, *(rule for group in target.rule_groups for rule in group.rules)]
    windows = [
        rule.time_frame.window()
        for rule in rules
        if isinstance(rule, UserBehaviorRule) and rule.time_frame.window() is not None
    ]
    return max([MAX_LOOKBACK, *windows])


class SegmentService:
    """
    Segment membership and reach estimation.

    Customers are evaluated concurrently (bounded by ``concurrency``); cache
    writes for one segment id are serialised on that segment's lock.
    """

    def __init__(
        self,
        provider: CustomerProvider,
        cache: SegmentMembershipCache,
        clock: Optional[Clock] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self.provider = provider
        self.cache = cache
        self.clock = clock or SystemClock()
        # Separate pools: target matching may trigger a segment evaluation
        self._segment_slots = asyncio.Semaphore(concurrency)
        self._target_slots = asyncio.Semaphore(concurrency)

    async def build_context(
        self,
        customer: CustomerSnapshot,
        now: datetime,
        target: Optional[TargetSegment] = None,
    ) -> EvaluationContext:
        """Orders, events and (for existing-segment targets) membership for one customer."""
        orders = await self.provider.get_orders(customer.id)
        events = await self.provider.get_events(customer.id, since=now - _behavior_lookback(target))
        segment_ids: frozenset[str] = frozenset()
        if target is not None and target.type == "existing_segment" and target.segment_id:
            members = await self.get_members(target.segment_id)
            if customer.id in members:
                segment_ids = frozenset({target.segment_id})
        return EvaluationContext(
            now=now,
            orders=orders,
            events=[*events, *orders_as_events(orders)],
            segment_ids=segment_ids,
        )

    async def _customer_matches(self, customer: CustomerSnapshot, conditions: ConditionGroup, now: datetime) -> bool:
        async with self._segment_slots:
            orders = await self.provider.get_orders(customer.id)
            return matches_group(customer, conditions, EvaluationContext(now=now, orders=orders))

    async def evaluate_segment(
        self,
        conditions: ConditionGroup,
        customers: Optional[Sequence[CustomerSnapshot]] = None,
    ) -> list[str]:
        """Ids of matching customers; the whole base when ``customers`` is None."""
        now = self.clock.now()
        if customers is None:
            customers = await self.provider.list_customers()
        results = await asyncio.gather(
            *(self._customer_matches(customer, conditions, now) for customer in customers)
        )
        return [customer.id for customer, matched in zip(customers, results) if matched]

    async def get_members(self, segment_id: str) -> list[str]:
        """Members of a stored segment, served from the cache while fresh."""
        members, _ = await self.load_members(segment_id)
        return members

    async def load_members(self, segment_id: str) -> tuple[list[str], bool]:
        """Members plus whether they came from the cache."""
        cached = self.cache.get(segment_id)
        if cached is not None:
            return cached, True

        async with self.cache.lock_for(segment_id):
            # Another task may have filled the entry while we waited
            cached = self.cache.peek(segment_id)
            if cached is not None:
                return cached, True

            generation = self.cache.generation
            conditions = await self.provider.get_segment_conditions(segment_id)
            if conditions is None:
                logger.warning(f"Segment {segment_id} not found, treating as empty")
                return [], False
            members = await self.evaluate_segment(conditions)
            self.cache.put(segment_id, members, generation=generation)
            logger.info(f"Segment {segment_id} evaluated: {len(members)} members")
            return members, False

    async def _target_matches(self, customer: CustomerSnapshot, target: TargetSegment, now: datetime) -> bool:
        async with self._target_slots:
            ctx = await self.build_context(customer, now, target)
            return match_target(target, customer, ctx)

    async def matches_target(self, customer: CustomerSnapshot, target: TargetSegment) -> bool:
        now = self.clock.now()
        ctx = await self.build_context(customer, now, target)
        return match_target(target, customer, ctx)

    async def estimate_reach(
        self,
        trigger: TriggerConfig,
        customer_filter: Optional[CustomerFilter] = None,
    ) -> ReachEstimate:
        """Number of customers the trigger's target segment currently matches."""
        now = self.clock.now()
        target = trigger.target_segment
        if target.type == "existing_segment" and target.segment_id:
            # Fill the cache once up front instead of racing per customer
            await self.get_members(target.segment_id)
        customers = await self.provider.list_customers(customer_filter)
        results = await asyncio.gather(
            *(self._target_matches(customer, target, now) for customer in customers)
        )
        return ReachEstimate(estimated_count=sum(results), evaluated_customers=len(customers))
