"""
Tests for SegmentService and SqlCustomerProvider over the test database.
"""

import asyncio
from datetime import timedelta

import pytest

from app.models.customer import Customer
from app.models.journey import Segment
from app.schemas.customer import CustomerFilter, CustomerSnapshot
from app.schemas.segment import ConditionGroup, TriggerConfig
from app.services.journeys.customer_provider import SqlCustomerProvider
from app.services.journeys.segment_cache import TTL, SegmentMembershipCache
from app.services.journeys.segment_service import SegmentService
from tests.factories import SubscribedCustomerFactory

BIG_SPENDERS = {
    "logical_operator": "AND",
    "conditions": [{"field": "total_spent", "operator": "greater_than", "value": 500}],
}


@pytest.fixture
def provider(test_db, segment_cache) -> SqlCustomerProvider:
    return SqlCustomerProvider(test_db, segment_cache)


@pytest.fixture
def service(provider, segment_cache, clock) -> SegmentService:
    return SegmentService(provider, segment_cache, clock, concurrency=4)


class PausingProvider:
    """In-memory provider that stalls after listing customers until released."""

    def __init__(self, customers: list[CustomerSnapshot], conditions: ConditionGroup):
        self.customers = {customer.id: customer for customer in customers}
        self.conditions = conditions
        self.listed = asyncio.Event()
        self.release = asyncio.Event()

    async def get_customer(self, customer_id):
        return self.customers.get(customer_id)

    async def get_orders(self, customer_id):
        return []

    async def get_events(self, customer_id, since=None):
        return []

    async def get_segment_conditions(self, segment_id):
        return self.conditions

    async def list_customers(self, filter=None):
        snapshot = list(self.customers.values())
        self.listed.set()
        await self.release.wait()
        return snapshot


async def add_segment(test_db, conditions=None) -> Segment:
    segment = Segment(name="Big spenders", conditions=conditions or BIG_SPENDERS)
    test_db.add(segment)
    await test_db.commit()
    return segment


class TestSegmentMembers:
    """Cached membership of stored segments."""

    @pytest.mark.asyncio
    async def test_members_are_cached(self, test_db, service, segment_cache, make_customer):
        big = await make_customer(total_spent=900.0)
        await make_customer(total_spent=10.0)
        segment = await add_segment(test_db)

        assert await service.get_members(segment.id) == [big.id]
        assert await service.get_members(segment.id) == [big.id]
        assert segment_cache.stats()["hits"] >= 1

    @pytest.mark.asyncio
    async def test_concurrent_reads_fill_cache_once(self, test_db, service, segment_cache, make_customer):
        await make_customer(total_spent=900.0)
        segment = await add_segment(test_db)

        results = await asyncio.gather(*(service.get_members(segment.id) for _ in range(5)))

        assert all(result == results[0] for result in results)
        assert segment_cache.get_entry(segment.id) is not None

    @pytest.mark.asyncio
    async def test_customer_write_invalidates(self, test_db, service, provider, make_customer):
        small = await make_customer(total_spent=10.0)
        segment = await add_segment(test_db)
        assert await service.get_members(segment.id) == []

        snapshot = CustomerSnapshot.model_validate(small)
        await provider.save_customer(snapshot.model_copy(update={"total_spent": 800.0}))

        assert await service.get_members(segment.id) == [small.id]

    @pytest.mark.asyncio
    async def test_write_during_evaluation_is_not_cached(self, clock):
        cache = SegmentMembershipCache(clock=clock)
        provider = PausingProvider(
            [CustomerSnapshot(id="c1", total_spent=100.0)],
            ConditionGroup.model_validate(BIG_SPENDERS),
        )
        service = SegmentService(provider, cache, clock)

        evaluation = asyncio.create_task(service.get_members("big-spenders"))
        await provider.listed.wait()
        # c1 crosses the threshold while the evaluation holds the old list
        provider.customers["c1"] = CustomerSnapshot(id="c1", total_spent=900.0)
        cache.invalidate_all()
        provider.release.set()

        assert await evaluation == []
        assert cache.peek("big-spenders") is None
        assert await service.get_members("big-spenders") == ["c1"]

    @pytest.mark.asyncio
    async def test_cache_expires_with_clock(self, test_db, service, segment_cache, clock, make_customer):
        await make_customer(total_spent=900.0)
        segment = await add_segment(test_db)
        await service.get_members(segment.id)

        clock.advance(timedelta(seconds=TTL.MEDIUM + 1))

        assert segment_cache.get(segment.id) is None

    @pytest.mark.asyncio
    async def test_unknown_segment_is_empty(self, service):
        assert await service.get_members("missing") == []


class TestEvaluationAndReach:
    @pytest.mark.asyncio
    async def test_evaluate_segment(self, service, make_customer):
        big = await make_customer(total_spent=900.0)
        await make_customer(total_spent=10.0)

        assert await service.evaluate_segment(ConditionGroup.model_validate(BIG_SPENDERS)) == [big.id]

    @pytest.mark.asyncio
    async def test_reach_for_recent_buyers(self, service, make_customer, make_order, clock):
        recent = await make_customer()
        lapsed = await make_customer()
        await make_customer()
        await make_order(recent, created_at=clock.now() - timedelta(days=3))
        await make_order(lapsed, created_at=clock.now() - timedelta(days=10))

        trigger = TriggerConfig.model_validate({"target_segment": {"rule_groups": [{
            "operator": "OR",
            "rules": [{"rule_type": "user_behavior", "event_name": "order_placed",
                       "action": "did", "time_frame": {"period": "last_7_days"}}],
        }]}})
        estimate = await service.estimate_reach(trigger)

        assert (estimate.estimated_count, estimate.evaluated_customers) == (1, 3)

    @pytest.mark.asyncio
    async def test_reach_for_existing_segment(self, test_db, service, make_customer):
        await make_customer(total_spent=900.0, tags=["vip"])
        await make_customer(total_spent=900.0)
        await make_customer(total_spent=5.0, tags=["vip"])
        segment = await add_segment(test_db)

        trigger = TriggerConfig.model_validate({"target_segment": {
            "type": "existing_segment",
            "segment_id": segment.id,
            "rules": [{"rule_type": "user_interests", "interest": "vip"}],
        }})

        assert (await service.estimate_reach(trigger)).estimated_count == 1


class TestCustomerProvider:
    @pytest.mark.asyncio
    async def test_list_customers_filters(self, test_db, provider, make_customer):
        subscribed = Customer(**SubscribedCustomerFactory(tags=["VIP"]))
        test_db.add(subscribed)
        await test_db.commit()
        other = await make_customer(tags=["vip"])

        marketable = await provider.list_customers(CustomerFilter(accepts_marketing=True))
        vips = await provider.list_customers(CustomerFilter(tag="vip"))

        assert [c.id for c in marketable] == [subscribed.id]
        assert sorted(c.id for c in vips) == sorted([subscribed.id, other.id])

    @pytest.mark.asyncio
    async def test_orders_matched_by_email_when_unlinked(self, provider, make_customer, make_order):
        customer = await make_customer()
        await make_order(customer)
        await make_order(customer, customer_id=None)

        assert len(await provider.get_orders(customer.id)) == 2

    @pytest.mark.asyncio
    async def test_delete_customer(self, provider, make_customer):
        customer = await make_customer()
        assert await provider.delete_customer(customer.id) is True
        assert await provider.delete_customer(customer.id) is False
        assert await provider.get_customer(customer.id) is None
