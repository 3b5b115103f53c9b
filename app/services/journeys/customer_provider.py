"""
Customer/Order provider.

The journey engine reads customers, orders and events through the
``CustomerProvider`` protocol. ``SqlCustomerProvider`` serves them from the
local tables and is also the write path that keeps the segment cache
honest: every customer or order change clears it.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.customer import Customer, CustomerEvent, Order
from app.models.journey import Segment
from app.schemas.customer import CustomerFilter, CustomerSnapshot, EventOccurrence, OrderSnapshot
from app.schemas.segment import ConditionGroup
from app.services.journeys.segment_cache import SegmentMembershipCache

logger = logging.getLogger(__name__)


class CustomerProvider(Protocol):
    async def get_customer(self, customer_id: str) -> Optional[CustomerSnapshot]: ...

    async def get_orders(self, customer_id: str) -> list[OrderSnapshot]: ...

    async def list_customers(self, filter: Optional[CustomerFilter] = None) -> list[CustomerSnapshot]: ...

    async def get_events(self, customer_id: str, since: Optional[datetime] = None) -> list[EventOccurrence]: ...

    async def get_segment_conditions(self, segment_id: str) -> Optional[ConditionGroup]: ...


class SqlCustomerProvider:
    """
    Provider over the customers/orders/customer_events tables.

    An AsyncSession cannot run two statements at once, so calls are
    serialised on an internal lock; callers may still gather over it.
    """

    def __init__(self, db: AsyncSession, cache: Optional[SegmentMembershipCache] = None):
        self.db = db
        self.cache = cache
        self._lock = asyncio.Lock()

    async def get_customer(self, customer_id: str) -> Optional[CustomerSnapshot]:
        async with self._lock:
            customer = await self.db.get(Customer, customer_id)
        return CustomerSnapshot.model_validate(customer) if customer else None

    async def get_orders(self, customer_id: str) -> list[OrderSnapshot]:
        async with self._lock:
            customer = await self.db.get(Customer, customer_id)
            clauses = [Order.customer_id == customer_id]
            if customer is not None and customer.email:
                clauses.append((Order.customer_id.is_(None)) & (Order.email == customer.email))
            result = await self.db.execute(
                select(Order).where(or_(*clauses)).order_by(Order.created_at)
            )
            orders = result.scalars().all()
        return [OrderSnapshot.model_validate(order) for order in orders]

    async def list_orders(self) -> list[OrderSnapshot]:
        async with self._lock:
            result = await self.db.execute(select(Order).order_by(Order.created_at))
            orders = result.scalars().all()
        return [OrderSnapshot.model_validate(order) for order in orders]

    async def list_customers(self, filter: Optional[CustomerFilter] = None) -> list[CustomerSnapshot]:
        query = select(Customer).order_by(Customer.id)
        if filter is not None:
            if filter.ids is not None:
                query = query.where(Customer.id.in_(filter.ids))
            if filter.accepts_marketing is not None:
                query = query.where(Customer.accepts_marketing == filter.accepts_marketing)
            if filter.limit:
                query = query.limit(filter.limit)
        async with self._lock:
            result = await self.db.execute(query)
            customers = result.scalars().all()

        snapshots = [CustomerSnapshot.model_validate(customer) for customer in customers]
        if filter is not None and filter.tag:
            # Tags live in a JSON column, filter after loading
            wanted = filter.tag.casefold()
            snapshots = [s for s in snapshots if wanted in {tag.casefold() for tag in s.tags}]
        return snapshots

    async def get_events(self, customer_id: str, since: Optional[datetime] = None) -> list[EventOccurrence]:
        query = select(CustomerEvent).where(CustomerEvent.customer_id == customer_id)
        if since is not None:
            query = query.where(CustomerEvent.occurred_at >= since)
        async with self._lock:
            result = await self.db.execute(query.order_by(CustomerEvent.occurred_at))
            events = result.scalars().all()
        return [EventOccurrence.model_validate(event) for event in events]

    async def get_segment_conditions(self, segment_id: str) -> Optional[ConditionGroup]:
        async with self._lock:
            segment = await self.db.get(Segment, segment_id)
        if segment is None:
            return None
        return ConditionGroup.model_validate(segment.conditions or {})

    # Writes

    async def save_customer(self, snapshot: CustomerSnapshot) -> CustomerSnapshot:
        """Insert or update a customer and clear the segment cache."""
        values = snapshot.model_dump()
        async with self._lock:
            customer = await self.db.get(Customer, snapshot.id)
            if customer is None:
                customer = Customer(id=snapshot.id)
                self.db.add(customer)
            for key, value in values.items():
                if key == "id" or (value is None and key in ("created_at", "updated_at")):
                    continue
                setattr(customer, key, value)
            await self.db.commit()
        self._invalidate(f"customer {snapshot.id} saved")
        return snapshot

    async def delete_customer(self, customer_id: str) -> bool:
        async with self._lock:
            result = await self.db.execute(delete(Customer).where(Customer.id == customer_id))
            await self.db.commit()
        deleted = (result.rowcount or 0) > 0
        if deleted:
            self._invalidate(f"customer {customer_id} deleted")
        return deleted

    async def save_order(self, snapshot: OrderSnapshot) -> OrderSnapshot:
        async with self._lock:
            order = await self.db.get(Order, snapshot.id)
            if order is None:
                order = Order(id=snapshot.id)
                self.db.add(order)
            for key, value in snapshot.model_dump().items():
                if key != "id":
                    setattr(order, key, value)
            await self.db.commit()
        self._invalidate(f"order {snapshot.id} saved")
        return snapshot

    async def record_event(self, event: EventOccurrence) -> None:
        """Store a customer event; the caller commits."""
        async with self._lock:
            self.db.add(CustomerEvent(
                customer_id=event.customer_id,
                event_name=event.event_name,
                properties=dict(event.properties),
                occurred_at=event.occurred_at,
            ))
            await self.db.flush()

    def _invalidate(self, reason: str) -> None:
        if self.cache is None:
            return
        cleared = self.cache.invalidate_all()
        logger.debug(f"Segment cache invalidated after {reason} ({cleared} entries)")
