"""
Customer API Endpoints

Local customer/order store used by segment evaluation. Every write
clears the segment membership cache.
"""

from fastapi import APIRouter, status

from app.api.deps import AppClock, Provider
from app.exceptions import NotFoundError, ValidationError
from app.schemas.customer import CustomerSnapshot, OrderSnapshot, RFMScore
from app.services.journeys.rfm_scorer import calculate_all_rfm, calculate_rfm

router = APIRouter()


@router.put("/{customer_id}", response_model=CustomerSnapshot)
async def upsert_customer(customer_id: str, customer: CustomerSnapshot, provider: Provider):
    """Create or replace a customer."""
    if customer.id != customer_id:
        raise ValidationError("Customer id in body does not match the path")
    return await provider.save_customer(customer)


@router.get("/{customer_id}", response_model=CustomerSnapshot)
async def get_customer(customer_id: str, provider: Provider):
    customer = await provider.get_customer(customer_id)
    if customer is None:
        raise NotFoundError("Customer", customer_id)
    return customer


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_customer(customer_id: str, provider: Provider):
    if not await provider.delete_customer(customer_id):
        raise NotFoundError("Customer", customer_id)


@router.put("/orders/{order_id}", response_model=OrderSnapshot)
async def upsert_order(order_id: str, order: OrderSnapshot, provider: Provider):
    """Create or replace an order."""
    if order.id != order_id:
        raise ValidationError("Order id in body does not match the path")
    return await provider.save_order(order)


@router.get("/rfm/all", response_model=dict[str, RFMScore])
async def rfm_for_all(provider: Provider, clock: AppClock):
    """RFM scores for the whole customer base."""
    customers = await provider.list_customers()
    orders = await provider.list_orders()
    return calculate_all_rfm(customers, orders, clock.now())


@router.get("/{customer_id}/rfm", response_model=RFMScore)
async def rfm_for_customer(customer_id: str, provider: Provider, clock: AppClock):
    """Recency/frequency/monetary scores and segment label."""
    customer = await provider.get_customer(customer_id)
    if customer is None:
        raise NotFoundError("Customer", customer_id)
    orders = await provider.get_orders(customer_id)
    return calculate_rfm(customer, orders, clock.now())
