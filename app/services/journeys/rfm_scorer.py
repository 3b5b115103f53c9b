"""
RFM Scorer

Scores customers 1-5 on Recency (days since last order), Frequency (order
count) and Monetary value (total spend), then labels them with the first
matching entry of ``SEGMENT_RULES``. Several rules can hold at once, so
the order of that list decides the label.
"""

from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence

from app.core.clock import utcnow
from app.schemas.customer import CustomerSnapshot, OrderSnapshot, RFMScore

NO_ORDER_DAYS = 999

# (upper bound in days, score)
RECENCY_BANDS = ((30, 5), (60, 4), (90, 3), (180, 2))
# (minimum order count, score)
FREQUENCY_BANDS = ((20, 5), (10, 4), (5, 3), (2, 2))
# (minimum spend, score)
MONETARY_BANDS = ((10_000, 5), (5_000, 4), (2_000, 3), (500, 2))

SegmentRule = Callable[[int, int, int], bool]

SEGMENT_RULES: list[tuple[str, SegmentRule]] = [
    ("Champions", lambda r, f, m: r >= 4 and f >= 4 and m >= 4),
    ("Loyal Customers", lambda r, f, m: f >= 4 and r >= 3),
    ("Potential Loyalists", lambda r, f, m: r >= 4 and m >= 3),
    ("At Risk", lambda r, f, m: r <= 2 and f >= 3 and m >= 3),
    ("Cannot Lose Them", lambda r, f, m: r <= 2 and f >= 4 and m >= 4),
    ("Hibernating", lambda r, f, m: r <= 2 and f <= 2),
    ("New Customers", lambda r, f, m: r >= 4 and f <= 2),
    ("Promising", lambda r, f, m: r >= 3 and f <= 2 and m <= 2),
    ("Need Attention", lambda r, f, m: 2.5 <= (r + f + m) / 3 < 3.5),
    ("About to Sleep", lambda r, f, m: r <= 2 and 2 <= f <= 3),
]
DEFAULT_SEGMENT = "Others"


def score_recency(days_since_last_order: int) -> int:
    for max_days, score in RECENCY_BANDS:
        if days_since_last_order <= max_days:
            return score
    return 1


def score_frequency(order_count: int) -> int:
    for min_orders, score in FREQUENCY_BANDS:
        if order_count >= min_orders:
            return score
    return 1


def score_monetary(total_spent: float) -> int:
    for min_spend, score in MONETARY_BANDS:
        if total_spent >= min_spend:
            return score
    return 1


def segment_label(recency: int, frequency: int, monetary: int) -> str:
    for label, rule in SEGMENT_RULES:
        if rule(recency, frequency, monetary):
            return label
    return DEFAULT_SEGMENT


def days_since(moment: Optional[datetime], reference_date: datetime) -> int:
    """Whole days elapsed since ``moment``; NO_ORDER_DAYS when there is none."""
    if moment is None:
        return NO_ORDER_DAYS
    return max((reference_date - moment).days, 0)


def orders_for_customer(
    customer: CustomerSnapshot, orders: Iterable[OrderSnapshot]
) -> list[OrderSnapshot]:
    """Orders linked to the customer by id, or by email when the id is missing."""
    email = customer.email.lower() if customer.email else None
    matched = []
    for order in orders:
        if order.customer_id is not None:
            if order.customer_id == customer.id:
                matched.append(order)
        elif email and order.email and order.email.lower() == email:
            matched.append(order)
    return matched


def calculate_rfm(
    customer: CustomerSnapshot,
    orders: Sequence[OrderSnapshot],
    reference_date: Optional[datetime] = None,
) -> RFMScore:
    """
    Score one customer.

    Recency and frequency come from the order rows; with none, the
    customer's own orders_count and last_order_at are used instead.
    Monetary is always the customer's total_spent, so a partial page of
    orders does not lower it.
    """
    reference_date = reference_date or utcnow()

    if orders:
        order_count = len(orders)
        last_order_at = max(order.created_at for order in orders)
    else:
        order_count = customer.orders_count
        last_order_at = customer.last_order_at if customer.orders_count else None
    total_spent = customer.total_spent or 0.0

    days = days_since(last_order_at, reference_date)
    recency = score_recency(days)
    frequency = score_frequency(order_count)
    monetary = score_monetary(total_spent)

    return RFMScore(
        recency=recency,
        frequency=frequency,
        monetary=monetary,
        segment=segment_label(recency, frequency, monetary),
        days_since_last_order=days,
        order_count=order_count,
        total_spent=round(total_spent, 2),
    )


def calculate_all_rfm(
    customers: Iterable[CustomerSnapshot],
    orders: Sequence[OrderSnapshot],
    reference_date: Optional[datetime] = None,
) -> dict[str, RFMScore]:
    """Score a whole customer base against one shared order list."""
    reference_date = reference_date or utcnow()
    return {
        customer.id: calculate_rfm(customer, orders_for_customer(customer, orders), reference_date)
        for customer in customers
    }
