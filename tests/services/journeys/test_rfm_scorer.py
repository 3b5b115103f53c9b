"""
Tests for the RFM Scorer.
"""

from datetime import datetime, timedelta

import pytest

from app.schemas.customer import CustomerSnapshot, OrderSnapshot
from app.services.journeys.rfm_scorer import (
    NO_ORDER_DAYS,
    calculate_all_rfm,
    calculate_rfm,
    days_since,
    score_recency,
    segment_label,
)
from tests.factories import ChampionCustomerFactory

NOW = datetime(2024, 6, 1, 12, 0, 0)


def orders_for(customer_id: str, count: int, total: float, last_days_ago: int) -> list[OrderSnapshot]:
    each = total / count
    return [
        OrderSnapshot(
            id=f"{customer_id}-{i}",
            customer_id=customer_id,
            total_price=each,
            created_at=NOW - timedelta(days=last_days_ago + i * 15),
        )
        for i in range(count)
    ]


class TestRecency:
    """Tests for recency scoring."""

    @pytest.mark.parametrize("days,score", [(0, 5), (30, 5), (31, 4), (60, 4), (90, 3), (180, 2), (181, 1)])
    def test_bands(self, days, score):
        assert score_recency(days) == score

    def test_non_increasing_in_days(self):
        scores = [score_recency(days) for days in range(0, 1000, 7)]
        assert all(1 <= s <= 5 for s in scores)
        assert all(a >= b for a, b in zip(scores, scores[1:]))

    def test_no_orders_is_lowest(self):
        assert days_since(None, NOW) == NO_ORDER_DAYS
        assert score_recency(NO_ORDER_DAYS) == 1

    def test_future_dates_clamp_to_zero(self):
        assert days_since(NOW + timedelta(days=2), NOW) == 0


class TestCalculateRFM:
    """Tests for whole-customer scoring."""

    def test_champion_scenario(self):
        customer = CustomerSnapshot(id="c1", total_spent=6200.0)
        score = calculate_rfm(customer, orders_for("c1", 12, 6200.0, 10), NOW)

        assert (score.recency, score.frequency, score.monetary) == (5, 4, 4)
        assert score.segment == "Champions"
        assert score.days_since_last_order == 10
        assert score.order_count == 12
        assert score.total_spent == 6200.0

    def test_monetary_uses_customer_total_not_order_page(self):
        # Only a page of small orders is supplied; lifetime spend is on the customer
        customer = CustomerSnapshot(id="c1", total_spent=6200.0)
        score = calculate_rfm(customer, orders_for("c1", 12, 120.0, 10), NOW)

        assert (score.recency, score.frequency, score.monetary) == (5, 4, 4)
        assert score.segment == "Champions"
        assert score.total_spent == 6200.0

    def test_falls_back_to_customer_aggregates(self):
        customer = CustomerSnapshot(**ChampionCustomerFactory(last_order_at=NOW - timedelta(days=10)))
        assert calculate_rfm(customer, [], NOW).segment == "Champions"

    def test_customer_without_orders(self):
        score = calculate_rfm(CustomerSnapshot(id="c3"), [], NOW)
        assert (score.recency, score.frequency, score.monetary) == (1, 1, 1)
        assert score.days_since_last_order == NO_ORDER_DAYS
        assert score.segment == "Hibernating"

    def test_label_order_decides_overlaps(self):
        # Matches both Champions and Loyal Customers; the first rule wins
        assert segment_label(5, 5, 5) == "Champions"
        assert segment_label(3, 4, 1) == "Loyal Customers"

    def test_calculate_all_matches_by_id_and_email(self):
        customers = [CustomerSnapshot(id="a", email="a@example.com"), CustomerSnapshot(id="b")]
        orders = [
            OrderSnapshot(id="1", customer_id="a", total_price=100, created_at=NOW - timedelta(days=1)),
            OrderSnapshot(id="2", email="a@example.com", total_price=50, created_at=NOW - timedelta(days=2)),
        ]
        scores = calculate_all_rfm(customers, orders, NOW)
        assert scores["a"].order_count == 2
        assert scores["b"].order_count == 0
