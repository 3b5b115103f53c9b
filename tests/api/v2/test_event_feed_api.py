"""
Tests for the event feed endpoints (/api/v2/events).
"""

from datetime import timedelta

import pytest

from tests.factories.journey import definition, delay_node, edge, exit_node, goal_node, trigger_node

EVENTS = "/api/v2/events"


class TestDeliveryWebhook:
    @pytest.mark.asyncio
    async def test_unknown_enrollment_is_accepted(self, client):
        response = await client.post(f"{EVENTS}/delivery", json={
            "enrollment_id": "unknown", "event_type": "delivered",
        })
        assert response.status_code == 202
        assert response.json() == {"applied": False, "reason": "unknown_enrollment", "enrollment": None}

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, client, orchestrator, make_customer, make_journey):
        customer = await make_customer()
        journey = await make_journey(definition=definition(
            [trigger_node(), {"id": "message", "type": "action", "message": {"template_id": "t1"}}, exit_node()],
            [edge("trigger", "message"), edge("message", "exit")],
        ))
        enrollment = await orchestrator.enroll(customer.id, journey.id)
        body = {"enrollment_id": enrollment.id, "event_type": "sent", "event_id": "wamid.ABC"}

        first = await client.post(f"{EVENTS}/delivery", json=body)
        second = await client.post(f"{EVENTS}/delivery", json=body)

        assert first.json()["reason"] == "no_exit_path"
        assert second.json()["reason"] == "duplicate"


class TestConversionFeed:
    @pytest.mark.asyncio
    async def test_conversion_counts_toward_goal(self, client, clock, orchestrator, make_customer, make_journey):
        customer = await make_customer()
        journey = await make_journey(definition=definition(
            [trigger_node(), delay_node(value=30), exit_node(), goal_node(goal_type="shopify_event")],
            [edge("trigger", "delay"), edge("delay", "exit")],
        ))
        enrollment = await orchestrator.enroll(customer.id, journey.id)

        clock.advance(days=2)
        response = await client.post(f"{EVENTS}/conversion", json={
            "customer_id": customer.id, "event_name": "order_placed", "properties": {"total_price": 120},
        })

        assert response.status_code == 200
        assert response.json() == {"enrollments_checked": 1, "conversions": 1, "resumed": 0, "enrolled": []}
        enrollment = await orchestrator.get_enrollment(enrollment.id)
        assert enrollment.conversions_count == 1

    @pytest.mark.asyncio
    async def test_event_can_trigger_enrollment(self, client, make_customer, make_journey):
        trigger = {"target_segment": {"rules": [{
            "rule_type": "user_behavior", "event_name": "cart_abandoned",
            "time_frame": {"period": "last_24_hours"},
        }]}}
        journey = await make_journey(definition=definition(
            [trigger_node(trigger=trigger), delay_node(), exit_node()],
            [edge("trigger", "delay"), edge("delay", "exit")],
        ))
        customer = await make_customer()

        response = await client.post(f"{EVENTS}/conversion", json={
            "customer_id": customer.id, "event_name": "cart_abandoned",
        })

        enrolled = response.json()["enrolled"]
        assert len(enrolled) == 1
        enrollment = await client.get(f"/api/v2/enrollments/{enrolled[0]}")
        assert enrollment.json()["journey_id"] == journey.id


class TestRunTimers:
    @pytest.mark.asyncio
    async def test_run_due_timers(self, client, clock, orchestrator, make_customer, make_journey):
        customer = await make_customer()
        journey = await make_journey()
        await orchestrator.enroll(customer.id, journey.id)

        clock.advance(timedelta(days=1))
        response = await client.post(f"{EVENTS}/timers/run")

        assert response.status_code == 200
        assert response.json()["processed"] == 1
