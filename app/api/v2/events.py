"""
Event Feed Endpoints

Push endpoints for the messaging provider (delivery/interaction events)
and the store (conversion events). Events for unknown enrollments are
accepted and ignored so providers do not retry them forever.
"""

from fastapi import APIRouter, status

from app.api.deps import Orchestrator
from app.schemas.journey import (
    AdvanceResponse,
    ConversionEvent,
    ConversionResponse,
    DeliveryWebhook,
    EnrollmentResponse,
)

router = APIRouter()


@router.post("/delivery", response_model=AdvanceResponse, status_code=status.HTTP_202_ACCEPTED)
async def delivery_event(event: DeliveryWebhook, orchestrator: Orchestrator):
    """Receive a sent/delivered/read/replied/button/failed event."""
    result = await orchestrator.advance(event.enrollment_id, event)
    return AdvanceResponse(
        applied=result.applied,
        reason=result.reason,
        enrollment=EnrollmentResponse.model_validate(result.enrollment) if result.enrollment else None,
    )


@router.post("/conversion", response_model=ConversionResponse)
async def conversion_event(event: ConversionEvent, orchestrator: Orchestrator):
    """Receive a customer event; counts toward goals and may trigger new enrollments."""
    outcome = await orchestrator.handle_customer_event(event)
    return ConversionResponse(
        enrollments_checked=outcome.enrollments_checked,
        conversions=outcome.conversions,
        resumed=outcome.resumed,
        enrolled=outcome.enrolled or [],
    )


@router.post("/timers/run")
async def run_due_timers(orchestrator: Orchestrator):
    """Fire due timers now instead of waiting for the scheduler."""
    return await orchestrator.process_due_transitions()
