"""
Enrollment API Endpoints

Manual enrollment, enrollment lookup, and applying a delivery event to a
known enrollment.
"""

from fastapi import APIRouter, status

from app.api.deps import Orchestrator
from app.exceptions import NotFoundError
from app.schemas.journey import AdvanceResponse, DeliveryEvent, EnrollmentCreate, EnrollmentResponse

router = APIRouter()


@router.post("", response_model=EnrollmentResponse, status_code=status.HTTP_201_CREATED)
async def enroll_customer(request: EnrollmentCreate, orchestrator: Orchestrator):
    """Enroll a customer in an active journey."""
    return await orchestrator.enroll(request.customer_id, request.journey_id)


@router.get("/{enrollment_id}", response_model=EnrollmentResponse)
async def get_enrollment(enrollment_id: str, orchestrator: Orchestrator):
    """Get an enrollment with its history and activity."""
    return await orchestrator.get_enrollment(enrollment_id)


@router.post("/{enrollment_id}/advance", response_model=AdvanceResponse)
async def advance_enrollment(enrollment_id: str, event: DeliveryEvent, orchestrator: Orchestrator):
    """Apply a delivery/interaction event to the enrollment's current action node."""
    result = await orchestrator.advance(enrollment_id, event)
    if result.reason == "unknown_enrollment":
        raise NotFoundError("Enrollment", enrollment_id)
    return AdvanceResponse(
        applied=result.applied,
        reason=result.reason,
        enrollment=EnrollmentResponse.model_validate(result.enrollment) if result.enrollment else None,
    )
