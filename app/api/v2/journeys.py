"""
Journey API Endpoints

Journeys are created as drafts. Activation runs validation first and is
refused with the collected issues when any of them is an error.
"""

from fastapi import APIRouter, Query, status
from sqlalchemy import select

from app.api.deps import AppClock, DbSession
from app.exceptions import BusinessRuleError, ErrorCode, NotFoundError, ValidationError
from app.models.journey import Journey, JourneyEnrollment
from app.schemas.journey import (
    EnrollmentResponse,
    IssueSeverity,
    JourneyCreate,
    JourneyDefinition,
    JourneyResponse,
    JourneyStatus,
    ValidationReport,
)
from app.services.journeys.validation import validate_journey

router = APIRouter()


async def _get_journey(db, journey_id: str) -> Journey:
    journey = await db.get(Journey, journey_id)
    if not journey:
        raise NotFoundError("Journey", journey_id)
    return journey


@router.get("", response_model=list[JourneyResponse])
async def list_journeys(db: DbSession, status_filter: JourneyStatus | None = Query(None, alias="status")):
    """List journeys, optionally by status."""
    query = select(Journey).order_by(Journey.created_at.desc())
    if status_filter:
        query = query.where(Journey.status == status_filter.value)
    result = await db.execute(query)
    return result.scalars().all()


@router.post("", response_model=JourneyResponse, status_code=status.HTTP_201_CREATED)
async def create_journey(data: JourneyCreate, db: DbSession):
    """Create a draft journey."""
    journey = Journey(
        name=data.name,
        description=data.description,
        status=JourneyStatus.DRAFT.value,
        definition=data.definition.model_dump(mode="json"),
    )
    db.add(journey)
    await db.commit()
    await db.refresh(journey)
    return journey


@router.get("/{journey_id}", response_model=JourneyResponse)
async def get_journey(journey_id: str, db: DbSession):
    """Get a specific journey with its definition."""
    return await _get_journey(db, journey_id)


@router.post("/{journey_id}/validate", response_model=ValidationReport)
async def validate(journey_id: str, db: DbSession):
    """Collect every validation issue in the journey definition."""
    journey = await _get_journey(db, journey_id)
    return validate_journey(JourneyDefinition.model_validate(journey.definition or {}))


@router.post("/{journey_id}/activate", response_model=JourneyResponse)
async def activate_journey(journey_id: str, db: DbSession, clock: AppClock):
    """Activate a journey; refused with 422 while it has validation errors."""
    journey = await _get_journey(db, journey_id)
    if journey.status == JourneyStatus.ARCHIVED.value:
        raise BusinessRuleError("Archived journeys cannot be activated")

    report = validate_journey(JourneyDefinition.model_validate(journey.definition or {}))
    if not report.valid:
        errors = [
            issue.model_dump(mode="json")
            for issue in report.issues
            if issue.severity == IssueSeverity.ERROR
        ]
        raise ValidationError(
            f"Journey has {len(errors)} validation error(s)",
            errors=errors,
            code=ErrorCode.INVALID_JOURNEY,
        )

    journey.status = JourneyStatus.ACTIVE.value
    journey.activated_at = clock.now()
    await db.commit()
    await db.refresh(journey)
    return journey


@router.post("/{journey_id}/pause", response_model=JourneyResponse)
async def pause_journey(journey_id: str, db: DbSession):
    """Pause a journey; existing enrollments keep their state, new entries are refused."""
    journey = await _get_journey(db, journey_id)
    if journey.status != JourneyStatus.ACTIVE.value:
        raise BusinessRuleError("Only active journeys can be paused", code=ErrorCode.JOURNEY_NOT_ACTIVE)
    journey.status = JourneyStatus.PAUSED.value
    await db.commit()
    await db.refresh(journey)
    return journey


@router.get("/{journey_id}/enrollments", response_model=list[EnrollmentResponse])
async def list_journey_enrollments(
    journey_id: str,
    db: DbSession,
    limit: int = Query(100, ge=1, le=1000),
):
    """List enrollments of a journey, newest first."""
    await _get_journey(db, journey_id)
    result = await db.execute(
        select(JourneyEnrollment)
        .where(JourneyEnrollment.journey_id == journey_id)
        .order_by(JourneyEnrollment.entered_at.desc())
        .limit(limit)
    )
    return result.scalars().all()
