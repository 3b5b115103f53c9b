# Services module
from app.services.journeys import (
    EnrollmentLockRegistry,
    JourneyOrchestrator,
    SegmentMembershipCache,
    SegmentService,
)

__all__ = [
    # Journey engine
    "EnrollmentLockRegistry",
    "JourneyOrchestrator",
    "SegmentMembershipCache",
    "SegmentService",
]
