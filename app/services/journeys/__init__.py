"""
Journey Engine Services

Segment evaluation, trigger matching, goal attribution and the enrollment
state machine for marketing journeys.
"""

from app.services.journeys.enrollment_locks import EnrollmentLockRegistry
from app.services.journeys.journey_orchestrator import AdvanceResult, JourneyOrchestrator, check_entry
from app.services.journeys.rfm_scorer import calculate_all_rfm, calculate_rfm
from app.services.journeys.segment_cache import SegmentMembershipCache
from app.services.journeys.segment_service import SegmentService
from app.services.journeys.trigger_mapping import to_enhanced, to_legacy
from app.services.journeys.validation import validate_journey

__all__ = [
    "EnrollmentLockRegistry",
    "AdvanceResult",
    "JourneyOrchestrator",
    "check_entry",
    "calculate_rfm",
    "calculate_all_rfm",
    "SegmentMembershipCache",
    "SegmentService",
    "to_legacy",
    "to_enhanced",
    "validate_journey",
]
