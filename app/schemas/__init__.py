from app.schemas.customer import (
    CustomerSnapshot,
    OrderSnapshot,
    EventOccurrence,
    RFMScore,
    CustomerFilter,
)
from app.schemas.segment import (
    Condition,
    ConditionGroup,
    SegmentCreate,
    SegmentResponse,
    TargetSegment,
    TriggerConfig,
    LegacyTriggerConfig,
)
from app.schemas.journey import (
    JourneyDefinition,
    JourneyCreate,
    JourneyResponse,
    EnrollmentCreate,
    EnrollmentResponse,
    DeliveryEvent,
    ConversionEvent,
    ValidationReport,
)

__all__ = [
    # Customer
    "CustomerSnapshot",
    "OrderSnapshot",
    "EventOccurrence",
    "RFMScore",
    "CustomerFilter",
    # Segment
    "Condition",
    "ConditionGroup",
    "SegmentCreate",
    "SegmentResponse",
    "TargetSegment",
    "TriggerConfig",
    "LegacyTriggerConfig",
    # Journey
    "JourneyDefinition",
    "JourneyCreate",
    "JourneyResponse",
    "EnrollmentCreate",
    "EnrollmentResponse",
    "DeliveryEvent",
    "ConversionEvent",
    "ValidationReport",
]
