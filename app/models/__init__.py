from app.models.customer import Customer, Order, CustomerEvent
from app.models.journey import (
    Journey,
    Segment,
    JourneyEnrollment,
    EnrollmentHistoryEntry,
    EnrollmentAction,
    PendingTransition,
    ProcessedEvent,
)

__all__ = [
    "Customer",
    "Order",
    "CustomerEvent",
    "Journey",
    "Segment",
    "JourneyEnrollment",
    "EnrollmentHistoryEntry",
    "EnrollmentAction",
    "PendingTransition",
    "ProcessedEvent",
]
