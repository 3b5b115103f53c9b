from fastapi import APIRouter
from app.api.v2 import (
    customers,
    segments,
    journeys,
    enrollments,
    events,
)

api_router = APIRouter()

# Include all v2 routers
api_router.include_router(customers.router, prefix="/customers", tags=["customers"])
api_router.include_router(segments.router, prefix="/segments", tags=["segments"])
api_router.include_router(journeys.router, prefix="/journeys", tags=["journeys"])
api_router.include_router(enrollments.router, prefix="/enrollments", tags=["enrollments"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
