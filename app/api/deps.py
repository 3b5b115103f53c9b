"""
FastAPI Dependencies

Provides dependency injection for database sessions and the journey
engine services. The segment cache and the enrollment lock registry are
process-wide and live on ``app.state``; everything else is built per
request around the request's session.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import Clock, SystemClock
from app.database import get_db
from app.services.journeys.customer_provider import SqlCustomerProvider
from app.services.journeys.enrollment_locks import EnrollmentLockRegistry
from app.services.journeys.journey_orchestrator import JourneyOrchestrator
from app.services.journeys.segment_cache import SegmentMembershipCache
from app.services.journeys.segment_service import SegmentService


def get_segment_cache(request: Request) -> SegmentMembershipCache:
    return request.app.state.segment_cache


def get_lock_registry(request: Request) -> EnrollmentLockRegistry:
    return request.app.state.enrollment_locks


def get_clock(request: Request) -> Clock:
    """Application clock; tests swap in a FrozenClock via app.state."""
    return getattr(request.app.state, "clock", None) or SystemClock()


DbSession = Annotated[AsyncSession, Depends(get_db)]
SegmentCache = Annotated[SegmentMembershipCache, Depends(get_segment_cache)]
LockRegistry = Annotated[EnrollmentLockRegistry, Depends(get_lock_registry)]
AppClock = Annotated[Clock, Depends(get_clock)]


def get_provider(db: DbSession, cache: SegmentCache) -> SqlCustomerProvider:
    return SqlCustomerProvider(db, cache)


Provider = Annotated[SqlCustomerProvider, Depends(get_provider)]


def get_segment_service(provider: Provider, cache: SegmentCache, clock: AppClock) -> SegmentService:
    return SegmentService(provider, cache, clock, settings.SEGMENT_EVALUATION_CONCURRENCY)


Segments = Annotated[SegmentService, Depends(get_segment_service)]


def get_orchestrator(
    db: DbSession,
    cache: SegmentCache,
    locks: LockRegistry,
    clock: AppClock,
    provider: Provider,
    segments: Segments,
) -> JourneyOrchestrator:
    return JourneyOrchestrator(
        db,
        segment_cache=cache,
        locks=locks,
        clock=clock,
        provider=provider,
        segment_service=segments,
    )


Orchestrator = Annotated[JourneyOrchestrator, Depends(get_orchestrator)]
