"""
Segment API Endpoints

Includes:
- Segment CRUD for stored condition trees
- Ad-hoc condition evaluation over the customer base
- Reach estimation for trigger target segments (enhanced and legacy shape)
- Cached membership lookup and invalidation
"""

from fastapi import APIRouter, status
from sqlalchemy import select

from app.api.deps import DbSession, Provider, SegmentCache, Segments
from app.exceptions import NotFoundError
from app.models.journey import Segment
from app.schemas.customer import CustomerFilter
from app.schemas.segment import (
    LegacyTriggerConfig,
    ReachEstimate,
    SegmentCreate,
    SegmentEvaluateRequest,
    SegmentMembersResponse,
    SegmentResponse,
    TriggerConfig,
)
from app.services.journeys.trigger_mapping import to_enhanced

router = APIRouter()


@router.get("", response_model=list[SegmentResponse])
async def list_segments(db: DbSession):
    """List stored segments."""
    result = await db.execute(select(Segment).order_by(Segment.name))
    return result.scalars().all()


@router.post("", response_model=SegmentResponse, status_code=status.HTTP_201_CREATED)
async def create_segment(data: SegmentCreate, db: DbSession):
    """Store a named condition tree."""
    segment = Segment(
        name=data.name,
        description=data.description,
        conditions=data.conditions.model_dump(mode="json"),
    )
    db.add(segment)
    await db.commit()
    await db.refresh(segment)
    return segment


@router.get("/cache/stats")
async def cache_stats(cache: SegmentCache):
    """Hit/miss counters of the membership cache."""
    return cache.stats()


@router.post("/evaluate", response_model=SegmentMembersResponse)
async def evaluate_segment(request: SegmentEvaluateRequest, segments: Segments, provider: Provider):
    """Evaluate a condition tree against all customers (or the given ids)."""
    customers = None
    if request.customer_ids is not None:
        customers = await provider.list_customers(CustomerFilter(ids=request.customer_ids))
    members = await segments.evaluate_segment(request.conditions, customers)
    return SegmentMembersResponse(customer_ids=members, count=len(members))


@router.post("/estimate-reach", response_model=ReachEstimate)
async def estimate_reach(trigger: TriggerConfig, segments: Segments):
    """Count customers the trigger's target segment currently matches."""
    return await segments.estimate_reach(trigger)


@router.post("/estimate-reach/legacy", response_model=ReachEstimate)
async def estimate_reach_legacy(trigger: LegacyTriggerConfig, segments: Segments):
    """Reach estimate for a trigger saved in the legacy shape."""
    return await segments.estimate_reach(to_enhanced(trigger))


@router.get("/{segment_id}", response_model=SegmentResponse)
async def get_segment(segment_id: str, db: DbSession):
    """Get a stored segment."""
    segment = await db.get(Segment, segment_id)
    if not segment:
        raise NotFoundError("Segment", segment_id)
    return segment


@router.get("/{segment_id}/members", response_model=SegmentMembersResponse)
async def get_segment_members(segment_id: str, db: DbSession, segments: Segments):
    """Current members, served from the cache while fresh."""
    if await db.get(Segment, segment_id) is None:
        raise NotFoundError("Segment", segment_id)
    members, cached = await segments.load_members(segment_id)
    return SegmentMembersResponse(
        segment_id=segment_id,
        customer_ids=members,
        count=len(members),
        cached=cached,
    )


@router.post("/{segment_id}/invalidate")
async def invalidate_segment(segment_id: str, cache: SegmentCache):
    """Drop the cached membership so the next read recomputes it."""
    return {"segment_id": segment_id, "invalidated": cache.invalidate(segment_id)}
