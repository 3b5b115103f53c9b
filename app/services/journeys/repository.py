"""
Persistence for journeys and enrollments.

History and action rows are only ever inserted. Nothing here commits;
the orchestrator commits once per transition so the history append and
the ``current_node_id`` change land together.
"""

from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.journey import (
    EnrollmentAction,
    EnrollmentHistoryEntry,
    Journey,
    JourneyEnrollment,
    PendingTransition,
    ProcessedEvent,
)


class JourneyRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    # Journeys

    async def get_journey(self, journey_id: str) -> Optional[Journey]:
        return await self.db.get(Journey, journey_id)

    async def add_journey(self, journey: Journey) -> Journey:
        self.db.add(journey)
        await self.db.flush()
        return journey

    async def active_journeys(self) -> Sequence[Journey]:
        result = await self.db.execute(
            select(Journey).where(Journey.status == "active").order_by(Journey.created_at)
        )
        return result.scalars().all()

    # Enrollments

    async def get_enrollment(self, enrollment_id: str) -> Optional[JourneyEnrollment]:
        return await self.db.get(JourneyEnrollment, enrollment_id, populate_existing=True)

    async def enrollments_for(self, journey_id: str, customer_id: str) -> Sequence[JourneyEnrollment]:
        result = await self.db.execute(
            select(JourneyEnrollment)
            .where(
                JourneyEnrollment.journey_id == journey_id,
                JourneyEnrollment.customer_id == customer_id,
            )
            .order_by(JourneyEnrollment.entered_at)
        )
        return result.scalars().all()

    async def count_enrollments(self, journey_id: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(JourneyEnrollment).where(JourneyEnrollment.journey_id == journey_id)
        )
        return result.scalar() or 0

    async def active_enrollments_for_customer(self, customer_id: str) -> Sequence[JourneyEnrollment]:
        result = await self.db.execute(
            select(JourneyEnrollment).where(
                JourneyEnrollment.customer_id == customer_id,
                JourneyEnrollment.status == "ACTIVE",
            )
        )
        return result.scalars().all()

    async def add_enrollment(self, enrollment: JourneyEnrollment) -> JourneyEnrollment:
        self.db.add(enrollment)
        await self.db.flush()
        return enrollment

    def append_history(self, enrollment: JourneyEnrollment, node_id: str, entered_at: datetime) -> EnrollmentHistoryEntry:
        entry = EnrollmentHistoryEntry(
            seq=len(enrollment.history),
            node_id=node_id,
            entered_at=entered_at,
        )
        enrollment.history.append(entry)
        return entry

    def append_action(
        self,
        enrollment: JourneyEnrollment,
        action_type: str,
        occurred_at: datetime,
        node_id: Optional[str] = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> EnrollmentAction:
        action = EnrollmentAction(
            action_type=action_type,
            node_id=node_id,
            occurred_at=occurred_at,
            meta=meta or {},
        )
        enrollment.actions.append(action)
        return action

    # Pending transitions

    def schedule(
        self,
        enrollment: JourneyEnrollment,
        kind: str,
        due_at: datetime,
        payload: Optional[dict[str, Any]] = None,
    ) -> PendingTransition:
        entry = enrollment.current_entry
        transition = PendingTransition(
            enrollment_id=enrollment.id,
            node_id=enrollment.current_node_id,
            history_seq=entry.seq if entry is not None else 0,
            kind=kind,
            due_at=due_at,
            payload=payload or {},
            status="pending",
        )
        self.db.add(transition)
        return transition

    async def cancel_pending(
        self, enrollment_id: str, now: datetime, kinds: Optional[Sequence[str]] = None
    ) -> int:
        statement = (
            update(PendingTransition)
            .where(
                PendingTransition.enrollment_id == enrollment_id,
                PendingTransition.status == "pending",
            )
            .values(status="cancelled", resolved_at=now)
            .execution_options(synchronize_session="fetch")
        )
        if kinds:
            statement = statement.where(PendingTransition.kind.in_(list(kinds)))
        result = await self.db.execute(statement)
        return result.rowcount or 0

    async def pending_for(self, enrollment_id: str) -> Sequence[PendingTransition]:
        result = await self.db.execute(
            select(PendingTransition)
            .where(
                PendingTransition.enrollment_id == enrollment_id,
                PendingTransition.status == "pending",
            )
            .order_by(PendingTransition.due_at)
        )
        return result.scalars().all()

    async def due_transitions(self, now: datetime, limit: int) -> list[tuple[str, str]]:
        """(transition id, enrollment id) pairs due at ``now``, oldest first."""
        result = await self.db.execute(
            select(PendingTransition.id, PendingTransition.enrollment_id)
            .where(PendingTransition.status == "pending", PendingTransition.due_at <= now)
            .order_by(PendingTransition.due_at)
            .limit(limit)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def get_transition(self, transition_id: str) -> Optional[PendingTransition]:
        return await self.db.get(PendingTransition, transition_id, populate_existing=True)

    # Idempotency

    async def is_processed(self, key: str) -> bool:
        return await self.db.get(ProcessedEvent, key) is not None

    def mark_processed(self, key: str, enrollment_id: str, now: datetime) -> None:
        self.db.add(ProcessedEvent(idempotency_key=key, enrollment_id=enrollment_id, processed_at=now))
