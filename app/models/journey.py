"""
Journey Models

Journey definitions are stored whole as JSON; enrollment progress is kept
in relational rows so history and activity stay append-only and pending
timers can be polled by due time.
"""

import uuid

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text,
    ForeignKey, Enum as SQLEnum, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Journey(Base):
    """A journey definition and its publication status."""

    __tablename__ = "journeys"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text)

    status = Column(
        SQLEnum('draft', 'active', 'paused', 'archived', name='journey_status_enum'),
        default='draft',
        nullable=False,
    )

    # Serialized JourneyDefinition (nodes, edges, settings)
    definition = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    activated_at = Column(DateTime)

    enrollments = relationship("JourneyEnrollment", back_populates="journey")

    def __repr__(self):
        return f"<Journey {self.id} {self.name!r} status={self.status}>"


class Segment(Base):
    """Named condition tree evaluated against the customer base."""

    __tablename__ = "segments"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    conditions = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class JourneyEnrollment(Base):
    """
    One customer's progress through one journey.

    ``version`` is the optimistic lock: two writers that loaded the same
    version cannot both commit a transition.
    """

    __tablename__ = "journey_enrollments"

    id = Column(String(36), primary_key=True, default=_uuid)
    journey_id = Column(String(36), ForeignKey("journeys.id"), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, index=True)

    status = Column(
        SQLEnum('ACTIVE', 'COMPLETED', 'EXITED', 'DROPPED', name='enrollment_status_enum'),
        default='ACTIVE',
        nullable=False,
    )
    current_node_id = Column(String(100))
    exit_reason = Column(String(200))
    waiting_for_event = Column(String(100))

    goal_achieved = Column(Boolean, default=False, nullable=False)
    conversions_count = Column(Integer, default=0, nullable=False)
    marked_completed = Column(Boolean, default=False, nullable=False)

    entered_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    version = Column(Integer, nullable=False)

    journey = relationship("Journey", back_populates="enrollments")
    history = relationship(
        "EnrollmentHistoryEntry",
        order_by="EnrollmentHistoryEntry.seq",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    actions = relationship(
        "EnrollmentAction",
        order_by="EnrollmentAction.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_enrollment_journey_customer", "journey_id", "customer_id"),
    )

    @property
    def current_entry(self):
        return self.history[-1] if self.history else None

    def __repr__(self):
        return f"<JourneyEnrollment {self.id} {self.status} at {self.current_node_id}>"


class EnrollmentHistoryEntry(Base):
    """Append-only record of node visits."""

    __tablename__ = "enrollment_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    enrollment_id = Column(String(36), ForeignKey("journey_enrollments.id"), nullable=False, index=True)
    seq = Column(Integer, nullable=False)
    node_id = Column(String(100), nullable=False)
    entered_at = Column(DateTime, nullable=False)
    exited_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("enrollment_id", "seq", name="uq_enrollment_history_seq"),
    )


class EnrollmentAction(Base):
    """Append-only activity log (messages requested/sent, tracking, conversions)."""

    __tablename__ = "enrollment_actions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    enrollment_id = Column(String(36), ForeignKey("journey_enrollments.id"), nullable=False, index=True)
    action_type = Column(String(50), nullable=False)
    node_id = Column(String(100))
    occurred_at = Column(DateTime, nullable=False)
    meta = Column("metadata", JSON)


class PendingTransition(Base):
    """
    Timer persisted until the scheduler fires it.

    A timer only applies while its enrollment is still on ``node_id`` in the
    same visit (``history_seq``); otherwise it is skipped.
    """

    __tablename__ = "pending_transitions"

    id = Column(String(36), primary_key=True, default=_uuid)
    enrollment_id = Column(String(36), ForeignKey("journey_enrollments.id"), nullable=False, index=True)
    node_id = Column(String(100), nullable=False)
    history_seq = Column(Integer, nullable=False)

    kind = Column(
        SQLEnum(
            'delay_elapsed', 'event_timeout', 'node_timeout', 'exit_path_wait', 'goal_window',
            name='pending_transition_kind_enum'
        ),
        nullable=False,
    )
    status = Column(
        SQLEnum('pending', 'fired', 'skipped', 'cancelled', name='pending_transition_status_enum'),
        default='pending',
        nullable=False,
    )
    due_at = Column(DateTime, nullable=False)
    payload = Column(JSON)

    created_at = Column(DateTime, default=utcnow)
    resolved_at = Column(DateTime)

    __table_args__ = (
        Index("ix_pending_transitions_status_due", "status", "due_at"),
    )


class ProcessedEvent(Base):
    """Idempotency keys (enrollment:node:event) of events already applied."""

    __tablename__ = "processed_events"

    idempotency_key = Column(String(255), primary_key=True)
    enrollment_id = Column(String(36), nullable=False, index=True)
    processed_at = Column(DateTime, nullable=False, default=utcnow)
