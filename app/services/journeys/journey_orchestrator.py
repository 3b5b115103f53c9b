"""
Journey Orchestrator Service

Moves enrollments through a journey's node graph.

Handles:
- Entry (manual or trigger match) under the journey's entry-frequency rules
- Traversal along default and labelled edges until a suspension point
- Delivery events on action nodes via their exit paths
- Timers (delays, event timeouts, action timeouts, exit-path waits, goal windows)
- Conversion events against goal nodes

Each transition is applied under the enrollment's lock and committed once,
so the history append, ``current_node_id`` and the idempotency key land in
the same transaction.
"""

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.core.clock import Clock, SystemClock
from app.exceptions import (
    BusinessRuleError,
    EntryRejectedError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from app.models.journey import Journey, JourneyEnrollment, PendingTransition
from app.schemas.customer import CustomerSnapshot, EventOccurrence
from app.schemas.journey import (
    ActionNode,
    ConditionNode,
    ConversionEvent,
    DelayNode,
    DeliveryEvent,
    DeliveryEventType,
    DurationDelay,
    EnrollmentStatus,
    EventDelay,
    ExitNode,
    GoalNode,
    GoalType,
    JourneyDefinition,
    JourneySettings,
    TriggerNode,
    UntilDelay,
)
from app.services.journeys.condition_evaluator import matches_group
from app.services.journeys.customer_provider import CustomerProvider, SqlCustomerProvider
from app.services.journeys.enrollment_locks import EnrollmentLockRegistry
from app.services.journeys.exit_path_resolver import (
    Resolution,
    ResolutionKind,
    resolve_exit_path,
)
from app.services.journeys.goal_attribution import (
    AttributionResult,
    Touch,
    attribute_conversion,
    event_matches_goal,
)
from app.services.journeys.graph import JourneyGraph
from app.services.journeys.repository import JourneyRepository
from app.services.journeys.segment_cache import SegmentMembershipCache
from app.services.journeys.segment_service import SegmentService
from app.services.journeys.trigger_matcher import match_target

logger = logging.getLogger(__name__)

ACTIVE = EnrollmentStatus.ACTIVE.value
COMPLETED = EnrollmentStatus.COMPLETED.value
EXITED = EnrollmentStatus.EXITED.value
DROPPED = EnrollmentStatus.DROPPED.value

# Pending transition kinds
DELAY_ELAPSED = "delay_elapsed"
EVENT_TIMEOUT = "event_timeout"
NODE_TIMEOUT = "node_timeout"
EXIT_PATH_WAIT = "exit_path_wait"
GOAL_WINDOW = "goal_window"

MESSAGE_SENT = "message_sent"
GOAL_CONVERTED = "goal_converted"

MAX_KEY_LENGTH = 255


def idempotency_key(enrollment_id: str, node_id: str, event_id: str) -> str:
    key = f"{enrollment_id}:{node_id}:{event_id}"
    if len(key) <= MAX_KEY_LENGTH:
        return key
    digest = hashlib.sha256(event_id.encode("utf-8")).hexdigest()
    return f"{enrollment_id}:{node_id}:{digest}"


def check_entry(
    journey_settings: JourneySettings,
    prior: Sequence[JourneyEnrollment],
    now: datetime,
    journey_total: int,
) -> Optional[str]:
    """
    Reason the customer may not enter now, or None.

    An active enrollment always blocks. Without re-entry any earlier
    enrollment blocks; with it, max_entries and the cooldown since the
    latest entry apply.
    """
    cap = journey_settings.max_enrollments
    if cap is not None and journey_total >= cap:
        return "journey_full"
    if any(enrollment.status == ACTIVE for enrollment in prior):
        return "already_active"
    if not prior:
        return None

    entry = journey_settings.entry
    if not entry.allow_reentry:
        return "reentry_not_allowed"
    if entry.max_entries is not None and len(prior) >= entry.max_entries:
        return "max_entries_reached"
    if entry.cooldown is not None:
        last_entry = max(enrollment.entered_at for enrollment in prior)
        if now < last_entry + entry.cooldown.to_timedelta():
            return "cooldown"
    return None


@dataclass
class AdvanceResult:
    applied: bool
    reason: str
    enrollment: Optional[JourneyEnrollment] = None


@dataclass
class ConversionOutcome:
    enrollments_checked: int = 0
    conversions: int = 0
    resumed: int = 0
    enrolled: Optional[list[str]] = None


class JourneyOrchestrator:
    """
    Orchestrates journey enrollments.

    The segment cache and lock registry are owned by the application and
    passed in; when omitted, private instances are created (tests, scripts).
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        segment_cache: Optional[SegmentMembershipCache] = None,
        locks: Optional[EnrollmentLockRegistry] = None,
        clock: Optional[Clock] = None,
        provider: Optional[CustomerProvider] = None,
        segment_service: Optional[SegmentService] = None,
        max_steps: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.repo = JourneyRepository(db)
        self.cache = segment_cache or SegmentMembershipCache(clock=self.clock)
        self.locks = locks or EnrollmentLockRegistry()
        self.provider = provider or SqlCustomerProvider(db, self.cache)
        self.segments = segment_service or SegmentService(
            self.provider, self.cache, self.clock, settings.SEGMENT_EVALUATION_CONCURRENCY
        )
        self.max_steps = max_steps or settings.MAX_TRAVERSAL_STEPS

    # Loading

    async def _load_journey(self, journey_id: str) -> tuple[Journey, JourneyGraph]:
        journey = await self.repo.get_journey(journey_id)
        if journey is None:
            raise NotFoundError("Journey", journey_id)
        return journey, JourneyGraph(JourneyDefinition.model_validate(journey.definition or {}))

    async def get_enrollment(self, enrollment_id: str) -> JourneyEnrollment:
        enrollment = await self.repo.get_enrollment(enrollment_id)
        if enrollment is None:
            raise NotFoundError("Enrollment", enrollment_id)
        return enrollment

    # Entry

    async def enroll(self, customer_id: str, journey_id: str, source: str = "manual") -> JourneyEnrollment:
        """
        Enroll a customer at the journey's trigger node and walk to the first suspension point.

        Raises:
            NotFoundError: unknown journey or customer
            BusinessRuleError: the journey is not active
            EntryRejectedError: entry-frequency rules refuse the customer
        """
        journey, graph = await self._load_journey(journey_id)
        if journey.status != "active":
            raise BusinessRuleError(
                f"Journey {journey_id} is {journey.status}, only active journeys accept enrollments",
                code=ErrorCode.JOURNEY_NOT_ACTIVE,
            )
        entry_node = graph.entry_node()
        if entry_node is None:
            raise ValidationError("Journey has no trigger node", code=ErrorCode.INVALID_JOURNEY)

        customer = await self.provider.get_customer(customer_id)
        if customer is None:
            raise NotFoundError("Customer", customer_id)

        async with self.locks.hold(f"entry:{journey_id}:{customer_id}"):
            now = self.clock.now()
            prior = await self.repo.enrollments_for(journey_id, customer_id)
            total = await self.repo.count_enrollments(journey_id)
            reason = check_entry(graph.definition.settings, prior, now, total)
            if reason is not None:
                raise EntryRejectedError(journey_id, customer_id, reason)

            enrollment = JourneyEnrollment(
                id=str(uuid.uuid4()),
                journey_id=journey_id,
                customer_id=customer_id,
                status=ACTIVE,
                current_node_id=entry_node.id,
                entered_at=now,
                goal_achieved=False,
                conversions_count=0,
                marked_completed=False,
                history=[],
                actions=[],
            )
            await self.repo.add_enrollment(enrollment)
            self.repo.append_history(enrollment, entry_node.id, now)
            self.repo.append_action(enrollment, "journey_started", now, entry_node.id, {"source": source})
            logger.info(f"Enrolled customer {customer_id} in journey {journey_id} ({source}): {enrollment.id}")

            await self._follow(enrollment, graph, now, customer=customer)
            await self.db.commit()
        return enrollment

    async def match_triggers(self, customer_id: str) -> list[str]:
        """Enroll the customer in every active journey whose trigger target they match."""
        customer = await self.provider.get_customer(customer_id)
        if customer is None:
            return []

        enrolled = []
        for journey in await self.repo.active_journeys():
            graph = JourneyGraph(JourneyDefinition.model_validate(journey.definition or {}))
            entry_node = graph.entry_node()
            if entry_node is None or entry_node.trigger is None:
                continue
            if not await self.segments.matches_target(customer, entry_node.trigger.target_segment):
                continue
            try:
                enrollment = await self.enroll(customer_id, journey.id, source="trigger")
            except EntryRejectedError as e:
                logger.debug(f"Trigger matched but entry refused: {e.reason}")
                continue
            enrolled.append(enrollment.id)
        return enrolled

    # Traversal

    def _pick_edge(self, graph: JourneyGraph, node_id: str, label: Optional[str], strict: bool):
        if label is None:
            return graph.default_edge(node_id)
        edge = graph.labeled_edge(node_id, label)
        if edge is None and not strict:
            edge = graph.default_edge(node_id)
        return edge

    def _move_to(self, enrollment: JourneyEnrollment, node_id: str, now: datetime) -> None:
        current = enrollment.current_entry
        if current is not None and current.exited_at is None:
            current.exited_at = now
        enrollment.current_node_id = node_id
        enrollment.waiting_for_event = None
        self.repo.append_history(enrollment, node_id, now)

    async def _finish(self, enrollment: JourneyEnrollment, status: str, reason: str, now: datetime) -> None:
        current = enrollment.current_entry
        if current is not None and current.exited_at is None:
            current.exited_at = now
        enrollment.status = status
        enrollment.exit_reason = reason
        enrollment.completed_at = now
        enrollment.waiting_for_event = None
        await self.repo.cancel_pending(enrollment.id, now)
        self.repo.append_action(
            enrollment, f"journey_{status.lower()}", now, enrollment.current_node_id, {"reason": reason}
        )
        logger.info(f"Enrollment {enrollment.id} {status} at {enrollment.current_node_id}: {reason}")

    async def _follow(
        self,
        enrollment: JourneyEnrollment,
        graph: JourneyGraph,
        now: datetime,
        label: Optional[str] = None,
        strict: bool = False,
        customer: Optional[CustomerSnapshot] = None,
    ) -> None:
        """
        Leave the current node and keep walking until the enrollment suspends or ends.

        ``label`` selects a labelled edge; with ``strict`` a missing label
        exits the enrollment instead of falling back to the default edge.
        """
        await self.repo.cancel_pending(enrollment.id, now)
        steps = 0
        while True:
            edge = self._pick_edge(graph, enrollment.current_node_id, label, strict)
            if edge is None:
                if label is not None and strict:
                    await self._finish(enrollment, EXITED, f"no_path:{label}", now)
                else:
                    await self._finish(enrollment, COMPLETED, "end_of_journey", now)
                return

            node = graph.node(edge.target)
            if node is None:
                await self._finish(enrollment, DROPPED, f"dangling_edge:{edge.id}", now)
                return

            steps += 1
            if steps > self.max_steps:
                await self._finish(enrollment, DROPPED, "loop_guard", now)
                return

            self._move_to(enrollment, node.id, now)
            next_step = await self._enter(enrollment, graph, node, now, customer)
            if next_step is None:
                return
            label, strict = next_step

    async def _enter(self, enrollment, graph, node, now, customer) -> Optional[tuple[Optional[str], bool]]:
        """
        Run a node on arrival.

        Returns the (label, strict) to leave by, or None when the enrollment
        suspended here or ended.
        """
        if isinstance(node, TriggerNode):
            return None, False

        if isinstance(node, ExitNode):
            await self._finish(enrollment, COMPLETED, node.reason or "exit_node", now)
            return None

        if isinstance(node, DelayNode):
            return self._enter_delay(enrollment, node, now)

        if isinstance(node, ConditionNode):
            customer = customer or await self.provider.get_customer(enrollment.customer_id)
            if customer is None:
                await self._finish(enrollment, DROPPED, "customer_missing", now)
                return None
            result = await self._evaluate_condition(node, customer, now)
            self.repo.append_action(enrollment, "condition_evaluated", now, node.id, {"result": result})
            return (node.true_label if result else node.false_label), True

        if isinstance(node, ActionNode):
            self.repo.append_action(enrollment, "message_requested", now, node.id, {
                "channel": node.message.channel,
                "template_id": node.message.template_id,
                "template_name": node.message.template_name,
            })
            if node.timeout is not None:
                self.repo.schedule(enrollment, NODE_TIMEOUT, now + node.timeout.to_timedelta())
            return None

        if isinstance(node, GoalNode):
            return await self._enter_goal(enrollment, node, now)

        logger.warning(f"Unknown node kind on {node.id}, dropping enrollment {enrollment.id}")
        await self._finish(enrollment, DROPPED, "unknown_node", now)
        return None

    def _enter_delay(self, enrollment, node: DelayNode, now: datetime):
        delay = node.delay
        if isinstance(delay, DurationDelay):
            self.repo.schedule(enrollment, DELAY_ELAPSED, now + delay.duration.to_timedelta())
            return None
        if isinstance(delay, UntilDelay):
            if delay.until <= now:
                return None, False
            self.repo.schedule(enrollment, DELAY_ELAPSED, delay.until)
            return None
        if isinstance(delay, EventDelay):
            enrollment.waiting_for_event = delay.event_name
            if delay.timeout is not None:
                self.repo.schedule(
                    enrollment, EVENT_TIMEOUT, now + delay.timeout.to_timedelta(),
                    {"label": delay.timeout_label},
                )
            return None
        return None, False

    async def _enter_goal(self, enrollment, node: GoalNode, now: datetime):
        goal = node.goal
        if goal.goal_type == GoalType.JOURNEY_COMPLETION:
            result = AttributionResult(
                counted=True, reason="journey_completion",
                should_exit=goal.exit_after_goal, mark_completed=goal.mark_as_completed,
            )
            self._record_conversion(enrollment, node, result, now, None)
            if result.should_exit:
                await self._finish(enrollment, EXITED, "goal_achieved", now)
                return None
            return node.converted_label, False

        if self._conversions_for(enrollment, node.id) > 0:
            if goal.exit_after_goal:
                await self._finish(enrollment, EXITED, "goal_achieved", now)
                return None
            return node.converted_label, False

        self.repo.schedule(enrollment, GOAL_WINDOW, now + goal.attribution_window.to_timedelta())
        return None

    async def _evaluate_condition(self, node: ConditionNode, customer: CustomerSnapshot, now: datetime) -> bool:
        ctx = await self.segments.build_context(customer, now, node.target)
        if node.conditions is not None and not matches_group(customer, node.conditions, ctx):
            return False
        if node.target is not None and not match_target(node.target, customer, ctx):
            return False
        return True

    # Exit paths

    async def _apply_resolution(self, enrollment, graph, node, resolution: Resolution, now, source: str) -> str:
        if resolution.tracking_event:
            self.repo.append_action(enrollment, "tracking", now, node.id, {
                "event_name": resolution.tracking_event,
                "properties": resolution.tracking_properties,
                "source": source,
            })
        if resolution.transitions and resolution.profile_updates:
            self.repo.append_action(enrollment, "profile_update", now, node.id, resolution.profile_updates)

        kind = resolution.kind
        if kind == ResolutionKind.NONE:
            return "no_exit_path"
        if kind == ResolutionKind.CONTINUE:
            await self._follow(enrollment, graph, now)
        elif kind == ResolutionKind.BRANCH:
            if not resolution.branch_id:
                await self._finish(enrollment, EXITED, "no_path:branch", now)
            else:
                await self._follow(enrollment, graph, now, label=resolution.branch_id, strict=True)
        elif kind == ResolutionKind.EXIT:
            await self._finish(enrollment, EXITED, f"exit_path:{source}", now)
        elif kind == ResolutionKind.WAIT:
            await self.repo.cancel_pending(enrollment.id, now)
            self.repo.schedule(
                enrollment, EXIT_PATH_WAIT,
                now + timedelta(minutes=resolution.wait_minutes or 0),
                {"timeout_path": resolution.timeout_path},
            )
        return kind.value

    async def advance(self, enrollment_id: str, event: DeliveryEvent) -> AdvanceResult:
        """Apply a delivery/interaction event to the enrollment's current action node."""
        async with self.locks.hold(enrollment_id):
            enrollment = await self.repo.get_enrollment(enrollment_id)
            if enrollment is None:
                logger.warning(f"Delivery event for unknown enrollment {enrollment_id} ignored")
                return AdvanceResult(False, "unknown_enrollment")
            if enrollment.status != ACTIVE:
                logger.info(f"Delivery event for {enrollment.status} enrollment {enrollment_id} ignored")
                return AdvanceResult(False, "not_active", enrollment)
            if event.node_id and event.node_id != enrollment.current_node_id:
                logger.info(
                    f"Stale {event.event_type.value} event for node {event.node_id} on enrollment "
                    f"{enrollment_id} (now at {enrollment.current_node_id})"
                )
                return AdvanceResult(False, "stale_node", enrollment)

            _, graph = await self._load_journey(enrollment.journey_id)
            node = graph.node(enrollment.current_node_id)
            if not isinstance(node, ActionNode):
                return AdvanceResult(False, "not_waiting_for_delivery", enrollment)

            now = self.clock.now()
            occurred_at = event.timestamp or now
            event_id = event.event_id or f"{event.event_type.value}:{event.button_id or ''}:{occurred_at.isoformat()}"
            key = idempotency_key(enrollment.id, node.id, event_id)
            if await self.repo.is_processed(key):
                logger.info(f"Duplicate event {key} ignored")
                return AdvanceResult(False, "duplicate", enrollment)
            self.repo.mark_processed(key, enrollment.id, now)

            action_type = MESSAGE_SENT if event.event_type == DeliveryEventType.SENT else "delivery_event"
            self.repo.append_action(enrollment, action_type, occurred_at, node.id, {
                "event_type": event.event_type.value,
                "button_id": event.button_id,
            })

            resolution = resolve_exit_path(node.exit_paths, event.event_type, event.button_id)
            reason = await self._apply_resolution(enrollment, graph, node, resolution, now, event.event_type.value)
            return await self._commit(AdvanceResult(resolution.transitions, reason, enrollment))

    async def _commit(self, result: AdvanceResult) -> AdvanceResult:
        try:
            await self.db.commit()
        except (StaleDataError, IntegrityError) as e:
            # Another worker applied a transition first
            await self.db.rollback()
            logger.info(f"Concurrent transition lost ({type(e).__name__}), dropping as no-op")
            return AdvanceResult(False, "concurrent_update")
        return result

    # Timers

    def _timer_applies(self, enrollment: Optional[JourneyEnrollment], transition: PendingTransition) -> bool:
        if enrollment is None or enrollment.status != ACTIVE:
            return False
        if enrollment.current_node_id != transition.node_id:
            return False
        entry = enrollment.current_entry
        return entry is not None and entry.seq == transition.history_seq

    async def process_due_transitions(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> dict:
        """
        Fire every pending transition due at ``now``.

        This should be called periodically (see app.tasks.transition_scheduler).

        Returns:
            Summary of fired, skipped and failed transitions
        """
        now = now or self.clock.now()
        due = await self.repo.due_transitions(now, limit or settings.TRANSITION_BATCH_SIZE)
        fired = 0
        skipped = 0
        errors = []

        for transition_id, enrollment_id in due:
            try:
                async with self.locks.hold(enrollment_id):
                    applied = await self._fire(transition_id, now)
            except Exception as e:
                await self.db.rollback()
                logger.exception(f"Transition {transition_id} failed")
                errors.append({"transition_id": transition_id, "enrollment_id": enrollment_id, "error": str(e)})
                continue
            if applied:
                fired += 1
            else:
                skipped += 1

        if due:
            logger.info(f"Processed {len(due)} due transitions: {fired} fired, {skipped} skipped, {len(errors)} failed")
        return {"processed": fired, "skipped": skipped, "errors": errors, "total_due": len(due)}

    async def _fire(self, transition_id: str, now: datetime) -> bool:
        transition = await self.repo.get_transition(transition_id)
        if transition is None or transition.status != "pending":
            return False

        enrollment = await self.repo.get_enrollment(transition.enrollment_id)
        if not self._timer_applies(enrollment, transition):
            transition.status = "skipped"
            transition.resolved_at = now
            await self.db.commit()
            logger.info(f"Skipped stale {transition.kind} timer {transition.id}")
            return False

        key = idempotency_key(enrollment.id, transition.node_id, f"timer:{transition.id}")
        if await self.repo.is_processed(key):
            transition.status = "skipped"
            transition.resolved_at = now
            await self.db.commit()
            return False
        self.repo.mark_processed(key, enrollment.id, now)
        transition.status = "fired"
        transition.resolved_at = now

        _, graph = await self._load_journey(enrollment.journey_id)
        node = graph.node(transition.node_id)
        await self._resume_from_timer(enrollment, graph, node, transition, now)
        result = await self._commit(AdvanceResult(True, transition.kind, enrollment))
        return result.applied

    async def _resume_from_timer(self, enrollment, graph, node, transition: PendingTransition, now: datetime) -> None:
        kind = transition.kind
        payload = transition.payload or {}

        if kind == DELAY_ELAPSED:
            await self._follow(enrollment, graph, now)
        elif kind == EVENT_TIMEOUT:
            self.repo.append_action(enrollment, "event_wait_timed_out", now, node.id if node else None)
            await self._follow(enrollment, graph, now, label=payload.get("label") or "timeout")
        elif kind == NODE_TIMEOUT:
            resolution = Resolution(kind=ResolutionKind.CONTINUE)
            if isinstance(node, ActionNode):
                configured = resolve_exit_path(node.exit_paths, DeliveryEventType.TIMEOUT)
                if configured.transitions:
                    resolution = configured
            await self._apply_resolution(enrollment, graph, node, resolution, now, DeliveryEventType.TIMEOUT.value)
        elif kind == EXIT_PATH_WAIT:
            await self._follow(enrollment, graph, now, label=payload.get("timeout_path") or None)
        elif kind == GOAL_WINDOW:
            self.repo.append_action(enrollment, "goal_window_closed", now, transition.node_id)
            label = node.not_converted_label if isinstance(node, GoalNode) else None
            await self._follow(enrollment, graph, now, label=label)
        else:
            logger.warning(f"Unknown pending transition kind {kind} on {transition.id}")

    # Customer events and goals

    def _touches(self, enrollment: JourneyEnrollment) -> list[Touch]:
        first_node = enrollment.history[0].node_id if enrollment.history else None
        touches = [Touch(at=enrollment.entered_at, node_id=first_node, kind="journey_started")]
        touches.extend(
            Touch(at=action.occurred_at, node_id=action.node_id)
            for action in enrollment.actions
            if action.action_type == MESSAGE_SENT
        )
        return touches

    def _conversions_for(self, enrollment: JourneyEnrollment, goal_node_id: str) -> int:
        return sum(
            1 for action in enrollment.actions
            if action.action_type == GOAL_CONVERTED and action.node_id == goal_node_id
        )

    def _record_conversion(
        self,
        enrollment: JourneyEnrollment,
        node: GoalNode,
        result: AttributionResult,
        now: datetime,
        event: Optional[EventOccurrence],
    ) -> None:
        enrollment.conversions_count = (enrollment.conversions_count or 0) + 1
        enrollment.goal_achieved = True
        if result.mark_completed:
            enrollment.marked_completed = True
        meta = result.to_metadata()
        if event is not None:
            meta.update(event_name=event.event_name, occurred_at=event.occurred_at.isoformat())
        self.repo.append_action(enrollment, GOAL_CONVERTED, now, node.id, meta)
        logger.info(f"Enrollment {enrollment.id} converted on goal {node.id}")

    async def handle_customer_event(self, event: ConversionEvent, evaluate_triggers: bool = True) -> ConversionOutcome:
        """
        Record a customer event and apply it to the customer's active enrollments.

        The event can count toward goals, resume wait-for-event delays and,
        with ``evaluate_triggers``, enroll the customer in journeys it now
        qualifies for.
        """
        now = self.clock.now()
        occurrence = EventOccurrence(
            customer_id=event.customer_id,
            event_name=event.event_name,
            properties=event.properties,
            occurred_at=event.timestamp or now,
        )
        await self.provider.record_event(occurrence)
        await self.db.commit()

        event_id = event.event_id or f"{event.event_name}:{occurrence.occurred_at.isoformat()}"
        active = await self.repo.active_enrollments_for_customer(event.customer_id)
        outcome = ConversionOutcome(enrollments_checked=len(active))

        for enrollment_id in [enrollment.id for enrollment in active]:
            async with self.locks.hold(enrollment_id):
                conversions, resumed = await self._apply_customer_event(enrollment_id, occurrence, event_id, now)
            outcome.conversions += conversions
            outcome.resumed += resumed

        outcome.enrolled = await self.match_triggers(event.customer_id) if evaluate_triggers else []
        return outcome

    async def _apply_customer_event(
        self, enrollment_id: str, occurrence: EventOccurrence, event_id: str, now: datetime
    ) -> tuple[int, int]:
        enrollment = await self.repo.get_enrollment(enrollment_id)
        if enrollment is None or enrollment.status != ACTIVE:
            return 0, 0

        _, graph = await self._load_journey(enrollment.journey_id)
        current = graph.node(enrollment.current_node_id)
        key = idempotency_key(enrollment.id, enrollment.current_node_id, event_id)
        if await self.repo.is_processed(key):
            logger.info(f"Duplicate customer event {key} ignored")
            return 0, 0

        conversions = 0
        resumed = 0
        touches = self._touches(enrollment)
        # Goals further down the path are credited now but route only when reached
        ahead = graph.reachable_from(current.id) - {current.id} if current is not None else set()
        for goal_node in graph.goal_nodes():
            if not event_matches_goal(goal_node.goal, occurrence):
                continue
            result = attribute_conversion(
                goal_node.goal, occurrence, touches, self._conversions_for(enrollment, goal_node.id)
            )
            if not result.counted:
                logger.debug(f"Event {occurrence.event_name} not counted for goal {goal_node.id}: {result.reason}")
                continue
            conversions += 1
            self._record_conversion(enrollment, goal_node, result, now, occurrence)
            if result.should_exit and goal_node.id not in ahead:
                await self._finish(enrollment, EXITED, "goal_achieved", now)
                break
            if current is not None and current.id == goal_node.id:
                resumed += 1
                await self._follow(enrollment, graph, now, label=goal_node.converted_label)
                break

        if (
            enrollment.status == ACTIVE
            and isinstance(current, DelayNode)
            and isinstance(current.delay, EventDelay)
            and enrollment.current_node_id == current.id
            and current.delay.event_name.casefold() == occurrence.event_name.casefold()
        ):
            resumed += 1
            self.repo.append_action(enrollment, "event_received", now, current.id, {
                "event_name": occurrence.event_name,
            })
            await self._follow(enrollment, graph, now)

        if not conversions and not resumed:
            return 0, 0

        self.repo.mark_processed(key, enrollment.id, now)
        result = await self._commit(AdvanceResult(True, "customer_event", enrollment))
        if not result.applied:
            return 0, 0
        return conversions, resumed
