"""
Journey Schemas

A journey is a graph of typed nodes joined by (optionally labelled) edges.
Every node kind, delay kind and exit-path action is its own model; the
``type``/``mode`` field selects the variant.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.customer import UtcDatetime
from app.schemas.segment import ConditionGroup, EventCondition, TargetSegment, TriggerConfig


class JourneyStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    EXITED = "EXITED"
    DROPPED = "DROPPED"


TERMINAL_STATUSES = frozenset(
    {EnrollmentStatus.COMPLETED, EnrollmentStatus.EXITED, EnrollmentStatus.DROPPED}
)


class TimeUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"


class Duration(BaseModel):
    value: int
    unit: TimeUnit = TimeUnit.DAYS

    def to_timedelta(self) -> timedelta:
        return timedelta(**{self.unit.value: self.value})


# Delay variants


class DurationDelay(BaseModel):
    mode: Literal["duration"] = "duration"
    duration: Duration


class UntilDelay(BaseModel):
    mode: Literal["until"] = "until"
    until: UtcDatetime


class EventDelay(BaseModel):
    """Wait for a customer event, optionally giving up after ``timeout``."""

    mode: Literal["event"] = "event"
    event_name: str
    timeout: Optional[Duration] = None
    timeout_label: str = "timeout"


DelaySpec = Annotated[
    Union[DurationDelay, UntilDelay, EventDelay],
    Field(discriminator="mode"),
]


# Exit paths


class ContinueAction(BaseModel):
    type: Literal["continue"] = "continue"


class BranchAction(BaseModel):
    type: Literal["branch"] = "branch"
    branch_id: Optional[str] = None


class ExitAction(BaseModel):
    type: Literal["exit"] = "exit"


class WaitAction(BaseModel):
    type: Literal["wait"] = "wait"
    wait_duration: int = Field(0, description="Minutes")
    timeout_path: Optional[str] = None


ExitPathAction = Annotated[
    Union[ContinueAction, BranchAction, ExitAction, WaitAction],
    Field(discriminator="type"),
]


class PathTracking(BaseModel):
    enabled: bool = False
    event_name: Optional[str] = None
    event_properties: dict[str, Any] = Field(default_factory=dict)


class ButtonConfig(BaseModel):
    button_id: str
    button_text: Optional[str] = None


class ExitPath(BaseModel):
    enabled: bool = False
    action: ExitPathAction = Field(default_factory=ContinueAction)
    tracking: PathTracking = Field(default_factory=PathTracking)
    profile_updates: dict[str, Any] = Field(default_factory=dict)
    button_config: Optional[ButtonConfig] = None


class ExitPathsConfig(BaseModel):
    sent: Optional[ExitPath] = None
    delivered: Optional[ExitPath] = None
    read: Optional[ExitPath] = None
    replied: Optional[ExitPath] = None
    button_clicked: list[ExitPath] = Field(default_factory=list)
    failed: Optional[ExitPath] = None
    unreachable: Optional[ExitPath] = None
    timeout: Optional[ExitPath] = None


# Goals


class GoalType(str, Enum):
    JOURNEY_COMPLETION = "journey_completion"
    SHOPIFY_EVENT = "shopify_event"
    CUSTOM_EVENT = "custom_event"
    WHATSAPP_ENGAGEMENT = "whatsapp_engagement"
    SEGMENT_ENTRY = "segment_entry"


class AttributionModel(str, Enum):
    FIRST_TOUCH = "first_touch"
    LAST_TOUCH = "last_touch"
    LINEAR = "linear"


class GoalConfig(BaseModel):
    goal_type: GoalType = GoalType.CUSTOM_EVENT
    event_name: Optional[str] = None
    segment_id: Optional[str] = None
    attribution_window: Duration = Field(default_factory=lambda: Duration(value=7, unit=TimeUnit.DAYS))
    attribution_model: AttributionModel = AttributionModel.LAST_TOUCH
    count_multiple_conversions: bool = False
    exit_after_goal: bool = False
    mark_as_completed: bool = False
    event_filters: list[EventCondition] = Field(default_factory=list)


# Nodes


class NodeBase(BaseModel):
    id: str
    name: Optional[str] = None
    position: Optional[dict[str, float]] = None


class TriggerNode(NodeBase):
    type: Literal["trigger"] = "trigger"
    trigger: Optional[TriggerConfig] = None


class DelayNode(NodeBase):
    type: Literal["delay"] = "delay"
    delay: DelaySpec


class ConditionNode(NodeBase):
    type: Literal["condition"] = "condition"
    conditions: Optional[ConditionGroup] = None
    target: Optional[TargetSegment] = None
    true_label: str = "Yes"
    false_label: str = "No"


class MessageConfig(BaseModel):
    channel: Literal["whatsapp", "email", "sms"] = "whatsapp"
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    variables: dict[str, Any] = Field(default_factory=dict)


class ActionNode(NodeBase):
    type: Literal["action"] = "action"
    message: MessageConfig = Field(default_factory=MessageConfig)
    exit_paths: ExitPathsConfig = Field(default_factory=ExitPathsConfig)
    timeout: Optional[Duration] = None


class GoalNode(NodeBase):
    type: Literal["goal"] = "goal"
    goal: GoalConfig = Field(default_factory=GoalConfig)
    converted_label: str = "converted"
    not_converted_label: str = "not_converted"


class ExitNode(NodeBase):
    type: Literal["exit"] = "exit"
    reason: Optional[str] = None


JourneyNode = Annotated[
    Union[TriggerNode, DelayNode, ConditionNode, ActionNode, GoalNode, ExitNode],
    Field(discriminator="type"),
]


class JourneyEdge(BaseModel):
    id: str
    source: str
    target: str
    label: Optional[str] = None


class EntryFrequency(BaseModel):
    allow_reentry: bool = False
    cooldown: Optional[Duration] = None
    max_entries: Optional[int] = Field(None, ge=1)


class JourneySettings(BaseModel):
    entry: EntryFrequency = Field(default_factory=EntryFrequency)
    max_enrollments: Optional[int] = Field(None, ge=1)


class JourneyDefinition(BaseModel):
    nodes: list[JourneyNode] = Field(default_factory=list)
    edges: list[JourneyEdge] = Field(default_factory=list)
    settings: JourneySettings = Field(default_factory=JourneySettings)


# API payloads


class JourneyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    definition: JourneyDefinition = Field(default_factory=JourneyDefinition)


class JourneyResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    status: JourneyStatus
    definition: JourneyDefinition
    created_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class ValidationIssue(BaseModel):
    code: str
    severity: IssueSeverity = IssueSeverity.ERROR
    message: str
    node_id: Optional[str] = None
    rule_id: Optional[str] = None


class ValidationReport(BaseModel):
    valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)


class HistoryEntryResponse(BaseModel):
    seq: int
    node_id: str
    entered_at: datetime
    exited_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EnrollmentActionResponse(BaseModel):
    action_type: str
    node_id: Optional[str] = None
    occurred_at: datetime
    meta: Optional[dict[str, Any]] = Field(None, serialization_alias="metadata")

    model_config = ConfigDict(from_attributes=True)


class EnrollmentCreate(BaseModel):
    journey_id: str
    customer_id: str


class EnrollmentResponse(BaseModel):
    id: str
    journey_id: str
    customer_id: str
    status: EnrollmentStatus
    current_node_id: Optional[str] = None
    exit_reason: Optional[str] = None
    entered_at: datetime
    completed_at: Optional[datetime] = None
    goal_achieved: bool = False
    conversions_count: int = 0
    marked_completed: bool = False
    waiting_for_event: Optional[str] = None
    history: list[HistoryEntryResponse] = Field(default_factory=list)
    actions: list[EnrollmentActionResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


# Incoming events


class DeliveryEventType(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    REPLIED = "replied"
    BUTTON_CLICKED = "button_clicked"
    FAILED = "failed"
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"


class DeliveryEvent(BaseModel):
    """Delivery/interaction callback for a message sent from an action node."""

    node_id: Optional[str] = None
    event_type: DeliveryEventType
    button_id: Optional[str] = None
    timestamp: Optional[UtcDatetime] = None
    event_id: Optional[str] = None


class DeliveryWebhook(DeliveryEvent):
    enrollment_id: str


class ConversionEvent(BaseModel):
    customer_id: str
    event_name: str
    properties: dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[UtcDatetime] = None
    event_id: Optional[str] = None


class AdvanceResponse(BaseModel):
    applied: bool
    reason: str
    enrollment: Optional[EnrollmentResponse] = None


class ConversionResponse(BaseModel):
    enrollments_checked: int
    conversions: int
    resumed: int
    enrolled: list[str] = Field(default_factory=list)
