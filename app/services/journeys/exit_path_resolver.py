"""
Exit Path Resolver

Maps a delivery/interaction event on an action node to what the
enrollment does next, using the node's exit path configuration.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from app.schemas.journey import (
    BranchAction,
    DeliveryEventType,
    ExitAction,
    ExitPath,
    ExitPathsConfig,
    IssueSeverity,
    ValidationIssue,
    WaitAction,
)


class ResolutionKind(str, Enum):
    NONE = "none"
    CONTINUE = "continue"
    BRANCH = "branch"
    EXIT = "exit"
    WAIT = "wait"


@dataclass(frozen=True)
class Resolution:
    kind: ResolutionKind
    branch_id: Optional[str] = None
    wait_minutes: Optional[int] = None
    timeout_path: Optional[str] = None
    tracking_event: Optional[str] = None
    tracking_properties: dict[str, Any] = field(default_factory=dict)
    profile_updates: dict[str, Any] = field(default_factory=dict)

    @property
    def transitions(self) -> bool:
        return self.kind != ResolutionKind.NONE


NO_TRANSITION = Resolution(kind=ResolutionKind.NONE)


def find_exit_path(
    config: ExitPathsConfig,
    event_type: DeliveryEventType,
    button_id: Optional[str] = None,
) -> Optional[ExitPath]:
    """Configured path for the event; button clicks are matched on ``button_id``."""
    if event_type == DeliveryEventType.BUTTON_CLICKED:
        if not button_id:
            return None
        for path in config.button_clicked:
            if path.button_config and path.button_config.button_id == button_id:
                return path
        return None
    return getattr(config, event_type.value, None)


def resolve_exit_path(
    config: ExitPathsConfig,
    event_type: DeliveryEventType,
    button_id: Optional[str] = None,
) -> Resolution:
    """
    Resolve the next step for an incoming event.

    A missing or disabled path yields NO_TRANSITION: the enrollment stays
    on the node waiting for another event or the node's own timeout.
    """
    path = find_exit_path(config, event_type, button_id)
    if path is None or not path.enabled:
        return NO_TRANSITION

    tracking_event = None
    tracking_properties: dict[str, Any] = {}
    if path.tracking.enabled and path.tracking.event_name:
        tracking_event = path.tracking.event_name
        tracking_properties = dict(path.tracking.event_properties)

    action = path.action
    common = {
        "tracking_event": tracking_event,
        "tracking_properties": tracking_properties,
        "profile_updates": dict(path.profile_updates),
    }
    if isinstance(action, BranchAction):
        return Resolution(kind=ResolutionKind.BRANCH, branch_id=action.branch_id, **common)
    if isinstance(action, ExitAction):
        return Resolution(kind=ResolutionKind.EXIT, **common)
    if isinstance(action, WaitAction):
        return Resolution(
            kind=ResolutionKind.WAIT,
            wait_minutes=action.wait_duration,
            timeout_path=action.timeout_path,
            **common,
        )
    return Resolution(kind=ResolutionKind.CONTINUE, **common)


def _configured_paths(config: ExitPathsConfig):
    for event_type in DeliveryEventType:
        if event_type == DeliveryEventType.BUTTON_CLICKED:
            for path in config.button_clicked:
                yield event_type, path
            continue
        path = getattr(config, event_type.value, None)
        if path is not None:
            yield event_type, path


def validate_exit_paths(config: ExitPathsConfig, node_id: Optional[str] = None) -> list[ValidationIssue]:
    """Report malformed enabled paths; disabled ones are ignored."""
    issues = []
    for event_type, path in _configured_paths(config):
        if not path.enabled:
            continue
        action = path.action
        if isinstance(action, BranchAction) and not (action.branch_id or "").strip():
            issues.append(ValidationIssue(
                code="missing-branch-id",
                message=f"Branch action on '{event_type.value}' needs a branch id",
                node_id=node_id,
            ))
        if isinstance(action, WaitAction) and action.wait_duration <= 0:
            issues.append(ValidationIssue(
                code="invalid-wait-duration",
                message=f"Wait action on '{event_type.value}' needs a positive duration",
                node_id=node_id,
            ))
        if event_type == DeliveryEventType.BUTTON_CLICKED and path.button_config is None:
            issues.append(ValidationIssue(
                code="missing-button-id",
                severity=IssueSeverity.WARNING,
                message="Button click path without a button id never matches",
                node_id=node_id,
            ))
        if path.tracking.enabled and not path.tracking.event_name:
            issues.append(ValidationIssue(
                code="missing-tracking-event",
                severity=IssueSeverity.WARNING,
                message=f"Tracking on '{event_type.value}' is enabled without an event name",
                node_id=node_id,
            ))
    return issues
