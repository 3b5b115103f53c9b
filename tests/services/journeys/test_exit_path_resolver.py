"""
Tests for the Exit Path Resolver.
"""

from app.schemas.journey import DeliveryEventType, ExitPathsConfig
from app.services.journeys.exit_path_resolver import (
    NO_TRANSITION,
    ResolutionKind,
    resolve_exit_path,
    validate_exit_paths,
)


def paths(**config) -> ExitPathsConfig:
    return ExitPathsConfig.model_validate(config)


class TestResolveExitPath:
    """Tests for mapping events to resolutions."""

    def test_disabled_path_then_enabled_continue(self):
        config = paths(
            delivered={"enabled": False, "action": {"type": "continue"}},
            read={"enabled": True, "action": {"type": "continue"}},
        )
        assert resolve_exit_path(config, DeliveryEventType.DELIVERED) == NO_TRANSITION
        assert resolve_exit_path(config, DeliveryEventType.READ).kind == ResolutionKind.CONTINUE

    def test_unconfigured_event_does_not_transition(self):
        assert not resolve_exit_path(paths(), DeliveryEventType.FAILED).transitions

    def test_branch_and_exit(self):
        config = paths(
            replied={"enabled": True, "action": {"type": "branch", "branch_id": "engaged"}},
            failed={"enabled": True, "action": {"type": "exit"}},
        )
        branch = resolve_exit_path(config, DeliveryEventType.REPLIED)
        assert (branch.kind, branch.branch_id) == (ResolutionKind.BRANCH, "engaged")
        assert resolve_exit_path(config, DeliveryEventType.FAILED).kind == ResolutionKind.EXIT

    def test_wait_carries_duration_and_timeout_path(self):
        config = paths(read={"enabled": True, "action": {
            "type": "wait", "wait_duration": 90, "timeout_path": "nudge",
        }})
        resolution = resolve_exit_path(config, DeliveryEventType.READ)
        assert resolution.kind == ResolutionKind.WAIT
        assert (resolution.wait_minutes, resolution.timeout_path) == (90, "nudge")

    def test_buttons_match_on_button_id(self):
        config = paths(button_clicked=[
            {"enabled": True, "action": {"type": "branch", "branch_id": "yes"},
             "button_config": {"button_id": "btn-yes"}},
            {"enabled": True, "action": {"type": "exit"}, "button_config": {"button_id": "btn-stop"}},
        ])
        assert resolve_exit_path(config, DeliveryEventType.BUTTON_CLICKED, "btn-yes").branch_id == "yes"
        assert resolve_exit_path(config, DeliveryEventType.BUTTON_CLICKED, "btn-stop").kind == ResolutionKind.EXIT
        assert resolve_exit_path(config, DeliveryEventType.BUTTON_CLICKED, "btn-other") == NO_TRANSITION
        assert resolve_exit_path(config, DeliveryEventType.BUTTON_CLICKED) == NO_TRANSITION

    def test_tracking_and_profile_updates(self):
        config = paths(read={
            "enabled": True,
            "tracking": {"enabled": True, "event_name": "welcome_read", "event_properties": {"step": 1}},
            "profile_updates": {"engaged": True},
        })
        resolution = resolve_exit_path(config, DeliveryEventType.READ)
        assert resolution.tracking_event == "welcome_read"
        assert resolution.tracking_properties == {"step": 1}
        assert resolution.profile_updates == {"engaged": True}

    def test_tracking_without_event_name_is_ignored(self):
        config = paths(read={"enabled": True, "tracking": {"enabled": True}})
        assert resolve_exit_path(config, DeliveryEventType.READ).tracking_event is None


class TestValidateExitPaths:
    def test_reports_malformed_enabled_paths(self):
        config = paths(
            replied={"enabled": True, "action": {"type": "branch"}},
            read={"enabled": True, "action": {"type": "wait", "wait_duration": 0}},
            button_clicked=[{"enabled": True}],
        )
        codes = {issue.code for issue in validate_exit_paths(config, "message")}
        assert codes == {"missing-branch-id", "invalid-wait-duration", "missing-button-id"}

    def test_disabled_paths_are_ignored(self):
        config = paths(replied={"enabled": False, "action": {"type": "branch"}})
        assert validate_exit_paths(config) == []
