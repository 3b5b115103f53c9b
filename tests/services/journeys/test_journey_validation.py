"""
Tests for journey definition validation.
"""

from app.schemas.journey import IssueSeverity
from app.schemas.segment import TriggerConfig
from app.services.journeys.validation import validate_journey, validate_trigger_config
from tests.factories.journey import (
    action_node,
    condition_node,
    definition,
    delay_node,
    edge,
    exit_node,
    goal_node,
    trigger_node,
    welcome_definition,
)


def codes(report, severity=None):
    return {issue.code for issue in report.issues if severity is None or issue.severity == severity}


class TestValidateJourney:
    """Tests for whole-definition validation."""

    def test_welcome_journey_is_valid(self):
        report = validate_journey(welcome_definition())
        assert report.valid
        assert report.issues == []

    def test_missing_trigger(self):
        report = validate_journey(definition([exit_node()], []))
        assert not report.valid
        assert "missing-trigger" in codes(report)

    def test_collects_every_error(self):
        report = validate_journey(definition(
            [
                trigger_node(),
                delay_node(value=0),
                action_node(message={"channel": "sms"}),
                goal_node(attribution_window={"value": -1, "unit": "days"}),
            ],
            [edge("trigger", "delay"), edge("delay", "message"), edge("message", "goal"), edge("goal", "ghost")],
        ))
        assert not report.valid
        assert {"invalid-duration", "missing-template", "invalid-attribution-window", "dangling-edge"} <= codes(
            report, IssueSeverity.ERROR
        )

    def test_warnings_do_not_block(self):
        report = validate_journey(definition(
            [trigger_node(), condition_node(), exit_node(), exit_node("orphan")],
            [edge("trigger", "check"), edge("check", "exit", "Yes")],
        ))
        assert report.valid
        assert {"empty-condition", "missing-branch-edge", "unreachable-node"} <= codes(report, IssueSeverity.WARNING)

    def test_duplicate_node_ids(self):
        report = validate_journey(definition(
            [trigger_node(), exit_node("end"), exit_node("end")],
            [edge("trigger", "end")],
        ))
        assert "duplicate-node-id" in codes(report)

    def test_event_delay_needs_name(self):
        report = validate_journey(definition(
            [trigger_node(), delay_node(mode="event", event_name=" "), exit_node()],
            [edge("trigger", "delay"), edge("delay", "exit")],
        ))
        assert "missing-event-name" in codes(report, IssueSeverity.ERROR)

    def test_invalid_cooldown(self):
        report = validate_journey(definition(
            [trigger_node(), exit_node()],
            [edge("trigger", "exit")],
            {"entry": {"allow_reentry": True, "cooldown": {"value": 0, "unit": "days"}}},
        ))
        assert "invalid-cooldown" in codes(report)


class TestValidateTriggerConfig:
    def test_behavior_rule_problems(self):
        config = TriggerConfig.model_validate({"target_segment": {
            "rules": [{"id": "r1", "rule_type": "user_behavior", "time_frame": {"period": "custom"}}],
            "rule_groups": [{"id": "g1", "operator": "OR", "rules": []}],
        }})
        issues = validate_trigger_config(config, "trigger")
        by_code = {issue.code: issue for issue in issues}
        assert by_code["missing-event-name"].rule_id == "r1"
        assert by_code["invalid-time-frame"].rule_id == "r1"
        assert by_code["empty-rule-group"].severity == IssueSeverity.WARNING

    def test_existing_segment_needs_id(self):
        config = TriggerConfig.model_validate({"target_segment": {"type": "existing_segment"}})
        assert [issue.code for issue in validate_trigger_config(config)] == ["missing-segment-id"]
