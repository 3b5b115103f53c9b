"""
Journey validation.

Collects every problem in a definition instead of stopping at the first
one, so the editor can show them together. Errors block activation;
warnings do not.
"""

from collections import Counter
from typing import Iterable, Optional

from app.schemas.journey import (
    ActionNode,
    BranchAction,
    ConditionNode,
    DelayNode,
    DurationDelay,
    EventDelay,
    GoalNode,
    GoalType,
    IssueSeverity,
    JourneyDefinition,
    TriggerNode,
    ValidationIssue,
    ValidationReport,
)
from app.schemas.segment import (
    RuleGroup,
    TargetSegment,
    TimeFramePeriod,
    TriggerConfig,
    UserBehaviorRule,
)
from app.services.journeys.exit_path_resolver import validate_exit_paths
from app.services.journeys.graph import JourneyGraph


def _issue(code: str, message: str, node_id: Optional[str] = None, rule_id: Optional[str] = None,
           severity: IssueSeverity = IssueSeverity.ERROR) -> ValidationIssue:
    return ValidationIssue(code=code, message=message, node_id=node_id, rule_id=rule_id, severity=severity)


def validate_rules(rules: Iterable, node_id: Optional[str] = None) -> list[ValidationIssue]:
    issues = []
    for rule in rules:
        if not isinstance(rule, UserBehaviorRule):
            continue
        if not (rule.event_name or "").strip():
            issues.append(_issue("missing-event-name", "Behavior rule needs an event name",
                                 node_id, rule.id))
        if rule.time_frame.period == TimeFramePeriod.CUSTOM and rule.time_frame.days is None:
            issues.append(_issue("invalid-time-frame", "Custom time frame needs a positive number of days",
                                 node_id, rule.id))
    return issues


def validate_target(target: TargetSegment, node_id: Optional[str] = None) -> list[ValidationIssue]:
    issues = validate_rules(target.rules, node_id)
    for group in target.rule_groups:
        issues.extend(_validate_group(group, node_id))
    if target.type == "existing_segment" and not target.segment_id:
        issues.append(_issue("missing-segment-id", "Existing segment target needs a segment id", node_id))
    return issues


def _validate_group(group: RuleGroup, node_id: Optional[str]) -> list[ValidationIssue]:
    issues = validate_rules(group.rules, node_id)
    if not group.rules:
        issues.append(_issue("empty-rule-group", "Rule group has no rules and always matches",
                             node_id, group.id, IssueSeverity.WARNING))
    return issues


def validate_trigger_config(config: TriggerConfig, node_id: Optional[str] = None) -> list[ValidationIssue]:
    return validate_target(config.target_segment, node_id)


def _validate_delay(node: DelayNode) -> list[ValidationIssue]:
    delay = node.delay
    if isinstance(delay, DurationDelay) and delay.duration.value <= 0:
        return [_issue("invalid-duration", "Delay needs a positive duration", node.id)]
    if isinstance(delay, EventDelay):
        issues = []
        if not delay.event_name.strip():
            issues.append(_issue("missing-event-name", "Wait-for-event delay needs an event name", node.id))
        if delay.timeout is not None and delay.timeout.value <= 0:
            issues.append(_issue("invalid-duration", "Event timeout must be positive", node.id))
        return issues
    return []


def _validate_action(node: ActionNode, graph: JourneyGraph) -> list[ValidationIssue]:
    issues = []
    if not (node.message.template_id or node.message.template_name):
        issues.append(_issue("missing-template", "Message action needs a template", node.id))
    if node.timeout is not None and node.timeout.value <= 0:
        issues.append(_issue("invalid-duration", "Action timeout must be positive", node.id))
    issues.extend(validate_exit_paths(node.exit_paths, node.id))

    paths = [node.exit_paths.sent, node.exit_paths.delivered, node.exit_paths.read,
             node.exit_paths.replied, node.exit_paths.failed, node.exit_paths.unreachable,
             node.exit_paths.timeout, *node.exit_paths.button_clicked]
    for path in paths:
        if path is None or not path.enabled or not isinstance(path.action, BranchAction):
            continue
        branch_id = path.action.branch_id
        if branch_id and graph.labeled_edge(node.id, branch_id) is None:
            issues.append(_issue("missing-branch-edge", f"No edge labelled '{branch_id}' leaves this node",
                                 node.id, severity=IssueSeverity.WARNING))
    return issues


def _validate_condition(node: ConditionNode, graph: JourneyGraph) -> list[ValidationIssue]:
    issues = []
    has_conditions = node.conditions is not None and (node.conditions.conditions or node.conditions.nested_groups)
    has_rules = node.target is not None and (node.target.rules or node.target.rule_groups
                                             or node.target.type == "existing_segment")
    if not has_conditions and not has_rules:
        issues.append(_issue("empty-condition", "Condition has no rules and always takes the true branch",
                             node.id, severity=IssueSeverity.WARNING))
    if node.target is not None:
        issues.extend(validate_target(node.target, node.id))
    for label in (node.true_label, node.false_label):
        if graph.labeled_edge(node.id, label) is None:
            issues.append(_issue("missing-branch-edge", f"No edge labelled '{label}' leaves this condition",
                                 node.id, severity=IssueSeverity.WARNING))
    return issues


def _validate_goal(node: GoalNode) -> list[ValidationIssue]:
    goal = node.goal
    issues = []
    if goal.attribution_window.value <= 0:
        issues.append(_issue("invalid-attribution-window", "Attribution window must be positive", node.id))
    if goal.goal_type == GoalType.CUSTOM_EVENT and not goal.event_name:
        issues.append(_issue("missing-event-name", "Custom event goal needs an event name", node.id))
    if goal.goal_type == GoalType.SEGMENT_ENTRY and not goal.segment_id:
        issues.append(_issue("missing-segment-id", "Segment entry goal needs a segment id", node.id))
    return issues


def validate_journey(definition: JourneyDefinition) -> ValidationReport:
    graph = JourneyGraph(definition)
    issues: list[ValidationIssue] = []

    duplicates = [node_id for node_id, count in Counter(n.id for n in definition.nodes).items() if count > 1]
    for node_id in duplicates:
        issues.append(_issue("duplicate-node-id", f"Node id '{node_id}' is used more than once", node_id))

    triggers = [node for node in definition.nodes if isinstance(node, TriggerNode)]
    if not triggers:
        issues.append(_issue("missing-trigger", "Journey needs a trigger node"))
    elif len(triggers) > 1:
        issues.append(_issue("multiple-triggers", "Only the first trigger node is used as the entry point",
                             triggers[1].id, severity=IssueSeverity.WARNING))

    for edge in definition.edges:
        for end in (edge.source, edge.target):
            if end not in graph.nodes:
                issues.append(_issue("dangling-edge", f"Edge {edge.id} references unknown node '{end}'"))

    if triggers:
        reachable = graph.reachable_from(triggers[0].id)
        for node in definition.nodes:
            if node.id not in reachable and not isinstance(node, TriggerNode):
                issues.append(_issue("unreachable-node", "Node cannot be reached from the trigger",
                                     node.id, severity=IssueSeverity.WARNING))

    for node in definition.nodes:
        if isinstance(node, TriggerNode) and node.trigger is not None:
            issues.extend(validate_trigger_config(node.trigger, node.id))
        elif isinstance(node, DelayNode):
            issues.extend(_validate_delay(node))
        elif isinstance(node, ActionNode):
            issues.extend(_validate_action(node, graph))
        elif isinstance(node, ConditionNode):
            issues.extend(_validate_condition(node, graph))
        elif isinstance(node, GoalNode):
            issues.extend(_validate_goal(node))

    cooldown = definition.settings.entry.cooldown
    if cooldown is not None and cooldown.value <= 0:
        issues.append(_issue("invalid-cooldown", "Re-entry cooldown must be positive"))

    valid = not any(issue.severity == IssueSeverity.ERROR for issue in issues)
    return ValidationReport(valid=valid, issues=issues)
