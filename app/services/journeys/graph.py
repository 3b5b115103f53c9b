"""
Adjacency index over a journey definition.

Nodes and edges stay flat lists keyed by id; this index is rebuilt from the
definition whenever a journey is loaded.
"""

from collections import defaultdict, deque
from typing import Optional

from app.schemas.journey import GoalNode, JourneyDefinition, JourneyEdge, TriggerNode


class JourneyGraph:
    def __init__(self, definition: JourneyDefinition):
        self.definition = definition
        self.nodes = {node.id: node for node in definition.nodes}
        self._outgoing: dict[str, list[JourneyEdge]] = defaultdict(list)
        for edge in definition.edges:
            self._outgoing[edge.source].append(edge)

    def node(self, node_id: Optional[str]):
        if node_id is None:
            return None
        return self.nodes.get(node_id)

    def entry_node(self) -> Optional[TriggerNode]:
        for node in self.definition.nodes:
            if isinstance(node, TriggerNode):
                return node
        return None

    def outgoing(self, node_id: str) -> list[JourneyEdge]:
        return list(self._outgoing.get(node_id, ()))

    def default_edge(self, node_id: str) -> Optional[JourneyEdge]:
        """First unlabelled edge, else the first edge at all."""
        edges = self._outgoing.get(node_id, ())
        for edge in edges:
            if not edge.label:
                return edge
        return edges[0] if edges else None

    def labeled_edge(self, node_id: str, label: str) -> Optional[JourneyEdge]:
        wanted = label.strip().casefold()
        for edge in self._outgoing.get(node_id, ()):
            if edge.label and edge.label.strip().casefold() == wanted:
                return edge
        return None

    def goal_nodes(self) -> list[GoalNode]:
        return [node for node in self.definition.nodes if isinstance(node, GoalNode)]

    def reachable_from(self, node_id: str) -> set[str]:
        seen = {node_id}
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            for edge in self._outgoing.get(current, ()):
                if edge.target not in seen:
                    seen.add(edge.target)
                    queue.append(edge.target)
        return seen
