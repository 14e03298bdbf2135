"""Typed contracts for derived session views."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class RelationshipEdge:
    neighbor_id: str
    neighbor_kind: str
    relationship: str
    confidence: float
    link_id: str


@dataclass(frozen=True)
class RelationshipIndex:
    forward: dict[str, frozenset[RelationshipEdge]]
    reverse: dict[str, frozenset[RelationshipEdge]]
    node_kinds: dict[str, str]

    def forward_edges(self, node_id: str) -> frozenset[RelationshipEdge]:
        return self.forward.get(node_id, frozenset())

    def reverse_edges(self, node_id: str) -> frozenset[RelationshipEdge]:
        return self.reverse.get(node_id, frozenset())

    def neighbors(self, node_id: str) -> set[str]:
        return {
            edge.neighbor_id
            for edge in self.forward_edges(node_id) | self.reverse_edges(node_id)
        }

    def has_edges(self, node_id: str) -> bool:
        return bool(self.forward.get(node_id) or self.reverse.get(node_id))


@dataclass(frozen=True)
class PathResult:
    trigger: str
    nodes: tuple[str, ...]
    links: tuple[str, ...]


@dataclass(frozen=True)
class HiddenCounts:
    symptoms: int = 0
    diagnoses: int = 0
    treatments: int = 0

    @property
    def total(self) -> int:
        return self.symptoms + self.diagnoses + self.treatments


@dataclass(frozen=True)
class SankeyNode:
    id: str
    name: str
    type: str
    column: int
    priority: float
    confidence: float
    value: float
    data: dict[str, Any]
    probability: float | None = None
    source: str | None = None
    sort_index: int = 0


@dataclass(frozen=True)
class SankeyLink:
    source: str
    target: str
    value: float
    type: str
    strength: float
    direction: str
    reasoning: str | None = None

    @property
    def id(self) -> str:
        return f"{self.source}-{self.target}"


@dataclass(frozen=True)
class SankeyView:
    nodes: tuple[SankeyNode, ...]
    links: tuple[SankeyLink, ...]
    metadata: dict[str, Any] = field(default_factory=dict)

    def count(self, node_type: str) -> int:
        return sum(1 for node in self.nodes if node.type == node_type)


@dataclass(frozen=True)
class FilterResult:
    visible: SankeyView
    hidden_counts: HiddenCounts


@dataclass(frozen=True)
class ScoredAction:
    action_id: str
    score: float
    urgency_score: float
    relevance_score: float
    priority_score: float
    position: int
