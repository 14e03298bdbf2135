"""In-memory graph model for one analysis session."""

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

import networkx as nx

from .schema import LinkDirection, NodeKind, NodeState, clamp_01, parse_direction

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Node:
    """A graph node. Records are immutable; updates go through replace()."""

    id: str
    kind: NodeKind
    name: str = ""
    payload: dict[str, Any] = field(default_factory=dict)

    layer: int = 0
    parent: str | None = None
    children: tuple[str, ...] = ()

    x: float = 0.0
    y: float = 0.0
    pinned: bool = False

    # Expert nodes only
    role: str | None = None
    category: str = ""
    state: NodeState | None = None
    progress: float | None = None
    start_time: float | None = None
    end_time: float | None = None
    duration: float | None = None
    cost: float | None = None
    token_usage: dict[str, int] | None = None
    output: Any = None
    error: str | None = None

    def __post_init__(self):
        if self.layer < 0:
            object.__setattr__(self, "layer", 0)
        if not isinstance(self.children, tuple):
            object.__setattr__(self, "children", tuple(self.children))

    @property
    def action_type(self) -> str | None:
        if self.kind != NodeKind.ACTION:
            return None
        return self.payload.get("actionType")


@dataclass(frozen=True)
class Link:
    """A directed relationship between two nodes."""

    id: str
    source: str
    target: str
    relationship: str = "related_to"
    direction: LinkDirection = LinkDirection.OUTGOING
    confidence: float = 1.0
    active: bool = True
    reasoning: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "direction", parse_direction(self.direction))
        object.__setattr__(self, "confidence", clamp_01(self.confidence, 1.0))


@dataclass
class GraphStats:
    """Node and link counts by kind and relationship."""

    nodes: int
    links: int
    node_kinds: dict[str, int]
    link_types: dict[str, int]

    def __str__(self) -> str:
        kinds = " ".join(f"{k}={v}" for k, v in sorted(self.node_kinds.items()))
        links = " ".join(f"{k}={v}" for k, v in sorted(self.link_types.items()))
        return f"{self.nodes} nodes ({kinds}), {self.links} links ({links})"


class GraphModel:
    """Container for one session's nodes and links.

    Upserts are last-write-wins. Nothing here computes positions; the
    layout engine owns those and writes them back with apply_positions().
    """

    def __init__(
        self,
        nodes: Iterable[Node] | None = None,
        links: Iterable[Link] | None = None,
    ):
        self._nodes: dict[str, Node] = {}
        self._links: dict[str, Link] = {}
        self.version = 0
        self.replace(nodes or [], links or [])

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    @property
    def nodes(self) -> list[Node]:
        return list(self._nodes.values())

    @property
    def links(self) -> list[Link]:
        return list(self._links.values())

    def node_ids(self) -> list[str]:
        return list(self._nodes)

    def get_node(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def get_link(self, link_id: str) -> Link | None:
        return self._links.get(link_id)

    def _touch(self) -> None:
        self.version += 1

    def replace(self, nodes: Iterable[Node], links: Iterable[Link]) -> None:
        """Swap the whole graph for a new node/link collection."""
        self._nodes = {node.id: node for node in nodes}
        self._links = {link.id: link for link in links}
        self._touch()

    def clear(self) -> None:
        self.replace([], [])

    def upsert_node(self, node: Node) -> Node:
        self._nodes[node.id] = node
        self._touch()
        return node

    def upsert_link(self, link: Link) -> Link:
        self._links[link.id] = link
        self._touch()
        return link

    def remove_link(self, link_id: str) -> bool:
        if self._links.pop(link_id, None) is None:
            return False
        self._touch()
        return True

    def remove_node(self, node_id: str) -> bool:
        """Remove a node and every link touching it."""
        if self._nodes.pop(node_id, None) is None:
            return False
        for link_id in [
            lid
            for lid, link in self._links.items()
            if link.source == node_id or link.target == node_id
        ]:
            del self._links[link_id]
        self._touch()
        return True

    def update_node(self, node_id: str, **changes: Any) -> Node | None:
        """Replace a node with a copy carrying the given field changes."""
        node = self._nodes.get(node_id)
        if node is None:
            log.warning(f"Node {node_id} not found, update skipped")
            return None
        return self.upsert_node(replace(node, **changes))

    def update_link(self, link_id: str, **changes: Any) -> Link | None:
        link = self._links.get(link_id)
        if link is None:
            log.warning(f"Link {link_id} not found, update skipped")
            return None
        return self.upsert_link(replace(link, **changes))

    def set_node_state(
        self, node_id: str, state: NodeState, **patch: Any
    ) -> Node | None:
        """Move a node to a lifecycle state, applying extra field changes."""
        node = self._nodes.get(node_id)
        if node is None:
            log.warning(
                f"Node {node_id} not found when setting state to {state.value}"
            )
            return None
        return self.upsert_node(replace(node, state=state, **patch))

    def apply_positions(self, positions: dict[str, dict[str, Any]]) -> int:
        """Copy layout-derived fields (x, y, layer, parent, children) onto nodes."""
        updated = 0
        for node_id, fields in positions.items():
            node = self._nodes.get(node_id)
            if node is None:
                continue
            self._nodes[node_id] = replace(node, **fields)
            updated += 1
        if updated:
            self._touch()
        return updated

    def get_stats(self) -> GraphStats:
        """Get statistics about the graph."""
        node_kinds = Counter(node.kind.value for node in self._nodes.values())
        link_types = Counter(link.relationship for link in self._links.values())
        return GraphStats(
            nodes=len(self._nodes),
            links=len(self._links),
            node_kinds=dict(node_kinds),
            link_types=dict(link_types),
        )

    def to_networkx(self) -> nx.DiGraph:
        """Export as a networkx DiGraph; links with missing endpoints are skipped."""
        graph = nx.DiGraph()
        for node in self._nodes.values():
            attrs = {
                "kind": node.kind.value,
                "name": node.name,
                "layer": node.layer,
                "x": node.x,
                "y": node.y,
            }
            if node.state is not None:
                attrs["state"] = node.state.value
            graph.add_node(node.id, **attrs)

        for link in self._links.values():
            if link.source not in self._nodes or link.target not in self._nodes:
                continue
            graph.add_edge(
                link.source,
                link.target,
                id=link.id,
                type=link.relationship,
                direction=link.direction.value,
                confidence=link.confidence,
                active=link.active,
            )
        return graph
