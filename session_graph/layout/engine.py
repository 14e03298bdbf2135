"""Layered layout with stable incremental insertion.

Nodes sit in columns by topological depth: a node with no parent is layer 0,
every other node is one layer past its deepest parent. Within a layer nodes
keep insertion order and are spaced evenly over the viewport's usable height.

Incremental operations re-derive layers only for the nodes downstream of the
change and re-space only the layers whose membership changed, so every other
node keeps its coordinates. The result is the same as a full recompute on
the final topology.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable

import networkx as nx

from ..graph.schema import FlowLinkType, generate_link_id

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LayoutConfig:
    """Viewport bounds and spacing for the layered layout."""

    width: float = 1200.0
    height: float = 800.0
    margin_top: float = 40.0
    margin_right: float = 40.0
    margin_bottom: float = 40.0
    margin_left: float = 40.0
    layer_spacing: float = 180.0
    # Minimum vertical distance between siblings; crowded layers overflow.
    node_spacing: float = 80.0

    @property
    def usable_height(self) -> float:
        return max(0.0, self.height - self.margin_top - self.margin_bottom)

    def layer_x(self, layer: int) -> float:
        return self.margin_left + layer * self.layer_spacing

    def layer_ys(self, count: int) -> list[float]:
        """Evenly spaced y coordinates for a layer of `count` nodes."""
        if count <= 0:
            return []
        step = max(self.usable_height / (count + 1), self.node_spacing)
        center = self.margin_top + self.usable_height / 2
        first = center - step * (count - 1) / 2
        return [first + i * step for i in range(count)]


DEFAULT_LAYOUT_CONFIG = LayoutConfig()


@dataclass(frozen=True)
class LayoutNode:
    id: str
    name: str = ""
    type: str = ""
    category: str = ""
    x: float = 0.0
    y: float = 0.0
    layer: int = 0
    parent_nodes: tuple[str, ...] = ()
    child_nodes: tuple[str, ...] = ()
    pinned: bool = False
    is_parallel: bool = False
    parallel_group: str | None = None


@dataclass(frozen=True)
class LayoutLink:
    id: str
    source: str
    target: str
    type: str = FlowLinkType.DATA_FLOW.value


@dataclass(frozen=True)
class LayoutResult:
    """Positioned nodes and links after an operation.

    `repositioned` holds the ids whose coordinates or layer were assigned
    by the operation.
    """

    nodes: tuple[LayoutNode, ...]
    links: tuple[LayoutLink, ...]
    repositioned: frozenset[str] = frozenset()

    def node_map(self) -> dict[str, LayoutNode]:
        return {node.id: node for node in self.nodes}


@dataclass(frozen=True)
class InsertBetween:
    """Splice a new node into every existing parent -> child edge."""

    parents: tuple[str, ...] = ()
    children: tuple[str, ...] = ()
    parent_link_type: str = FlowLinkType.TRIGGERS.value
    child_link_type: str = FlowLinkType.CONTRIBUTES.value

    def __post_init__(self):
        object.__setattr__(self, "parents", tuple(self.parents))
        object.__setattr__(self, "children", tuple(self.children))


@dataclass(frozen=True)
class NodeAdditionOptions:
    insert_between: InsertBetween | None = None
    link_type: str = FlowLinkType.DATA_FLOW.value


class DynamicLayoutEngine:
    """Owns node positions for one expert flow."""

    def __init__(self, config: LayoutConfig = DEFAULT_LAYOUT_CONFIG):
        self.config = config
        self._nodes: dict[str, LayoutNode] = {}
        self._links: dict[str, LayoutLink] = {}
        # Links used for layering; cycle-closing and dangling links are kept
        # in _links but left out of the DAG.
        self._dag = nx.DiGraph()
        self._ignored: set[str] = set()
        # Nodes stored without an insertion point; they hold no layer slot
        # until a layered link or a later add places them.
        self._unplaced: set[str] = set()

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    @property
    def nodes(self) -> list[LayoutNode]:
        order = self._order()
        return [self._with_relations(node, order) for node in self._nodes.values()]

    @property
    def links(self) -> list[LayoutLink]:
        return list(self._links.values())

    def get_node(self, node_id: str) -> LayoutNode | None:
        node = self._nodes.get(node_id)
        if node is None:
            return None
        return self._with_relations(node, self._order())

    def ignored_links(self) -> list[str]:
        """Link ids kept in the result but not used for layering."""
        return [link_id for link_id in self._links if link_id in self._ignored]

    # -- full layout ------------------------------------------------------

    def generate_layout(self, flow: dict[str, Any]) -> LayoutResult:
        """Lay out a declarative flow from scratch.

        Accepts either a flow (`nodes`, `connections`) or a model
        configuration wrapping one under `defaultFlow`. Node `inputs` and
        `outputs` add links not already named in `connections`. Connections
        without an `id` get the canonical `source-target` id.
        """
        if isinstance(flow.get("defaultFlow"), dict):
            flow = flow["defaultFlow"]

        self._nodes = {}
        self._links = {}
        self._dag = nx.DiGraph()
        self._ignored = set()
        self._unplaced = set()

        raw_nodes = [raw for raw in flow.get("nodes") or [] if isinstance(raw, dict)]
        for raw in raw_nodes:
            node_id = raw.get("id")
            if not node_id:
                log.warning("Skipping flow node without an id")
                continue
            node = LayoutNode(
                id=str(node_id),
                name=str(raw.get("name") or node_id),
                type=str(raw.get("type") or ""),
                category=str(raw.get("category") or ""),
            )
            self._nodes[node.id] = node
            self._dag.add_node(node.id)

        pairs: list[tuple[str, str, str, str | None]] = []
        for conn in flow.get("connections") or []:
            if not isinstance(conn, dict) or not conn.get("from") or not conn.get("to"):
                log.warning(f"Skipping malformed flow connection: {conn}")
                continue
            pairs.append(
                (
                    str(conn["from"]),
                    str(conn["to"]),
                    str(conn.get("type") or FlowLinkType.DATA_FLOW.value),
                    conn.get("id"),
                )
            )
        named = {(source, target) for source, target, _, _ in pairs}
        for raw in raw_nodes:
            node_id = str(raw.get("id") or "")
            implied = [(str(i), node_id) for i in raw.get("inputs") or []]
            implied += [(node_id, str(o)) for o in raw.get("outputs") or []]
            for source, target in implied:
                if node_id and (source, target) not in named:
                    named.add((source, target))
                    pairs.append((source, target, FlowLinkType.DATA_FLOW.value, None))

        for source, target, link_type, link_id in pairs:
            link = LayoutLink(
                id=str(link_id or generate_link_id(source, target)),
                source=source,
                target=target,
                type=link_type,
            )
            self._put(link)

        self._relayer(set(self._nodes))
        self._respace(self._layer_members().keys())
        log.info(
            f"Generated layout: {len(self._nodes)} nodes, {len(self._links)} links, "
            f"{len(self._layer_members())} layers"
        )
        return self._result(set(self._nodes))

    def resize(self, width: float, height: float) -> LayoutResult:
        """Re-space every layer for a new viewport."""
        self.config = replace(self.config, width=width, height=height)
        moved = self._respace(self._layer_members().keys())
        return self._result(moved)

    # -- incremental operations -------------------------------------------

    def add_node(
        self, node: LayoutNode, options: NodeAdditionOptions | None = None
    ) -> LayoutResult:
        return self.add_nodes([node], options)

    def add_nodes(
        self, nodes: Iterable[LayoutNode], options: NodeAdditionOptions | None = None
    ) -> LayoutResult:
        """Add nodes, linking them to their declared or spliced neighbors.

        Without `insert_between` a node is linked from its `parent_nodes`
        and to its `child_nodes`. References to unknown nodes are logged
        and skipped. A node with nothing resolvable under `insert_between`
        is stored at its given coordinates and takes no slot in its layer
        until a link reaches it or it is added again.
        """
        options = options or NodeAdditionOptions()
        between = options.insert_between
        seeds: set[str] = set()
        placed: set[str] = set()

        for node in nodes:
            if between is not None:
                parents = self._resolve(between.parents, "parent", node.id)
                children = self._resolve(between.children, "child", node.id)
                if not parents and not children:
                    log.warning(
                        f"No insertion point resolved for {node.id}, "
                        "storing without reposition"
                    )
                    if node.id not in self._nodes:
                        self._unplaced.add(node.id)
                    self._store(node)
                    continue
                for parent in parents:
                    for child in children:
                        for link in self._links_between(parent, child):
                            seeds |= self._drop(link.id)
                new_links = [
                    (parent, node.id, between.parent_link_type) for parent in parents
                ] + [(node.id, child, between.child_link_type) for child in children]
            else:
                parents = self._resolve(node.parent_nodes, "parent", node.id)
                children = self._resolve(node.child_nodes, "child", node.id)
                new_links = [(parent, node.id, options.link_type) for parent in parents]
                new_links += [(node.id, child, options.link_type) for child in children]

            self._store(node)
            placed.add(node.id)
            seeds.add(node.id)
            for source, target, link_type in new_links:
                link = LayoutLink(
                    id=generate_link_id(source, target),
                    source=source,
                    target=target,
                    type=link_type,
                )
                seeds |= self._put(link)

        seeds |= self._revive()
        touched = self._relayer(seeds)
        touched |= {self._nodes[node_id].layer for node_id in placed}
        moved = self._respace(touched)
        return self._result(moved | placed)

    def add_link(self, link: LayoutLink) -> LayoutResult:
        """Add or replace a link; cycle-closing links are kept but not layered."""
        seeds = self._put(link)
        seeds |= self._revive()
        moved = self._respace(self._relayer(seeds))
        return self._result(moved)

    def remove_link(self, link_id: str) -> LayoutResult:
        if link_id not in self._links:
            log.warning(f"Link {link_id} not found in layout, removal skipped")
            return self._result(set())
        seeds = self._drop(link_id)
        seeds |= self._revive()
        moved = self._respace(self._relayer(seeds))
        return self._result(moved)

    def pin(self, node_id: str, x: float, y: float) -> LayoutResult:
        """Fix a node at (x, y); layout passes leave it there."""
        node = self._nodes.get(node_id)
        if node is None:
            log.warning(f"Node {node_id} not found in layout, pin skipped")
            return self._result(set())
        self._nodes[node_id] = replace(node, x=x, y=y, pinned=True)
        return self._result({node_id})

    def release(self, node_id: str) -> LayoutResult:
        """Unpin a node and return it to its layer slot."""
        node = self._nodes.get(node_id)
        if node is None:
            log.warning(f"Node {node_id} not found in layout, release skipped")
            return self._result(set())
        self._nodes[node_id] = replace(node, pinned=False)
        moved = self._respace({node.layer})
        return self._result(moved)

    # -- internals --------------------------------------------------------

    def _resolve(self, ids: Iterable[str], role: str, node_id: str) -> list[str]:
        resolved = []
        for ref in ids:
            if ref in self._nodes:
                resolved.append(ref)
            else:
                log.warning(f"Unknown {role} {ref} for {node_id}, skipped")
        return resolved

    def _store(self, node: LayoutNode) -> None:
        existing = self._nodes.get(node.id)
        if existing is not None:
            node = replace(
                node,
                layer=existing.layer,
                x=existing.x,
                y=existing.y,
                pinned=existing.pinned or node.pinned,
            )
        self._nodes[node.id] = replace(node, parent_nodes=(), child_nodes=())
        self._dag.add_node(node.id)

    def _links_between(self, source: str, target: str) -> list[LayoutLink]:
        return [
            link
            for link in self._links.values()
            if link.source == source and link.target == target
        ]

    def _activate(self, link: LayoutLink) -> bool:
        """Use a link for layering unless it dangles or closes a cycle."""
        source, target = link.source, link.target
        if source not in self._nodes or target not in self._nodes or source == target:
            self._ignored.add(link.id)
            return False
        if self._dag.has_edge(source, target):
            self._dag.edges[source, target]["links"].add(link.id)
            self._ignored.discard(link.id)
            return False
        if nx.has_path(self._dag, target, source):
            log.debug(f"Link {link.id} closes a cycle, ignored for layering")
            self._ignored.add(link.id)
            return False
        self._dag.add_edge(source, target, links={link.id})
        self._ignored.discard(link.id)
        return True

    def _put(self, link: LayoutLink) -> set[str]:
        seeds = set()
        if link.id in self._links:
            seeds |= self._drop(link.id)
        self._links[link.id] = link
        if self._activate(link):
            seeds.add(link.target)
            seeds |= {link.source, link.target} & self._unplaced
        return seeds

    def _drop(self, link_id: str) -> set[str]:
        link = self._links.pop(link_id)
        if link_id in self._ignored:
            self._ignored.discard(link_id)
            return set()
        edge_links = self._dag.edges[link.source, link.target]["links"]
        edge_links.discard(link_id)
        if edge_links:
            return set()
        self._dag.remove_edge(link.source, link.target)
        return {link.target}

    def _revive(self) -> set[str]:
        """Retry ignored links whose endpoints or cycle status changed."""
        seeds = set()
        for link_id in [lid for lid in self._links if lid in self._ignored]:
            link = self._links[link_id]
            if self._activate(link):
                seeds.add(link.target)
        return seeds

    def _relayer(self, seeds: set[str]) -> set[int]:
        """Recompute layers of the seeds and their descendants.

        Returns every layer whose membership changed.
        """
        affected = set()
        for seed in seeds:
            if seed in self._dag:
                affected.add(seed)
                affected |= nx.descendants(self._dag, seed)

        touched: set[int] = set()
        for node_id in nx.topological_sort(self._dag.subgraph(affected)):
            node = self._nodes[node_id]
            parents = list(self._dag.predecessors(node_id))
            layer = 1 + max(self._nodes[p].layer for p in parents) if parents else 0
            if node_id in self._unplaced:
                self._unplaced.discard(node_id)
                touched.add(layer)
            if layer != node.layer:
                touched |= {node.layer, layer}
                self._nodes[node_id] = replace(node, layer=layer)
        return touched

    def _layer_members(self) -> dict[int, list[str]]:
        members: dict[int, list[str]] = {}
        for node in self._nodes.values():
            if node.id in self._unplaced:
                continue
            members.setdefault(node.layer, []).append(node.id)
        return members

    def _respace(self, layers: Iterable[int]) -> set[str]:
        members = self._layer_members()
        moved = set()
        for layer in sorted(set(layers)):
            ids = members.get(layer, [])
            x = self.config.layer_x(layer)
            for node_id, y in zip(ids, self.config.layer_ys(len(ids))):
                node = self._nodes[node_id]
                if node.pinned or (node.x, node.y) == (x, y):
                    continue
                self._nodes[node_id] = replace(node, x=x, y=y)
                moved.add(node_id)
        return moved

    def _order(self) -> dict[str, int]:
        return {node_id: i for i, node_id in enumerate(self._nodes)}

    def _with_relations(self, node: LayoutNode, order: dict[str, int]) -> LayoutNode:
        if node.id not in self._dag:
            return node
        parents = sorted(self._dag.predecessors(node.id), key=order.__getitem__)
        children = sorted(self._dag.successors(node.id), key=order.__getitem__)
        return replace(node, parent_nodes=tuple(parents), child_nodes=tuple(children))

    def _result(self, repositioned: set[str]) -> LayoutResult:
        return LayoutResult(
            nodes=tuple(self.nodes),
            links=tuple(self._links.values()),
            repositioned=frozenset(repositioned),
        )
