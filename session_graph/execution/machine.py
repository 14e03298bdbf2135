"""Event-driven execution state for the expert (QOM) flow of one session."""

import functools
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, assert_never

from ..config import DEFAULT_ENGINE_CONFIG, EngineConfig
from ..graph.model import GraphModel, Link, Node
from ..graph.schema import (
    TERMINAL_STATES,
    ExpertRole,
    NodeKind,
    NodeState,
    clamp,
    clamp_01,
    parse_direction,
    parse_node_state,
    validate_link,
)
from ..layout.engine import (
    DynamicLayoutEngine,
    InsertBetween,
    LayoutLink,
    LayoutNode,
    LayoutResult,
    NodeAdditionOptions,
)
from .events import (
    Event,
    ExpertTriggered,
    ModelSwitched,
    NodeCompleted,
    NodeFailed,
    NodeProgress,
    NodeStarted,
    QomCompleted,
    QomInitialized,
    RelationshipAdded,
    parse_event,
)

log = logging.getLogger(__name__)

DEFAULT_LINK_STRENGTH = 0.6
RELATIONSHIP_STRENGTH = 0.5

# Carried over when an existing expert node is re-added.
LIFECYCLE_FIELDS = (
    "state",
    "progress",
    "start_time",
    "end_time",
    "duration",
    "cost",
    "token_usage",
    "output",
    "error",
)


@dataclass
class ExecutionState:
    session_id: str = ""
    model_id: str = ""
    status: str = "idle"
    current_layer: int = 0
    active_nodes: list[str] = field(default_factory=list)
    completed_nodes: list[str] = field(default_factory=list)
    failed_nodes: list[str] = field(default_factory=list)
    total_nodes: int = 0
    total_cost: float = 0.0
    total_duration: float = 0.0
    success_rate: float = 0.0


@dataclass(frozen=True)
class ExecutionMetrics:
    total_nodes: int = 0
    completed_nodes: int = 0
    failed_nodes: int = 0
    active_nodes: int = 0
    pending_nodes: int = 0
    success_rate: float = 0.0
    total_cost: float = 0.0
    total_duration: float = 0.0
    status: str = "idle"


def _live(method: Callable) -> Callable:
    """Turn calls on a disposed machine into no-ops."""

    @functools.wraps(method)
    def wrapper(self: "ExecutionStateMachine", *args: Any, **kwargs: Any) -> Any:
        if self.disposed:
            log.debug(f"Ignoring {method.__name__} on disposed execution state")
            return None
        return method(self, *args, **kwargs)

    return wrapper


def expert_node_from_payload(raw: dict[str, Any]) -> Node:
    """Build an expert Node from an event's node mapping."""
    known = {
        "id", "name", "type", "category", "layer", "parent", "children", "state",
        "x", "y", "progress", "startTime", "endTime", "duration", "cost",
        "tokenUsage", "output", "error",
    }
    children = raw.get("children") or []
    return Node(
        id=str(raw["id"]),
        kind=NodeKind.EXPERT,
        name=str(raw.get("name") or raw["id"]),
        payload={k: v for k, v in raw.items() if k not in known},
        layer=int(raw.get("layer") or 0),
        parent=raw.get("parent"),
        children=tuple(str(c) for c in children),
        x=float(raw.get("x") or 0.0),
        y=float(raw.get("y") or 0.0),
        role=raw.get("type"),
        category=str(raw.get("category") or ""),
        state=parse_node_state(raw.get("state")),
        progress=raw.get("progress"),
        start_time=raw.get("startTime"),
        end_time=raw.get("endTime"),
        duration=raw.get("duration"),
        cost=raw.get("cost"),
        token_usage=raw.get("tokenUsage"),
        output=raw.get("output"),
        error=raw.get("error"),
    )


def link_from_payload(raw: dict[str, Any]) -> Link:
    source = str(raw["source"])
    target = str(raw["target"])
    return Link(
        id=str(raw.get("id") or f"{source}-{target}"),
        source=source,
        target=target,
        relationship=str(raw.get("type") or "data_flow"),
        direction=parse_direction(raw.get("direction")),
        confidence=clamp_01(raw.get("strength"), DEFAULT_LINK_STRENGTH),
        active=bool(raw.get("active", True)),
    )


class ExecutionStateMachine:
    """Applies execution events to an expert graph and keeps its layout.

    The layout engine is None until initialize() or a qom_initialized event;
    incremental topology changes before that are logged and dropped. After
    dispose() every call is a no-op.
    """

    def __init__(self, config: EngineConfig = DEFAULT_ENGINE_CONFIG):
        self.config = config
        self.graph = GraphModel()
        self.layout: DynamicLayoutEngine | None = None
        self.state = ExecutionState()
        self.disposed = False
        self.last_update = 0.0

    @property
    def initialized(self) -> bool:
        return self.layout is not None

    def _touch(self) -> None:
        self.last_update = time.time()

    # -- lifecycle --------------------------------------------------------

    @_live
    def initialize(self, session_id: str, flow: dict[str, Any] | None = None) -> None:
        """Lay out the starting flow for a session.

        A second call for the same session is ignored.
        """
        if self.initialized and self.state.session_id == session_id:
            return

        flow = flow if flow is not None else self.config.flow
        self.layout = DynamicLayoutEngine(self.config.layout)
        self.graph.clear()
        result = self.layout.generate_layout(flow)
        self._apply_layout(result)

        self.state = ExecutionState(
            session_id=session_id,
            model_id=str(flow.get("id") or self.config.model_id),
            status="initializing",
            total_nodes=len(self.graph),
        )
        self._touch()
        log.info(
            f"Execution state initialized for {session_id}: "
            f"{len(self.graph)} nodes, {len(self.graph.links)} links"
        )

    @_live
    def reset(self) -> None:
        self.graph.clear()
        self.layout = None
        self.state = ExecutionState()
        self._touch()

    def dispose(self) -> None:
        """Reset to empty and ignore every later call. Safe to repeat."""
        if self.disposed:
            return
        self.reset()
        self.disposed = True

    # -- events -----------------------------------------------------------

    @_live
    def process_payload(self, payload: dict[str, Any]) -> bool:
        """Parse and apply a raw event; invalid payloads are logged and skipped."""
        try:
            event = parse_event(payload)
        except ValueError as exc:
            log.warning(f"Skipping invalid event: {exc}")
            return False
        self.process_event(event)
        return True

    @_live
    def process_event(self, event: Event) -> None:
        log.debug(f"Processing {event.type}")
        match event:
            case QomInitialized():
                self._on_initialized(event)
            case NodeStarted(node_id=node_id, timestamp=timestamp):
                self.update_node_state(
                    node_id,
                    NodeState.RUNNING,
                    start_time=timestamp if timestamp is not None else time.time() * 1000,
                )
            case NodeProgress(node_id=node_id, progress=progress):
                self.graph.update_node(node_id, progress=clamp(progress, 0.0, 100.0, 0.0))
            case NodeCompleted():
                self._on_completed(event)
            case NodeFailed(node_id=node_id, error=error):
                self.update_node_state(node_id, NodeState.FAILED, error=error)
            case ExpertTriggered():
                self.add_parallel_expert(event)
            case RelationshipAdded():
                self.add_link(
                    Link(
                        id=event.link_id,
                        source=event.source_id,
                        target=event.target_id,
                        relationship=event.relationship_type,
                        direction=event.direction,
                        confidence=RELATIONSHIP_STRENGTH,
                    )
                )
            case ModelSwitched():
                self._on_model_switched(event)
            case QomCompleted(total_cost=total_cost, total_duration=total_duration):
                self.state.status = "completed"
                self.state.total_cost = total_cost
                self.state.total_duration = total_duration
                log.info(
                    f"Execution completed for {self.state.session_id}: "
                    f"cost={total_cost}, duration={total_duration}"
                )
            case _:
                assert_never(event)
        self._touch()

    def _on_initialized(self, event: QomInitialized) -> None:
        if event.nodes:
            nodes = []
            for raw in event.nodes:
                if not raw.get("id"):
                    log.warning("Skipping initialized node without an id")
                    continue
                nodes.append(expert_node_from_payload(raw))
            links = []
            for raw in event.links:
                if not raw.get("source") or not raw.get("target"):
                    log.warning(f"Skipping initialized link without endpoints: {raw}")
                    continue
                links.append(link_from_payload(raw))
            self.graph.replace(nodes, links)
            self._rebuild_partitions()
            self._relayout()
        if event.model_id:
            self.state.model_id = event.model_id
        self.state.status = "running"
        self.state.total_nodes = len(self.graph)

    def _on_completed(self, event: NodeCompleted) -> None:
        node = self.update_node_state(
            event.node_id,
            NodeState.COMPLETED,
            end_time=time.time() * 1000,
            duration=event.duration,
            cost=event.cost,
            token_usage=event.token_usage,
            output=event.output,
        )
        if node is None:
            return
        self.state.total_cost += event.cost
        self.state.total_duration += event.duration

    def _on_model_switched(self, event: ModelSwitched) -> None:
        node = self.graph.get_node(event.node_id)
        if node is None:
            log.warning(f"Node {event.node_id} not found, model switch skipped")
            return
        payload = dict(node.payload)
        payload.update(
            model=event.to_model,
            previousModel=event.from_model or payload.get("model"),
            switchReason=event.reason,
        )
        self.graph.update_node(event.node_id, payload=payload)

    # -- node state -------------------------------------------------------

    @_live
    def update_node_state(self, node_id: str, state: NodeState, **patch: Any) -> Node | None:
        """Move a node to a state and keep the partition lists disjoint.

        Completed and failed are terminal: later transitions are logged and
        ignored, and None is returned.
        """
        current = self.graph.get_node(node_id)
        if current is not None and current.state in TERMINAL_STATES:
            log.warning(
                f"Node {node_id} is already {current.state.value}, "
                f"ignoring move to {state.value}"
            )
            return None
        node = self.graph.set_node_state(node_id, state, **patch)
        if node is None:
            return None

        for bucket in (
            self.state.active_nodes,
            self.state.completed_nodes,
            self.state.failed_nodes,
        ):
            if node_id in bucket:
                bucket.remove(node_id)
        if state == NodeState.RUNNING:
            self.state.active_nodes.append(node_id)
            self.state.current_layer = max(self.state.current_layer, node.layer)
        elif state == NodeState.COMPLETED:
            self.state.completed_nodes.append(node_id)
        elif state == NodeState.FAILED:
            self.state.failed_nodes.append(node_id)

        self._update_success_rate()
        self._touch()
        return node

    def _rebuild_partitions(self) -> None:
        buckets = {
            NodeState.RUNNING: [],
            NodeState.COMPLETED: [],
            NodeState.FAILED: [],
        }
        for node in self.graph.nodes:
            if node.state in buckets:
                buckets[node.state].append(node.id)
        self.state.active_nodes = buckets[NodeState.RUNNING]
        self.state.completed_nodes = buckets[NodeState.COMPLETED]
        self.state.failed_nodes = buckets[NodeState.FAILED]
        self._update_success_rate()

    def _update_success_rate(self) -> None:
        total = len(self.graph)
        self.state.success_rate = (
            len(self.state.completed_nodes) / total * 100 if total else 0.0
        )

    # -- topology ---------------------------------------------------------

    def _require_layout(self, operation: str) -> DynamicLayoutEngine | None:
        if self.layout is None:
            log.error(f"Layout engine not available, {operation} dropped")
        return self.layout

    def _to_layout_node(self, node: Node) -> LayoutNode:
        return LayoutNode(
            id=node.id,
            name=node.name,
            type=node.role or "",
            category=node.category,
            x=node.x,
            y=node.y,
            layer=node.layer,
            parent_nodes=(node.parent,) if node.parent else (),
            child_nodes=node.children,
            pinned=node.pinned,
            is_parallel=node.role == ExpertRole.SPECIALIST.value,
            parallel_group=(
                f"{node.parent}_experts" if node.category == "ai_generated" else None
            ),
        )

    def _new_expert(self, layout_node: LayoutNode) -> Node:
        return Node(
            id=layout_node.id,
            kind=NodeKind.EXPERT,
            name=layout_node.name,
            payload={
                "provider": self.config.default_provider,
                "model": self.config.default_model,
            },
            role=layout_node.type or None,
            category=layout_node.category,
            state=NodeState.PENDING,
        )

    def _apply_layout(
        self, result: LayoutResult, templates: dict[str, Node] | None = None
    ) -> None:
        """Copy positions onto the graph and sync its links to the layout.

        Links missing from the result are removed; new ones are added and
        existing ids keep their relationship metadata.
        """
        templates = templates or {}
        positions: dict[str, dict[str, Any]] = {}
        for layout_node in result.nodes:
            placed = {
                "x": layout_node.x,
                "y": layout_node.y,
                "layer": layout_node.layer,
                "parent": layout_node.parent_nodes[0] if layout_node.parent_nodes else None,
                "children": layout_node.child_nodes,
                "pinned": layout_node.pinned,
            }
            if layout_node.id in templates:
                template = templates[layout_node.id]
                existing = self.graph.get_node(layout_node.id)
                if existing is not None:
                    template = replace(
                        template,
                        **{name: getattr(existing, name) for name in LIFECYCLE_FIELDS},
                    )
                self.graph.upsert_node(replace(template, **placed))
            elif layout_node.id in self.graph:
                positions[layout_node.id] = placed
            else:
                self.graph.upsert_node(replace(self._new_expert(layout_node), **placed))
        self.graph.apply_positions(positions)

        keep = {link.id for link in result.links}
        for link in self.graph.links:
            if link.id not in keep:
                self.graph.remove_link(link.id)
                log.debug(f"Removed link {link.id}")
        for layout_link in result.links:
            existing = self.graph.get_link(layout_link.id)
            if existing is None:
                self.graph.upsert_link(
                    Link(
                        id=layout_link.id,
                        source=layout_link.source,
                        target=layout_link.target,
                        relationship=layout_link.type,
                        confidence=DEFAULT_LINK_STRENGTH,
                    )
                )
            elif (existing.source, existing.target) != (
                layout_link.source,
                layout_link.target,
            ):
                self.graph.update_link(
                    layout_link.id, source=layout_link.source, target=layout_link.target
                )
        self.state.total_nodes = len(self.graph)

    def _relayout(self) -> None:
        """Full layout of the current graph, e.g. after a replace."""
        if self.layout is None:
            self.layout = DynamicLayoutEngine(self.config.layout)
        flow = {
            "nodes": [
                {
                    "id": node.id,
                    "name": node.name,
                    "type": node.role or "",
                    "category": node.category,
                }
                for node in self.graph.nodes
            ],
            "connections": [
                {
                    "id": link.id,
                    "from": link.source,
                    "to": link.target,
                    "type": link.relationship,
                }
                for link in self.graph.links
            ],
        }
        self._apply_layout(self.layout.generate_layout(flow))

    @_live
    def add_node(self, node: Node, options: NodeAdditionOptions | None = None) -> None:
        self.add_nodes([node], options)

    @_live
    def add_nodes(
        self, nodes: Iterable[Node], options: NodeAdditionOptions | None = None
    ) -> None:
        layout = self._require_layout("add_nodes")
        if layout is None:
            return
        nodes = list(nodes)
        result = layout.add_nodes([self._to_layout_node(n) for n in nodes], options)
        self._apply_layout(result, templates={n.id: n for n in nodes})
        self._rebuild_partitions()
        self._touch()

    @_live
    def add_link(self, link: Link) -> None:
        layout = self._require_layout("add_link")
        if layout is None:
            return
        missing = [nid for nid in (link.source, link.target) if nid not in self.graph]
        if missing:
            log.warning(f"Link {link.id} references unknown nodes {missing}, skipped")
            return
        validation = validate_link(
            self.graph.get_node(link.source).kind.value,
            self.graph.get_node(link.target).kind.value,
            link.relationship,
        )
        for warning in validation.warnings:
            log.warning(f"Link {link.id}: {warning}")
        self.graph.upsert_link(link)
        result = layout.add_link(
            LayoutLink(
                id=link.id, source=link.source, target=link.target, type=link.relationship
            )
        )
        self._apply_layout(result)
        self._touch()

    @_live
    def remove_link(self, link_id: str) -> None:
        layout = self._require_layout("remove_link")
        if layout is None:
            return
        self._apply_layout(layout.remove_link(link_id))
        self._touch()

    @_live
    def activate_link(self, link_id: str) -> None:
        self.graph.update_link(link_id, active=True)
        self._touch()

    @_live
    def update_link(self, link_id: str, **changes: Any) -> None:
        """Update link metadata; endpoints are owned by the layout path."""
        if "source" in changes or "target" in changes:
            log.warning(f"Ignoring endpoint change for link {link_id}")
            changes.pop("source", None)
            changes.pop("target", None)
        self.graph.update_link(link_id, **changes)
        self._touch()

    @_live
    def fix_node_position(self, node_id: str, x: float, y: float) -> None:
        layout = self._require_layout("fix_node_position")
        if layout is None:
            return
        if node_id not in self.graph:
            log.warning(f"Node {node_id} not found, pin skipped")
            return
        self._apply_layout(layout.pin(node_id, x, y))
        self._touch()

    @_live
    def release_node_position(self, node_id: str) -> None:
        layout = self._require_layout("release_node_position")
        if layout is None:
            return
        if node_id not in self.graph:
            log.warning(f"Node {node_id} not found, release skipped")
            return
        self._apply_layout(layout.release(node_id))
        self._touch()

    @_live
    def update_layout_dimensions(self, width: float, height: float) -> None:
        layout = self._require_layout("update_layout_dimensions")
        if layout is None:
            return
        self._apply_layout(layout.resize(width, height))
        self._touch()

    @_live
    def add_parallel_expert(self, event: ExpertTriggered) -> None:
        """Insert a triggered specialist between its parent and the consensus node."""
        consensus = self.config.consensus_node_id
        log.info(f"Adding parallel expert {event.expert_name} ({event.expert_id})")
        expert = Node(
            id=event.expert_id,
            kind=NodeKind.EXPERT,
            name=event.expert_name or event.expert_id,
            payload={
                "provider": self.config.default_provider,
                "model": self.config.default_model,
                "triggerConditions": list(event.trigger_conditions),
                "triggered": True,
            },
            parent=event.parent_id,
            children=(consensus,),
            role=ExpertRole.SPECIALIST.value,
            category="ai_generated",
            state=NodeState.PENDING,
        )
        self.add_nodes(
            [expert],
            NodeAdditionOptions(
                insert_between=InsertBetween(
                    parents=(event.parent_id,), children=(consensus,)
                )
            ),
        )

    # -- views ------------------------------------------------------------

    def metrics(self) -> ExecutionMetrics:
        if not self.initialized and not len(self.graph):
            return ExecutionMetrics()
        total = len(self.graph)
        completed = len(self.state.completed_nodes)
        failed = len(self.state.failed_nodes)
        active = len(self.state.active_nodes)
        return ExecutionMetrics(
            total_nodes=total,
            completed_nodes=completed,
            failed_nodes=failed,
            active_nodes=active,
            pending_nodes=total - completed - failed - active,
            success_rate=completed / total * 100 if total else 0.0,
            total_cost=self.state.total_cost,
            total_duration=self.state.total_duration,
            status=self.state.status,
        )

    def graph_view(self) -> dict[str, list]:
        """Nodes plus the links whose endpoints both exist."""
        nodes = self.graph.nodes
        links = [
            link
            for link in self.graph.links
            if link.source in self.graph and link.target in self.graph
        ]
        return {"nodes": nodes, "links": links}
