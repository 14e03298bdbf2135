"""Execution events streamed by the expert orchestration layer.

Payloads arrive as camelCase mappings; parse_event() validates them into
frozen event records. Validation happens here, at the boundary, and nowhere
on the event path.
"""

from dataclasses import dataclass, field
from typing import Any, Callable

from ..graph.schema import LinkDirection, parse_direction


@dataclass(frozen=True)
class QomInitialized:
    model_id: str = ""
    nodes: tuple[dict[str, Any], ...] = ()
    links: tuple[dict[str, Any], ...] = ()
    timestamp: float | None = None
    type: str = field(default="qom_initialized", init=False)


@dataclass(frozen=True)
class NodeStarted:
    node_id: str
    node_name: str = ""
    model: str = ""
    provider: str = ""
    timestamp: float | None = None
    type: str = field(default="node_started", init=False)


@dataclass(frozen=True)
class NodeProgress:
    node_id: str
    progress: float = 0.0
    message: str | None = None
    type: str = field(default="node_progress", init=False)


@dataclass(frozen=True)
class NodeCompleted:
    node_id: str
    duration: float = 0.0
    cost: float = 0.0
    token_usage: dict[str, int] | None = None
    output: Any = None
    type: str = field(default="node_completed", init=False)


@dataclass(frozen=True)
class NodeFailed:
    node_id: str
    error: str = ""
    will_retry: bool = False
    fallback_model: str | None = None
    type: str = field(default="node_failed", init=False)


@dataclass(frozen=True)
class ExpertTriggered:
    parent_id: str
    expert_id: str
    expert_name: str = ""
    trigger_conditions: tuple[str, ...] = ()
    layer: int | None = None
    type: str = field(default="expert_triggered", init=False)


@dataclass(frozen=True)
class RelationshipAdded:
    link_id: str
    source_id: str
    target_id: str
    relationship_type: str = "data_flow"
    direction: LinkDirection = LinkDirection.OUTGOING
    type: str = field(default="relationship_added", init=False)


@dataclass(frozen=True)
class ModelSwitched:
    node_id: str
    from_model: str = ""
    to_model: str = ""
    reason: str = ""
    type: str = field(default="model_switched", init=False)


@dataclass(frozen=True)
class QomCompleted:
    total_duration: float = 0.0
    total_cost: float = 0.0
    node_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    final_output: Any = None
    type: str = field(default="qom_completed", init=False)


Event = (
    QomInitialized
    | NodeStarted
    | NodeProgress
    | NodeCompleted
    | NodeFailed
    | ExpertTriggered
    | RelationshipAdded
    | ModelSwitched
    | QomCompleted
)


def _required(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None or value == "":
        raise ValueError(f"{payload.get('type')} event is missing '{key}'")
    return str(value)


def _number(payload: dict[str, Any], key: str, default: float = 0.0) -> float:
    value = payload.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"'{key}' must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{key}' must be a number, got {value!r}") from exc


def _mappings(payload: dict[str, Any], key: str) -> tuple[dict[str, Any], ...]:
    value = payload.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a list")
    return tuple(item for item in value if isinstance(item, dict))


def _qom_initialized(p: dict[str, Any]) -> QomInitialized:
    return QomInitialized(
        model_id=str(p.get("qomModelId") or ""),
        nodes=_mappings(p, "nodes"),
        links=_mappings(p, "links"),
        timestamp=p.get("timestamp"),
    )


def _node_started(p: dict[str, Any]) -> NodeStarted:
    return NodeStarted(
        node_id=_required(p, "nodeId"),
        node_name=str(p.get("nodeName") or ""),
        model=str(p.get("model") or ""),
        provider=str(p.get("provider") or ""),
        timestamp=p.get("timestamp"),
    )


def _node_progress(p: dict[str, Any]) -> NodeProgress:
    return NodeProgress(
        node_id=_required(p, "nodeId"),
        progress=_number(p, "progress"),
        message=p.get("message"),
    )


def _node_completed(p: dict[str, Any]) -> NodeCompleted:
    token_usage = p.get("tokenUsage")
    return NodeCompleted(
        node_id=_required(p, "nodeId"),
        duration=_number(p, "duration"),
        cost=_number(p, "cost"),
        token_usage=dict(token_usage) if isinstance(token_usage, dict) else None,
        output=p.get("output"),
    )


def _node_failed(p: dict[str, Any]) -> NodeFailed:
    return NodeFailed(
        node_id=_required(p, "nodeId"),
        error=str(p.get("error") or ""),
        will_retry=bool(p.get("willRetry", False)),
        fallback_model=p.get("fallbackModel"),
    )


def _expert_triggered(p: dict[str, Any]) -> ExpertTriggered:
    layer = p.get("layer")
    return ExpertTriggered(
        parent_id=_required(p, "parentId"),
        expert_id=_required(p, "expertId"),
        expert_name=str(p.get("expertName") or p.get("expertId")),
        trigger_conditions=tuple(str(c) for c in p.get("triggerConditions") or []),
        layer=int(layer) if isinstance(layer, (int, float)) else None,
    )


def _relationship_added(p: dict[str, Any]) -> RelationshipAdded:
    source = _required(p, "sourceId")
    target = _required(p, "targetId")
    return RelationshipAdded(
        link_id=str(p.get("linkId") or f"{source}-{target}"),
        source_id=source,
        target_id=target,
        relationship_type=str(p.get("relationshipType") or "data_flow"),
        direction=parse_direction(p.get("direction")),
    )


def _model_switched(p: dict[str, Any]) -> ModelSwitched:
    return ModelSwitched(
        node_id=_required(p, "nodeId"),
        from_model=str(p.get("fromModel") or ""),
        to_model=_required(p, "toModel"),
        reason=str(p.get("reason") or ""),
    )


def _qom_completed(p: dict[str, Any]) -> QomCompleted:
    return QomCompleted(
        total_duration=_number(p, "totalDuration"),
        total_cost=_number(p, "totalCost"),
        node_count=int(_number(p, "nodeCount")),
        success_count=int(_number(p, "successCount")),
        failure_count=int(_number(p, "failureCount")),
        final_output=p.get("finalOutput"),
    )


_PARSERS: dict[str, Callable[[dict[str, Any]], Event]] = {
    "qom_initialized": _qom_initialized,
    "node_started": _node_started,
    "node_progress": _node_progress,
    "node_completed": _node_completed,
    "node_failed": _node_failed,
    "expert_triggered": _expert_triggered,
    "relationship_added": _relationship_added,
    "model_switched": _model_switched,
    "qom_completed": _qom_completed,
}


def get_event_types() -> list[str]:
    return list(_PARSERS)


def parse_event(payload: dict[str, Any] | Event) -> Event:
    """Validate a raw event payload.

    Raises:
        ValueError: payload is not a mapping, has an unknown type, or lacks
            a required field.
    """
    if isinstance(payload, Event):
        return payload
    if not isinstance(payload, dict):
        raise ValueError(f"Event payload must be a mapping, got {type(payload).__name__}")
    event_type = payload.get("type")
    parser = _PARSERS.get(event_type)
    if parser is None:
        raise ValueError(
            f"Unknown event type: {event_type!r}, "
            f"expected one of {', '.join(get_event_types())}"
        )
    return parser(payload)

