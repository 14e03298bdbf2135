"""Session analysis snapshots and their conversion into a GraphModel."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Any

from .model import GraphModel, Link, Node
from .schema import (
    SESSION_GROUPS,
    NodeKind,
    clamp,
    clamp_01,
    generate_link_id,
    parse_direction,
)

log = logging.getLogger(__name__)

_NAME_KEYS = ("name", "text", "id")


@dataclass(frozen=True)
class SessionAnalysis:
    """One session's analysis as exchanged with the document store.

    Node groups hold the raw node mappings; relationships stay embedded
    in each node under "relationships".
    """

    session_id: str = ""
    timestamp: str = ""
    analysis_version: int = 0
    symptoms: tuple[dict[str, Any], ...] = ()
    diagnoses: tuple[dict[str, Any], ...] = ()
    treatments: tuple[dict[str, Any], ...] = ()
    actions: tuple[dict[str, Any], ...] = ()
    user_actions: tuple[dict[str, Any], ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    def group(self, name: str) -> tuple[dict[str, Any], ...]:
        return getattr(self, name)

    def all_nodes(self) -> list[tuple[NodeKind, dict[str, Any]]]:
        return [
            (kind, raw) for group, kind in SESSION_GROUPS.items() for raw in self.group(group)
        ]

    def with_group(self, name: str, nodes: list[dict[str, Any]]) -> SessionAnalysis:
        return replace(self, **{name: tuple(nodes)})

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update(
            {
                "sessionId": self.session_id,
                "timestamp": self.timestamp,
                "analysisVersion": self.analysis_version,
                "nodes": {
                    group: [copy.deepcopy(node) for node in self.group(group)]
                    for group in SESSION_GROUPS
                },
                "userActions": [dict(action) for action in self.user_actions],
            }
        )
        return data


def _clean_group(raw_nodes: Any, group: str) -> tuple[dict[str, Any], ...]:
    if raw_nodes is None:
        return ()
    if not isinstance(raw_nodes, list):
        log.warning(f"Session group '{group}' is not a list, treated as empty")
        return ()

    cleaned = []
    for raw in raw_nodes:
        if not isinstance(raw, dict):
            log.warning(f"Dropping non-object entry in '{group}'")
            continue
        node_id = str(raw.get("id") or "").strip()
        if not node_id:
            log.warning(f"Dropping node without id in '{group}'")
            continue
        cleaned.append(copy.deepcopy(raw))
    return tuple(cleaned)


def parse_session(data: dict[str, Any] | SessionAnalysis | None) -> SessionAnalysis:
    """Build a SessionAnalysis from a raw snapshot.

    Missing or malformed node groups become empty groups rather than
    failing the load.
    """
    if isinstance(data, SessionAnalysis):
        return data
    if not isinstance(data, dict):
        log.warning("Session payload is not an object, loading empty session")
        return SessionAnalysis()

    nodes = data.get("nodes")
    if not isinstance(nodes, dict):
        if nodes is not None:
            log.warning("Session 'nodes' is not an object, loading empty groups")
        nodes = {}

    user_actions = data.get("userActions")
    if not isinstance(user_actions, list):
        user_actions = []

    try:
        version = int(data.get("analysisVersion") or 0)
    except (TypeError, ValueError):
        version = 0

    known = {"sessionId", "timestamp", "analysisVersion", "nodes", "userActions"}
    return SessionAnalysis(
        session_id=str(data.get("sessionId") or ""),
        timestamp=str(data.get("timestamp") or ""),
        analysis_version=version,
        symptoms=_clean_group(nodes.get("symptoms"), "symptoms"),
        diagnoses=_clean_group(nodes.get("diagnoses"), "diagnoses"),
        treatments=_clean_group(nodes.get("treatments"), "treatments"),
        actions=_clean_group(nodes.get("actions"), "actions"),
        user_actions=tuple(a for a in user_actions if isinstance(a, dict)),
        extra={k: v for k, v in data.items() if k not in known},
    )


def display_name(raw: dict[str, Any]) -> str:
    for key in _NAME_KEYS:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return "unknown"


def _normalized_payload(kind: NodeKind, raw: dict[str, Any]) -> dict[str, Any]:
    payload = {k: v for k, v in raw.items() if k != "relationships"}
    if kind == NodeKind.DIAGNOSIS and "probability" in payload:
        payload["probability"] = clamp_01(payload["probability"], 0.5)
    if kind == NodeKind.SYMPTOM and "severity" in payload:
        payload["severity"] = clamp(payload["severity"], 1.0, 10.0, 5.0)
    if "confidence" in payload:
        payload["confidence"] = clamp_01(payload["confidence"], 0.5)
    return payload


def relationship_links(node_id: str, raw: dict[str, Any]) -> list[Link]:
    """Links declared by a node's embedded relationships."""
    links = []
    for rel in raw.get("relationships") or []:
        if not isinstance(rel, dict):
            continue
        target = str(rel.get("nodeId") or "").strip()
        if not target:
            continue
        strength = rel.get("strength", rel.get("confidence", 1.0))
        links.append(
            Link(
                id=generate_link_id(node_id, target),
                source=node_id,
                target=target,
                relationship=str(rel.get("relationship") or "related_to"),
                direction=parse_direction(rel.get("direction")),
                confidence=clamp_01(strength, 1.0),
                reasoning=rel.get("reasoning"),
            )
        )
    return links


def session_to_graph(session: SessionAnalysis) -> GraphModel:
    """Flatten a session snapshot into nodes and links."""
    nodes: list[Node] = []
    links: list[Link] = []

    for kind, raw in session.all_nodes():
        node_id = str(raw["id"])
        nodes.append(
            Node(
                id=node_id,
                kind=kind,
                name=display_name(raw),
                payload=_normalized_payload(kind, raw),
            )
        )
        links.extend(relationship_links(node_id, raw))

    return GraphModel(nodes, links)
