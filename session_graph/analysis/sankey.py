"""Transform a session snapshot into the column-based flow view."""

import logging
from typing import Any

import networkx as nx

from ..graph.schema import clamp, clamp_01
from ..graph.session import SessionAnalysis, display_name
from .config import DEFAULT_SANKEY_CONFIG, SankeyConfig
from .types import SankeyLink, SankeyNode, SankeyView

log = logging.getLogger(__name__)

SOURCE_ORDER = {
    "transcript": 1,
    "medical_history": 2,
    "family_history": 3,
    "social_history": 4,
    "medication_history": 5,
    "suspected": 6,
}

# (source type, target type) -> relationship tags that flow left to right
FORWARD_FLOWS: dict[tuple[str, str], frozenset[str]] = {
    ("symptom", "diagnosis"): frozenset({"supports", "suggests", "indicates", "confirms"}),
    ("diagnosis", "treatment"): frozenset({"requires", "treats", "manages"}),
}
# Drawn reversed (diagnosis -> treatment) to keep the flow left to right.
INVESTIGATION_FLOWS: dict[tuple[str, str], frozenset[str]] = {
    ("treatment", "diagnosis"): frozenset({"investigates", "clarifies", "explores"}),
}


def node_value(
    weight: float, probability: float, config: SankeyConfig = DEFAULT_SANKEY_CONFIG
) -> float:
    """Node height from a 1-10 importance weight and a 0-1 probability."""
    weight = clamp(weight, 1.0, 10.0, 5.0)
    probability = clamp_01(probability, 0.5)
    return (
        config.min_height
        + weight * config.priority_multiplier
        + probability * config.probability_multiplier * weight
    )


def _number(raw: dict[str, Any], key: str, default: float) -> float:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def _symptom_nodes(session: SessionAnalysis, config: SankeyConfig) -> list[SankeyNode]:
    symptoms = sorted(
        session.symptoms,
        key=lambda s: (
            -_number(s, "severity", 5.0),
            SOURCE_ORDER.get(s.get("source"), 999),
            display_name(s).lower(),
        ),
    )
    nodes = []
    for index, symptom in enumerate(symptoms):
        severity = _number(symptom, "severity", 5.0)
        confidence = _number(symptom, "confidence", 0.5)
        nodes.append(
            SankeyNode(
                id=str(symptom["id"]),
                name=display_name(symptom),
                type="symptom",
                column=0,
                priority=severity,
                confidence=confidence,
                value=node_value(severity, confidence, config),
                data=symptom,
                source=symptom.get("source") or "transcript",
                sort_index=index,
            )
        )
    return nodes


def _ranked_nodes(
    raw_nodes: tuple[dict[str, Any], ...],
    node_type: str,
    column: int,
    probability_key: str,
    config: SankeyConfig,
) -> list[SankeyNode]:
    def value_of(raw: dict[str, Any]) -> float:
        # Priority 1 is most important, so it carries the largest weight.
        priority = _number(raw, "priority", 5.0)
        return node_value(11.0 - priority, _number(raw, probability_key, 0.5), config)

    ordered = sorted(raw_nodes, key=lambda raw: -value_of(raw))
    nodes = []
    for index, raw in enumerate(ordered):
        probability = _number(raw, probability_key, 0.5)
        nodes.append(
            SankeyNode(
                id=str(raw["id"]),
                name=display_name(raw),
                type=node_type,
                column=column,
                priority=_number(raw, "priority", 5.0),
                confidence=_number(raw, "confidence", probability),
                value=value_of(raw),
                data=raw,
                probability=probability if node_type == "diagnosis" else None,
                sort_index=index,
            )
        )
    return nodes


def _relationship_links(
    nodes: dict[str, SankeyNode], config: SankeyConfig
) -> list[SankeyLink]:
    links = []
    for source in nodes.values():
        for rel in source.data.get("relationships") or []:
            if not isinstance(rel, dict) or rel.get("direction") != "outgoing":
                continue
            target = nodes.get(str(rel.get("nodeId") or ""))
            if target is None:
                continue

            relationship = str(rel.get("relationship") or "")
            pair = (source.type, target.type)
            if relationship in FORWARD_FLOWS.get(pair, ()):
                start, end = source.id, target.id
            elif relationship in INVESTIGATION_FLOWS.get(pair, ()):
                start, end = target.id, source.id
            else:
                continue

            strength = clamp_01(rel.get("strength"), 0.5)
            links.append(
                SankeyLink(
                    source=start,
                    target=end,
                    value=max(1.0, strength * config.link_value_scale),
                    type=relationship,
                    strength=strength,
                    direction="outgoing",
                    reasoning=rel.get("reasoning"),
                )
            )
    return links


def _investigative_links(
    session: SessionAnalysis, nodes: dict[str, SankeyNode], config: SankeyConfig
) -> list[SankeyLink]:
    """Links from a diagnosis to the diagnoses an action's answer would move.

    The source is the diagnosis that requires or treats the treatment the
    action investigates.
    """
    links = []
    for action in session.actions:
        impact = action.get("impact")
        if not isinstance(impact, dict) or not isinstance(impact.get("diagnoses"), dict):
            continue

        source_id = None
        for rel in action.get("relationships") or []:
            if not isinstance(rel, dict) or rel.get("relationship") != "investigates":
                continue
            investigated = nodes.get(str(rel.get("nodeId") or ""))
            if investigated is None or investigated.type != "treatment":
                continue
            for candidate in nodes.values():
                if candidate.type != "diagnosis":
                    continue
                for candidate_rel in candidate.data.get("relationships") or []:
                    if (
                        isinstance(candidate_rel, dict)
                        and candidate_rel.get("nodeId") == investigated.id
                        and candidate_rel.get("relationship") in ("requires", "treats")
                    ):
                        source_id = candidate.id

        if source_id is None:
            continue

        for diagnosis_id, impact_value in impact["diagnoses"].items():
            if diagnosis_id not in nodes or diagnosis_id == source_id:
                continue
            try:
                magnitude = abs(float(impact_value))
            except (TypeError, ValueError):
                continue
            if magnitude == 0:
                continue
            links.append(
                SankeyLink(
                    source=source_id,
                    target=diagnosis_id,
                    value=magnitude * config.impact_value_scale,
                    type="investigates",
                    strength=clamp_01(magnitude),
                    direction="outgoing",
                    reasoning=f"Investigative pathway via {action.get('id')}",
                )
            )
    return links


def remove_cycles(links: list[SankeyLink], node_ids: list[str]) -> list[SankeyLink]:
    """Drop self-loops, duplicates and any link that would close a cycle."""
    graph = nx.DiGraph()
    graph.add_nodes_from(node_ids)
    kept = []
    for link in links:
        if link.source not in graph or link.target not in graph:
            continue
        if link.source == link.target or graph.has_edge(link.source, link.target):
            continue
        if nx.has_path(graph, link.target, link.source):
            log.debug(f"Skipping link {link.source} -> {link.target} to prevent cycle")
            continue
        graph.add_edge(link.source, link.target)
        kept.append(link)
    return kept


def transform_to_sankey(
    session: SessionAnalysis, config: SankeyConfig = DEFAULT_SANKEY_CONFIG
) -> SankeyView:
    """Build the symptom -> diagnosis -> treatment flow view of a session."""
    nodes = (
        _symptom_nodes(session, config)
        + _ranked_nodes(session.diagnoses, "diagnosis", 1, "probability", config)
        + _ranked_nodes(session.treatments, "treatment", 2, "effectiveness", config)
    )
    by_id = {node.id: node for node in nodes}

    links = _relationship_links(by_id, config) + _investigative_links(
        session, by_id, config
    )
    links = remove_cycles(links, [node.id for node in nodes])

    return SankeyView(
        nodes=tuple(nodes),
        links=tuple(links),
        metadata={
            "sessionId": session.session_id,
            "analysisVersion": session.analysis_version,
            "timestamp": session.timestamp,
        },
    )
