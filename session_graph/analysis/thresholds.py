"""Per-kind visibility filtering of the flow view."""

import logging
from typing import Any

from .config import DEFAULT_THRESHOLD_CONFIG, ThresholdConfig
from .types import FilterResult, HiddenCounts, SankeyNode, SankeyView

log = logging.getLogger(__name__)

# A node of this type stays visible only while a visible node of the mapped
# type feeds into it.
UPSTREAM_TYPE = {"diagnosis": "symptom", "treatment": "diagnosis"}


def _value(data: dict[str, Any], key: str, default: float) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def passes_threshold(node: SankeyNode, config: ThresholdConfig) -> bool:
    """True when the node survives its kind's cutoff.

    Other node types are always shown.
    """
    if node.type == "symptom":
        if config.symptoms.show_all:
            return True
        return _value(node.data, "severity", 5.0) <= config.symptoms.severity_threshold
    if node.type == "diagnosis":
        if config.diagnoses.show_all:
            return True
        return (
            _value(node.data, "probability", 0.5)
            >= config.diagnoses.probability_threshold
        )
    if node.type == "treatment":
        if config.treatments.show_all:
            return True
        return (
            _value(node.data, "priority", 5.0) <= config.treatments.priority_threshold
        )
    return True


def prune_orphans(
    nodes: list[SankeyNode], view: SankeyView, visible_ids: set[str]
) -> set[str]:
    """Repeatedly hide diagnoses and treatments that lost every upstream feed.

    Returns the ids removed. Symptoms are only ever hidden by threshold.
    """
    by_id = {node.id: node for node in nodes}
    feeders: dict[str, set[str]] = {}
    for link in view.links:
        feeders.setdefault(link.target, set()).add(link.source)

    removed: set[str] = set()
    changed = True
    while changed:
        changed = False
        for node_id in sorted(visible_ids - removed):
            upstream = UPSTREAM_TYPE.get(by_id[node_id].type)
            if upstream is None:
                continue
            fed = any(
                source in visible_ids
                and source not in removed
                and by_id[source].type == upstream
                for source in feeders.get(node_id, ())
            )
            if not fed:
                removed.add(node_id)
                changed = True
    return removed


def apply_thresholds(
    view: SankeyView, config: ThresholdConfig = DEFAULT_THRESHOLD_CONFIG
) -> FilterResult:
    """Return the visible subset of a view plus per-kind hidden counts.

    The input view is not modified. Links are kept only when both endpoints
    remain visible.
    """
    if config.shows_everything:
        return FilterResult(visible=view, hidden_counts=HiddenCounts())

    hidden = {"symptom": 0, "diagnosis": 0, "treatment": 0}
    kept: list[SankeyNode] = []
    for node in view.nodes:
        if passes_threshold(node, config):
            kept.append(node)
        elif node.type in hidden:
            hidden[node.type] += 1

    visible_ids = {node.id for node in kept}
    if config.prune_orphans:
        orphans = prune_orphans(kept, view, visible_ids)
        for node in kept:
            if node.id in orphans:
                hidden[node.type] += 1
        kept = [node for node in kept if node.id not in orphans]
        visible_ids -= orphans

    links = tuple(
        link
        for link in view.links
        if link.source in visible_ids and link.target in visible_ids
    )
    counts = HiddenCounts(
        symptoms=hidden["symptom"],
        diagnoses=hidden["diagnosis"],
        treatments=hidden["treatment"],
    )
    log.debug(f"Threshold filter kept {len(kept)}/{len(view.nodes)} nodes")
    return FilterResult(
        visible=SankeyView(nodes=tuple(kept), links=links, metadata=view.metadata),
        hidden_counts=counts,
    )
