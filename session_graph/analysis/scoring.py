"""Deterministic composite scoring for follow-up questions and alerts."""

from typing import Any, Iterable

from ..graph.schema import ActionStatus, clamp, clamp_01
from ..graph.session import SessionAnalysis, session_to_graph
from .config import DEFAULT_SCORING_CONFIG, ScoringConfig
from .index import build_relationship_index
from .types import RelationshipIndex, ScoredAction


def _probabilities(session: SessionAnalysis) -> dict[str, float]:
    return {
        str(d["id"]): clamp_01(d.get("probability"), 0.0) for d in session.diagnoses
    }


def _severities(session: SessionAnalysis) -> dict[str, float]:
    return {
        str(s["id"]): clamp(s.get("severity"), 1.0, 10.0, 5.0) for s in session.symptoms
    }


def _impact_ids(action: dict[str, Any], key: str) -> list[str]:
    impact = action.get("impact")
    if not isinstance(impact, dict):
        return []
    value = impact.get(key)
    if isinstance(value, dict):
        return [str(k) for k in value]
    if isinstance(value, list):
        return [str(v) for v in value]
    return []


def _linked_ids(
    action: dict[str, Any], index: RelationshipIndex, kind: str
) -> set[str]:
    action_id = str(action.get("id") or "")
    linked = {
        edge.neighbor_id
        for edge in index.forward_edges(action_id) | index.reverse_edges(action_id)
        if edge.neighbor_kind == kind
    }
    return linked


def score_action(
    action: dict[str, Any],
    session: SessionAnalysis,
    index: RelationshipIndex | None = None,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    position: int = 0,
) -> ScoredAction:
    """Score one action with its component breakdown."""
    if index is None:
        index = build_relationship_index(session_to_graph(session))

    urgency = config.urgency_for(action.get("category"))
    severities = _severities(session)
    symptom_ids = _linked_ids(action, index, "symptom") | set(
        _impact_ids(action, "symptoms")
    )
    if any(
        severities.get(symptom_id, 0.0) >= config.high_severity_cutoff
        for symptom_id in symptom_ids
    ):
        urgency += config.high_severity_boost

    probabilities = _probabilities(session)
    diagnosis_ids = _linked_ids(action, index, "diagnosis") | set(
        _impact_ids(action, "diagnoses")
    )
    max_probability = max(
        (probabilities.get(d, 0.0) for d in diagnosis_ids), default=0.0
    )

    priority = clamp(action.get("priority"), 1.0, 10.0, config.default_priority)
    priority_score = config.priority_inversion - priority

    relevance = max_probability * config.probability_multiplier
    score = (
        config.urgency_weight * urgency
        + config.relevance_weight * relevance
        + config.priority_weight * priority_score
    )

    return ScoredAction(
        action_id=str(action.get("id") or ""),
        score=score,
        urgency_score=urgency,
        relevance_score=relevance,
        priority_score=priority_score,
        position=position,
    )


def composite_score(
    action: dict[str, Any],
    session: SessionAnalysis,
    index: RelationshipIndex | None = None,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> float:
    """Weighted urgency + diagnostic relevance + inverted priority."""
    return score_action(action, session, index, config).score


def sort_actions(
    actions: Iterable[dict[str, Any]],
    session: SessionAnalysis,
    index: RelationshipIndex | None = None,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> list[dict[str, Any]]:
    """Sort actions by descending score; ties keep their insertion order."""
    actions = list(actions)
    if not actions:
        return []
    if index is None:
        index = build_relationship_index(session_to_graph(session))

    scored = [
        (score_action(action, session, index, config, position), action)
        for position, action in enumerate(actions)
    ]
    scored.sort(key=lambda pair: (-pair[0].score, pair[0].position))
    return [action for _, action in scored]


def pending_only(actions: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Keep actions still awaiting a clinician response."""
    return [a for a in actions if a.get("status") == ActionStatus.PENDING.value]
