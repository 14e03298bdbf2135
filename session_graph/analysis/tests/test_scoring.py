"""Tests for composite question scoring."""

import pytest

from session_graph.analysis.config import ScoringConfig
from session_graph.analysis.index import build_relationship_index
from session_graph.analysis.scoring import (
    composite_score,
    pending_only,
    score_action,
    sort_actions,
)
from session_graph.graph.session import parse_session, session_to_graph


def make_session(actions):
    return parse_session(
        {
            "sessionId": "sess-1",
            "nodes": {
                "symptoms": [
                    {"id": "s1", "text": "Chest pain", "severity": 8},
                    {"id": "s2", "text": "Nausea", "severity": 4},
                ],
                "diagnoses": [
                    {"id": "d1", "name": "ACS", "probability": 0.7},
                    {"id": "d2", "name": "GERD", "probability": 0.2},
                ],
                "treatments": [],
                "actions": actions,
            },
        }
    )


RED_FLAG = {
    "id": "q1",
    "actionType": "question",
    "category": "red_flag",
    "status": "pending",
    "priority": 2,
    "relationships": [{"nodeId": "s1", "relationship": "explores"}],
    "impact": {"diagnoses": {"d1": 0.3}},
}
EXPLORATION = {
    "id": "q2",
    "actionType": "question",
    "category": "symptom_exploration",
    "status": "answered",
    "priority": 5,
    "relationships": [{"nodeId": "d2", "relationship": "clarifies"}],
}


def test_score_components():
    session = make_session([RED_FLAG, EXPLORATION])
    scored = score_action(RED_FLAG, session)

    # red_flag (10) + high-severity boost (3)
    assert scored.urgency_score == pytest.approx(13.0)
    assert scored.relevance_score == pytest.approx(7.0)
    assert scored.priority_score == pytest.approx(9.0)
    assert scored.score == pytest.approx(0.4 * 13 + 0.4 * 7 + 0.2 * 9)


def test_low_severity_link_gets_no_boost():
    session = make_session([EXPLORATION])
    scored = score_action(EXPLORATION, session)
    assert scored.urgency_score == pytest.approx(5.0)
    assert scored.relevance_score == pytest.approx(2.0)
    assert composite_score(EXPLORATION, session) == pytest.approx(4.0)


def test_unknown_category_and_missing_priority_use_defaults():
    action = {"id": "q3", "actionType": "question", "category": "small_talk"}
    session = make_session([action])
    scored = score_action(action, session)
    assert scored.urgency_score == 3.0
    assert scored.relevance_score == 0.0
    assert scored.priority_score == 6.0


def test_sort_is_descending_by_score():
    session = make_session([EXPLORATION, RED_FLAG])
    ordered = sort_actions(session.actions, session)
    assert [a["id"] for a in ordered] == ["q1", "q2"]


def test_sort_ties_keep_insertion_order():
    first = {"id": "a", "actionType": "question", "priority": 5}
    second = {"id": "b", "actionType": "question", "priority": 5}
    session = make_session([first, second])
    assert [a["id"] for a in sort_actions([first, second], session)] == ["a", "b"]
    assert [a["id"] for a in sort_actions([second, first], session)] == ["b", "a"]


def test_sort_is_deterministic_with_shared_index():
    session = make_session([RED_FLAG, EXPLORATION])
    index = build_relationship_index(session_to_graph(session))
    runs = {tuple(a["id"] for a in sort_actions(session.actions, session, index)) for _ in range(5)}
    assert runs == {("q1", "q2")}


def test_custom_weights():
    session = make_session([RED_FLAG])
    config = ScoringConfig(urgency_weight=1.0, relevance_weight=0.0, priority_weight=0.0)
    assert composite_score(RED_FLAG, session, config=config) == pytest.approx(13.0)


def test_pending_only():
    assert [a["id"] for a in pending_only([RED_FLAG, EXPLORATION])] == ["q1"]
    assert sort_actions([], make_session([])) == []
