"""Tests for session snapshot parsing and graph conversion."""

from session_graph.graph.schema import LinkDirection, NodeKind
from session_graph.graph.session import (
    SessionAnalysis,
    display_name,
    parse_session,
    session_to_graph,
)


def sample_session() -> dict:
    return {
        "sessionId": "sess-1",
        "timestamp": "2026-10-18T09:00:00Z",
        "analysisVersion": 3,
        "nodes": {
            "symptoms": [
                {
                    "id": "s1",
                    "text": "Chest pain",
                    "severity": 14,
                    "relationships": [
                        {
                            "nodeId": "d1",
                            "relationship": "supports",
                            "direction": "outgoing",
                            "strength": 0.8,
                        }
                    ],
                }
            ],
            "diagnoses": [{"id": "d1", "name": "ACS", "probability": 1.4}],
            "treatments": [],
            "actions": [
                {"id": "q1", "actionType": "question", "status": "pending"},
            ],
        },
        "userActions": [],
        "source": "scribe",
    }


def test_parse_session_reads_groups_and_metadata():
    session = parse_session(sample_session())
    assert session.session_id == "sess-1"
    assert session.analysis_version == 3
    assert [s["id"] for s in session.symptoms] == ["s1"]
    assert session.treatments == ()
    assert session.extra == {"source": "scribe"}


def test_parse_session_passthrough():
    session = SessionAnalysis(session_id="x")
    assert parse_session(session) is session


def test_malformed_groups_become_empty(caplog):
    session = parse_session(
        {
            "nodes": {
                "symptoms": "not a list",
                "diagnoses": [{"name": "no id"}, "junk", {"id": "d1"}],
            }
        }
    )
    assert session.symptoms == ()
    assert [d["id"] for d in session.diagnoses] == ["d1"]
    assert session.actions == ()
    assert "not a list" in caplog.text


def test_non_mapping_payload_loads_empty_session():
    assert parse_session(None) == SessionAnalysis()
    assert parse_session(["nope"]).all_nodes() == []


def test_parse_session_copies_input():
    raw = sample_session()
    session = parse_session(raw)
    raw["nodes"]["symptoms"][0]["text"] = "mutated"
    assert session.symptoms[0]["text"] == "Chest pain"


def test_display_name_fallbacks():
    assert display_name({"name": " ACS "}) == "ACS"
    assert display_name({"text": "Cough"}) == "Cough"
    assert display_name({"id": "s9"}) == "s9"
    assert display_name({}) == "unknown"


def test_session_to_graph_builds_nodes_and_links():
    graph = session_to_graph(parse_session(sample_session()))
    assert len(graph) == 3
    assert graph.get_node("q1").kind is NodeKind.ACTION
    assert graph.get_node("q1").action_type == "question"

    link = graph.get_link("s1-d1")
    assert link.relationship == "supports"
    assert link.direction is LinkDirection.OUTGOING
    assert link.confidence == 0.8


def test_session_to_graph_clamps_values():
    graph = session_to_graph(parse_session(sample_session()))
    assert graph.get_node("s1").payload["severity"] == 10.0
    assert graph.get_node("d1").payload["probability"] == 1.0
    assert "relationships" not in graph.get_node("s1").payload


def test_to_dict_round_trips_groups():
    session = parse_session(sample_session())
    data = session.to_dict()
    assert data["sessionId"] == "sess-1"
    assert data["source"] == "scribe"
    assert parse_session(data) == session
