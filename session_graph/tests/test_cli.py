"""Tests for the session-graph CLI."""

import json

import pytest
from click.testing import CliRunner

from session_graph.cli import cli
from session_graph.config import DEFAULT_FLOW


def rel(node_id, relationship):
    return {"nodeId": node_id, "relationship": relationship, "direction": "outgoing", "strength": 0.8}


SESSION = {
    "sessionId": "sess-1",
    "nodes": {
        "symptoms": [
            {"id": "s1", "text": "Chest pain", "severity": 8, "relationships": [rel("d1", "supports")]},
            {"id": "s2", "text": "Cough", "severity": 2},
        ],
        "diagnoses": [{"id": "d1", "name": "ACS", "probability": 0.7}],
        "treatments": [],
        "actions": [
            {
                "id": "q1",
                "actionType": "question",
                "category": "symptom_exploration",
                "status": "answered",
                "question": "Any fever?",
            },
            {
                "id": "q2",
                "actionType": "question",
                "category": "red_flag",
                "status": "pending",
                "question": "Does the pain radiate?",
                "relationships": [rel("s1", "explores")],
            },
        ],
    },
}

EVENTS = [
    {"type": "node_started", "nodeId": "gp"},
    {"type": "node_completed", "nodeId": "gp", "duration": 800, "cost": 0.03},
    {"type": "expert_triggered", "parentId": "gp", "expertId": "cardio_1", "expertName": "Cardiology"},
    {"type": "nonsense"},
]


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def session_file(tmp_path):
    path = tmp_path / "session.json"
    path.write_text(json.dumps(SESSION), encoding="utf-8")
    return path


def test_replay_summary(runner, tmp_path):
    path = tmp_path / "events.json"
    path.write_text(json.dumps(EVENTS), encoding="utf-8")

    result = runner.invoke(cli, ["replay", str(path)])

    assert result.exit_code == 0, result.output
    assert "Events: 4  Applied: 3  Skipped: 1" in result.output
    assert "Nodes: 5  Completed: 1" in result.output
    assert "Graph: 5 nodes (expert=5), 4 links" in result.output


def test_replay_jsonl_as_json(runner, tmp_path):
    path = tmp_path / "events.jsonl"
    path.write_text("\n".join(json.dumps(e) for e in EVENTS[:3]) + "\n", encoding="utf-8")

    result = runner.invoke(cli, ["replay", str(path), "--json"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    nodes = {n["id"]: n for n in data["nodes"]}
    assert nodes["gp"]["state"] == "completed"
    assert nodes["cardio_1"]["role"] == "specialist"
    assert "gp-consensus_merger" not in {l["id"] for l in data["links"]}


def test_replay_invalid_json(runner, tmp_path):
    path = tmp_path / "events.json"
    path.write_text("{not json", encoding="utf-8")
    result = runner.invoke(cli, ["replay", str(path)])
    assert result.exit_code != 0
    assert "Invalid JSON" in result.output


def test_layout(runner, tmp_path):
    path = tmp_path / "flow.json"
    path.write_text(json.dumps(DEFAULT_FLOW), encoding="utf-8")

    result = runner.invoke(cli, ["layout", str(path)])

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0].startswith("L0") and "input" in lines[0]
    assert "4 nodes, 3 links" in result.output


def test_questions_ranked(runner, session_file):
    result = runner.invoke(cli, ["questions", str(session_file)])
    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert "Does the pain radiate?" in lines[0]
    assert "Any fever?" in lines[1]

    pending = runner.invoke(cli, ["questions", str(session_file), "--pending"])
    assert "Any fever?" not in pending.output


def test_filter(runner, session_file):
    result = runner.invoke(cli, ["filter", str(session_file)])
    assert result.exit_code == 0, result.output
    assert "Hidden: symptoms=1 diagnoses=1 treatments=0" in result.output

    relaxed = runner.invoke(cli, ["filter", str(session_file), "--symptoms", "10"])
    assert "Hidden: symptoms=0 diagnoses=0 treatments=0" in relaxed.output
    assert "ACS" in relaxed.output


def test_path(runner, session_file):
    result = runner.invoke(cli, ["path", str(session_file), "s1"])
    assert result.exit_code == 0, result.output
    assert "Path from Chest pain" in result.output
    assert "ACS (d1)" in result.output

    isolated = runner.invoke(cli, ["path", str(session_file), "s2"])
    assert "No relationships for s2" in isolated.output


def test_diff(runner, tmp_path, session_file):
    changed = json.loads(json.dumps(SESSION))
    changed["nodes"]["symptoms"][1]["severity"] = 5
    changed["nodes"]["diagnoses"].append({"id": "d2", "name": "Pneumonia"})
    new_file = tmp_path / "session-2.json"
    new_file.write_text(json.dumps(changed), encoding="utf-8")

    result = runner.invoke(cli, ["diff", str(session_file), str(new_file)])

    assert result.exit_code == 0, result.output
    assert "symptoms: updated=s2" in result.output
    assert "diagnoses: added=d2" in result.output
    assert "added=1 removed=0 updated=1" in result.output


def test_config_option(runner, tmp_path):
    config = tmp_path / "engine.yaml"
    config.write_text("layout:\n  layer_spacing: 100\n", encoding="utf-8")
    flow = tmp_path / "flow.json"
    flow.write_text(json.dumps(DEFAULT_FLOW), encoding="utf-8")

    result = runner.invoke(cli, ["--config", str(config), "layout", str(flow)])

    assert result.exit_code == 0, result.output
    assert "340.0" in result.output


def test_bad_config_exits(runner, tmp_path, session_file):
    config = tmp_path / "engine.yaml"
    config.write_text("layout: [oops", encoding="utf-8")
    result = runner.invoke(cli, ["--config", str(config), "filter", str(session_file)])
    assert result.exit_code != 0
    assert "Invalid YAML" in result.output
