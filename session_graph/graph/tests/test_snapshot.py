"""Tests for session snapshot hashing and diff."""

from session_graph.graph.snapshot import diff_snapshots, normalize_snapshot, session_hash


def snapshot(symptoms, diagnoses=()):
    return {
        "sessionId": "sess-1",
        "nodes": {"symptoms": list(symptoms), "diagnoses": list(diagnoses)},
    }


def test_hash_is_stable_for_ordering():
    a = snapshot([{"id": "s1", "text": "A"}, {"id": "s2", "text": "B"}])
    b = snapshot([{"id": "s2", "text": "B"}, {"id": "s1", "text": "A"}])
    assert session_hash(a) == session_hash(b)


def test_hash_changes_with_content():
    a = snapshot([{"id": "s1", "severity": 4}])
    b = snapshot([{"id": "s1", "severity": 5}])
    assert session_hash(a) != session_hash(b)


def test_normalize_sorts_by_id():
    norm = normalize_snapshot(snapshot([{"id": "b"}, {"id": "a"}]))
    assert [n["id"] for n in norm["nodes"]["symptoms"]] == ["a", "b"]
    assert norm["nodes"]["actions"] == []


def test_diff_reports_changes_per_group():
    old = snapshot(
        [{"id": "s1", "severity": 4}, {"id": "s2"}],
        [{"id": "d1", "probability": 0.2}],
    )
    new = snapshot(
        [{"id": "s1", "severity": 6}, {"id": "s3"}],
        [{"id": "d1", "probability": 0.2}],
    )

    diff = diff_snapshots(old, new)

    assert diff["nodes"]["symptoms"] == {
        "added": ["s3"],
        "removed": ["s2"],
        "updated": ["s1"],
    }
    assert diff["nodes"]["diagnoses"] == {"added": [], "removed": [], "updated": []}
    assert diff["summary"] == {"added": 1, "removed": 1, "updated": 1}
    assert diff["changed"] is True


def test_diff_of_identical_snapshots_is_empty():
    data = snapshot([{"id": "s1"}])
    assert diff_snapshots(data, data)["changed"] is False
