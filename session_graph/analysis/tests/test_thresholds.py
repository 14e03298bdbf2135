"""Tests for threshold filtering of the flow view."""

import pytest

from session_graph.analysis.config import (
    DiagnosisThreshold,
    SymptomThreshold,
    ThresholdConfig,
    TreatmentThreshold,
)
from session_graph.analysis.sankey import transform_to_sankey
from session_graph.analysis.thresholds import apply_thresholds, passes_threshold
from session_graph.analysis.types import HiddenCounts
from session_graph.graph.session import parse_session


def rel(node_id, relationship):
    return {"nodeId": node_id, "relationship": relationship, "direction": "outgoing", "strength": 0.5}


@pytest.fixture
def view():
    session = parse_session(
        {
            "nodes": {
                "symptoms": [
                    {"id": "s1", "severity": 8, "relationships": [rel("d1", "supports")]},
                    {"id": "s2", "severity": 4, "relationships": [rel("d2", "suggests")]},
                ],
                "diagnoses": [
                    {"id": "d1", "probability": 0.7, "relationships": [rel("t1", "requires")]},
                    {"id": "d2", "probability": 0.2, "relationships": [rel("t2", "treats")]},
                ],
                "treatments": [
                    {"id": "t1", "priority": 1},
                    {"id": "t2", "priority": 6},
                ],
            }
        }
    )
    return transform_to_sankey(session)


def ids(result):
    return {node.id for node in result.visible.nodes}


def test_defaults():
    config = ThresholdConfig()
    assert config.symptoms.severity_threshold == 7
    assert config.symptoms.show_all is False
    assert config.diagnoses.probability_threshold == 0.35
    assert config.treatments.priority_threshold == 10
    assert config.treatments.show_all is True
    assert config.prune_orphans is True


def test_values_are_clamped_on_write():
    config = ThresholdConfig().with_symptom_threshold(40).with_diagnosis_threshold(-1)
    assert config.symptoms.severity_threshold == 10
    assert config.diagnoses.probability_threshold == 0


def test_polarity(view):
    by_id = {node.id: node for node in view.nodes}
    config = ThresholdConfig(
        symptoms=SymptomThreshold(severity_threshold=6),
        diagnoses=DiagnosisThreshold(probability_threshold=0.5),
        treatments=TreatmentThreshold(priority_threshold=5, show_all=False),
    )
    # symptoms: ceiling on severity
    assert passes_threshold(by_id["s2"], config) is True
    assert passes_threshold(by_id["s1"], config) is False
    # diagnoses: floor on probability
    assert passes_threshold(by_id["d1"], config) is True
    assert passes_threshold(by_id["d2"], config) is False
    # treatments: ceiling on priority
    assert passes_threshold(by_id["t1"], config) is True
    assert passes_threshold(by_id["t2"], config) is False


def test_orphans_are_pruned_down_the_chain(view):
    result = apply_thresholds(view, ThresholdConfig())
    # s1 is too severe for the default ceiling, so d1 and t1 lose their feed
    assert ids(result) == {"s2"}
    assert result.hidden_counts == HiddenCounts(symptoms=1, diagnoses=2, treatments=2)
    assert result.visible.links == ()


def test_without_orphan_pruning(view):
    result = apply_thresholds(view, ThresholdConfig(prune_orphans=False))
    assert ids(result) == {"s2", "d1", "t1", "t2"}
    assert result.hidden_counts == HiddenCounts(symptoms=1, diagnoses=1, treatments=0)
    assert {(l.source, l.target) for l in result.visible.links} == {("d1", "t1")}


def test_raising_symptom_ceiling_restores_chain(view):
    result = apply_thresholds(view, ThresholdConfig().with_symptom_threshold(10))
    assert ids(result) == {"s1", "s2", "d1", "t1"}
    assert result.hidden_counts.total == 2
    assert {(l.source, l.target) for l in result.visible.links} == {("s1", "d1"), ("d1", "t1")}


def test_links_only_between_visible_nodes(view):
    result = apply_thresholds(view, ThresholdConfig(prune_orphans=False))
    visible = ids(result)
    for link in result.visible.links:
        assert link.source in visible and link.target in visible


def test_show_all_everywhere_returns_view_unchanged(view):
    config = ThresholdConfig().toggled("symptoms").toggled("diagnoses")
    assert config.shows_everything
    result = apply_thresholds(view, config)
    assert result.visible is view
    assert result.hidden_counts.total == 0


def test_input_is_not_mutated(view):
    before = (view.nodes, view.links)
    apply_thresholds(view, ThresholdConfig())
    assert (view.nodes, view.links) == before
