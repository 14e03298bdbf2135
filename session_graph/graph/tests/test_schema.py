"""Tests for graph schema helpers."""

import math

import pytest

from session_graph.graph.schema import (
    LinkDirection,
    NodeState,
    clamp,
    clamp_01,
    generate_link_id,
    parse_direction,
    parse_node_state,
    validate_link,
    validate_node_kind,
    validate_relationship,
)


class TestClamp:
    def test_within_range_unchanged(self):
        assert clamp(5, 1.0, 10.0, 7.0) == 5.0

    def test_out_of_range_clamped(self):
        assert clamp(42, 1.0, 10.0, 7.0) == 10.0
        assert clamp(-3, 1.0, 10.0, 7.0) == 1.0

    def test_non_numeric_falls_back_to_default(self):
        assert clamp(None, 1.0, 10.0, 7.0) == 7.0
        assert clamp("high", 1.0, 10.0, 7.0) == 7.0
        assert clamp(math.nan, 1.0, 10.0, 7.0) == 7.0

    def test_numeric_strings_are_accepted(self):
        assert clamp("0.4", 0.0, 1.0, 0.5) == pytest.approx(0.4)

    def test_clamp_01(self):
        assert clamp_01(1.7) == 1.0
        assert clamp_01(-0.2) == 0.0
        assert clamp_01(None, 0.5) == 0.5


class TestDirection:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("forward", LinkDirection.OUTGOING),
            ("reverse", LinkDirection.INCOMING),
            ("both", LinkDirection.BIDIRECTIONAL),
            ("outgoing", LinkDirection.OUTGOING),
            ("Incoming", LinkDirection.INCOMING),
            (None, LinkDirection.OUTGOING),
            ("sideways", LinkDirection.OUTGOING),
        ],
    )
    def test_parse_direction(self, raw, expected):
        assert parse_direction(raw) is expected

    def test_enum_passthrough(self):
        assert parse_direction(LinkDirection.BIDIRECTIONAL) is LinkDirection.BIDIRECTIONAL


def test_parse_node_state_defaults_to_pending():
    assert parse_node_state("running") is NodeState.RUNNING
    assert parse_node_state("COMPLETED") is NodeState.COMPLETED
    assert parse_node_state(None) is NodeState.PENDING
    assert parse_node_state("bogus") is NodeState.PENDING


class TestValidation:
    def test_validate_node_kind(self):
        assert validate_node_kind("symptom") is True
        assert validate_node_kind("expert") is True
        assert validate_node_kind("Symptom") is False
        assert validate_node_kind("") is False

    def test_validate_relationship(self):
        assert validate_relationship("supports") is True
        assert validate_relationship("data_flow") is True
        assert validate_relationship("loves") is False

    def test_validate_link_clinical(self):
        result = validate_link("symptom", "diagnosis", "supports")
        assert result.valid is True
        assert result.errors == []
        assert result.warnings == []

    def test_validate_link_warns_by_default(self):
        result = validate_link("symptom", "mystery", "supports")
        assert result.valid is True
        assert any("mystery" in w for w in result.warnings)

    def test_validate_link_strict_rejects(self):
        result = validate_link("symptom", "diagnosis", "loves", strict=True)
        assert result.valid is False
        assert not result
        assert any("loves" in e for e in result.errors)

    def test_validate_link_mixing_expert_and_clinical(self):
        result = validate_link("expert", "diagnosis", "data_flow", strict=True)
        assert result.valid is False


def test_generate_link_id():
    assert generate_link_id("s1", "d1") == "s1-d1"
