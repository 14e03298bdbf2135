"""Tests for the layered layout engine."""

import pytest

from session_graph.config import DEFAULT_FLOW
from session_graph.layout.engine import (
    DynamicLayoutEngine,
    InsertBetween,
    LayoutConfig,
    LayoutLink,
    LayoutNode,
    NodeAdditionOptions,
)


def positions(nodes):
    return {node.id: (node.layer, node.x, node.y) for node in nodes}


def flow_of(engine):
    """Rebuild a declarative flow from the engine's current topology."""
    return {
        "nodes": [{"id": n.id, "name": n.name, "type": n.type} for n in engine.nodes],
        "connections": [
            {"id": l.id, "from": l.source, "to": l.target, "type": l.type}
            for l in engine.links
        ],
    }


@pytest.fixture
def engine():
    engine = DynamicLayoutEngine()
    engine.generate_layout(DEFAULT_FLOW)
    return engine


class TestLayoutConfig:
    def test_layer_x(self):
        config = LayoutConfig()
        assert config.layer_x(0) == 40
        assert config.layer_x(2) == 40 + 2 * 180

    def test_single_node_is_centred(self):
        assert LayoutConfig().layer_ys(1) == [400.0]

    def test_even_spacing(self):
        ys = LayoutConfig().layer_ys(3)
        assert ys == pytest.approx([220.0, 400.0, 580.0])

    def test_crowded_layer_keeps_min_spacing(self):
        ys = LayoutConfig(height=200).layer_ys(4)
        gaps = {round(b - a, 6) for a, b in zip(ys, ys[1:])}
        assert gaps == {80.0}


class TestGenerateLayout:
    def test_layers_follow_topological_depth(self, engine):
        layers = {node.id: node.layer for node in engine.nodes}
        assert layers == {"input": 0, "gp": 1, "consensus_merger": 2, "output": 3}

    def test_relations_are_derived(self, engine):
        gp = engine.get_node("gp")
        assert gp.parent_nodes == ("input",)
        assert gp.child_nodes == ("consensus_merger",)

    def test_connection_ids_default_to_source_target(self, engine):
        assert {l.id for l in engine.links} == {
            "input-gp",
            "gp-consensus_merger",
            "consensus_merger-output",
        }

    def test_inputs_and_outputs_imply_links(self):
        engine = DynamicLayoutEngine()
        result = engine.generate_layout(
            {
                "nodes": [
                    {"id": "a"},
                    {"id": "b", "inputs": ["a"]},
                    {"id": "c", "inputs": ["b"], "outputs": ["d"]},
                    {"id": "d"},
                ],
                "connections": [{"from": "a", "to": "b", "type": "triggers"}],
            }
        )
        assert {l.id: l.type for l in result.links} == {
            "a-b": "triggers",
            "b-c": "data_flow",
            "c-d": "data_flow",
        }
        assert result.node_map()["d"].layer == 3

    def test_cycle_closing_link_is_kept_but_ignored(self):
        engine = DynamicLayoutEngine()
        result = engine.generate_layout(
            {
                "nodes": [{"id": "a"}, {"id": "b"}],
                "connections": [{"from": "a", "to": "b"}, {"from": "b", "to": "a"}],
            }
        )
        assert {l.id for l in result.links} == {"a-b", "b-a"}
        assert engine.ignored_links() == ["b-a"]
        assert result.node_map()["b"].layer == 1

    def test_siblings_share_a_column(self):
        engine = DynamicLayoutEngine()
        result = engine.generate_layout(
            {
                "nodes": [{"id": "root"}, {"id": "x"}, {"id": "y"}],
                "connections": [{"from": "root", "to": "x"}, {"from": "root", "to": "y"}],
            }
        )
        nodes = result.node_map()
        assert nodes["x"].x == nodes["y"].x == 40 + 180
        assert nodes["x"].y < nodes["y"].y


class TestInsertBetween:
    def test_splices_into_parent_child_edge(self, engine):
        result = engine.add_node(
            LayoutNode(id="cardio_1", name="Cardiology", type="specialist"),
            NodeAdditionOptions(
                insert_between=InsertBetween(parents=("gp",), children=("consensus_merger",))
            ),
        )
        link_ids = {l.id for l in result.links}
        assert "gp-consensus_merger" not in link_ids
        assert {"gp-cardio_1", "cardio_1-consensus_merger"} <= link_ids

        nodes = result.node_map()
        assert nodes["cardio_1"].layer == 2
        assert nodes["consensus_merger"].layer == 3
        assert nodes["output"].layer == 4
        assert nodes["cardio_1"].parent_nodes == ("gp",)

    def test_unaffected_nodes_keep_coordinates(self, engine):
        before = positions(engine.nodes)
        result = engine.add_node(
            LayoutNode(id="cardio_1"),
            NodeAdditionOptions(
                insert_between=InsertBetween(parents=("gp",), children=("consensus_merger",))
            ),
        )
        after = positions(result.nodes)
        assert after["input"] == before["input"]
        assert after["gp"] == before["gp"]
        assert "input" not in result.repositioned
        assert "cardio_1" in result.repositioned

    def test_incremental_equals_full_recompute(self, engine):
        for expert in ("cardio_1", "neuro_1", "pulm_1"):
            engine.add_node(
                LayoutNode(id=expert),
                NodeAdditionOptions(
                    insert_between=InsertBetween(parents=("gp",), children=("consensus_merger",))
                ),
            )
        engine.add_link(LayoutLink(id="input-pulm_1", source="input", target="pulm_1"))
        incremental = positions(engine.nodes)

        fresh = DynamicLayoutEngine()
        full = positions(fresh.generate_layout(flow_of(engine)).nodes)
        assert incremental == full

    def test_parallel_experts_share_a_layer(self, engine):
        for expert in ("cardio_1", "neuro_1"):
            result = engine.add_node(
                LayoutNode(id=expert),
                NodeAdditionOptions(
                    insert_between=InsertBetween(parents=("gp",), children=("consensus_merger",))
                ),
            )
        nodes = result.node_map()
        assert nodes["cardio_1"].layer == nodes["neuro_1"].layer == 2
        assert nodes["consensus_merger"].layer == 3
        assert nodes["cardio_1"].y != nodes["neuro_1"].y

    def test_unresolvable_insertion_stores_without_reposition(self, engine, caplog):
        result = engine.add_node(
            LayoutNode(id="orphan", x=5.0, y=6.0),
            NodeAdditionOptions(
                insert_between=InsertBetween(parents=("ghost",), children=("phantom",))
            ),
        )
        orphan = result.node_map()["orphan"]
        assert (orphan.x, orphan.y) == (5.0, 6.0)
        assert "orphan" not in result.repositioned
        assert "ghost" in caplog.text

    def test_unplaced_node_holds_no_layer_slot(self, engine):
        engine.add_node(
            LayoutNode(id="orphan", x=5.0, y=6.0),
            NodeAdditionOptions(insert_between=InsertBetween(parents=("ghost",))),
        )
        result = engine.resize(1600, 1000)
        nodes = result.node_map()
        assert nodes["input"].y == pytest.approx(500.0)
        assert (nodes["orphan"].x, nodes["orphan"].y) == (5.0, 6.0)

    def test_linking_unplaced_node_places_it(self, engine):
        engine.add_node(
            LayoutNode(id="orphan", x=5.0, y=6.0),
            NodeAdditionOptions(insert_between=InsertBetween(parents=("ghost",))),
        )
        before = positions(engine.nodes)

        result = engine.add_link(LayoutLink(id="output-orphan", source="output", target="orphan"))

        orphan = result.node_map()["orphan"]
        assert orphan.layer == 4
        assert (orphan.x, orphan.y) == (40 + 4 * 180, 400.0)
        after = positions(result.nodes)
        assert all(after[n] == before[n] for n in before if n != "orphan")


class TestIncrementalOperations:
    def test_add_node_with_declared_parents(self, engine):
        result = engine.add_node(LayoutNode(id="safety", parent_nodes=("gp",), child_nodes=("ghost",)))
        assert result.node_map()["safety"].layer == 2
        assert "gp-safety" in {l.id for l in result.links}

    def test_remove_link_relayers_descendants(self, engine):
        result = engine.remove_link("gp-consensus_merger")
        nodes = result.node_map()
        assert nodes["consensus_merger"].layer == 0
        assert nodes["output"].layer == 1

    def test_remove_unknown_link_is_noop(self, engine):
        before = positions(engine.nodes)
        result = engine.remove_link("nope")
        assert positions(result.nodes) == before
        assert result.repositioned == frozenset()

    def test_link_that_closes_cycle_revives_after_removal(self, engine):
        engine.add_link(LayoutLink(id="output-input", source="output", target="input"))
        assert "output-input" in engine.ignored_links()
        engine.remove_link("input-gp")
        assert "output-input" not in engine.ignored_links()
        assert engine.get_node("input").layer == engine.get_node("output").layer + 1

    def test_pinned_nodes_stay_put(self, engine):
        engine.pin("consensus_merger", 999.0, 111.0)
        result = engine.add_node(
            LayoutNode(id="cardio_1"),
            NodeAdditionOptions(
                insert_between=InsertBetween(parents=("gp",), children=("consensus_merger",))
            ),
        )
        merger = result.node_map()["consensus_merger"]
        assert (merger.x, merger.y) == (999.0, 111.0)
        assert merger.layer == 3

        released = engine.release("consensus_merger").node_map()["consensus_merger"]
        assert released.x == 40 + 3 * 180

    def test_resize_respaces_every_layer(self, engine):
        result = engine.resize(1600, 1000)
        assert result.node_map()["gp"].y == pytest.approx(500.0)
        assert result.repositioned == frozenset(n.id for n in engine.nodes)
