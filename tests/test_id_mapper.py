"""Tests for node id <-> step id mapping."""

import pytest

from flowbridge.graph.ids import (
    IdMapping,
    build_id_mapping,
    is_valid_step_id,
    sanitize,
    sanitize_base,
)


class TestSanitizeBase:
    """Tests for sanitize_base."""

    @pytest.mark.parametrize(
        "node_id,expected",
        [
            ("node-1", "node_1"),
            ("1st step", "_1st_step"),
            ("already_ok", "already_ok"),
            ("a.b/c", "a_b_c"),
            ("", "_"),
            ("9", "_9"),
        ],
    )
    def test_sanitize_base(self, node_id, expected):
        assert sanitize_base(node_id) == expected

    def test_result_is_always_a_valid_step_id(self):
        for node_id in ("node-1", "1st step", "ünïcode", "", "$weird#", "__x"):
            assert is_valid_step_id(sanitize_base(node_id)), node_id


class TestSanitize:
    """Tests for collision handling."""

    def test_no_collision_returns_base(self):
        assert sanitize("a-b", {"other"}) == "a_b"

    def test_collision_appends_suffix(self):
        assert sanitize("a-b", {"a_b"}) == "a_b_1"

    def test_suffix_counts_up(self):
        assert sanitize("a-b", {"a_b", "a_b_1", "a_b_2"}) == "a_b_3"


class TestBuildIdMapping:
    """Tests for build_id_mapping and IdMapping."""

    def test_colliding_ids_get_unique_step_ids(self):
        mapping = build_id_mapping(["a-b", "a_b", "a.b"])
        assert mapping.original_to_sanitized == {"a-b": "a_b", "a_b": "a_b_1", "a.b": "a_b_2"}

    def test_mapping_is_a_bijection(self):
        ids = ["in-1", "p 1", "p_1", "1p", "out"]
        mapping = build_id_mapping(ids)
        step_ids = [mapping.to_step_id(i) for i in ids]
        assert len(set(step_ids)) == len(ids)
        assert [mapping.to_node_id(s) for s in step_ids] == ids

    def test_deterministic(self):
        ids = ["x-1", "x_1", "y"]
        assert build_id_mapping(ids).to_dict() == build_id_mapping(ids).to_dict()

    def test_repeated_node_id_keeps_first_mapping(self):
        mapping = build_id_mapping(["x", "x"])
        assert len(mapping) == 1
        assert mapping.to_step_id("x") == "x"

    def test_unknown_node_id_is_sanitized_without_registering(self):
        mapping = build_id_mapping(["a"])
        assert mapping.to_step_id("ghost-node") == "ghost_node"
        assert mapping.get_step_id("ghost-node") is None
        assert "ghost-node" not in mapping

    def test_unknown_step_id_maps_to_itself(self):
        assert IdMapping().to_node_id("s1") == "s1"

    def test_accepts_nodes(self, sample_graph):
        mapping = build_id_mapping(sample_graph.nodes)
        assert mapping.to_step_id("p-1") == "p_1"

    def test_to_dict(self):
        mapping = build_id_mapping(["n-1"])
        assert mapping.to_dict() == {
            "originalToSanitized": {"n-1": "n_1"},
            "sanitizedToOriginal": {"n_1": "n-1"},
        }
