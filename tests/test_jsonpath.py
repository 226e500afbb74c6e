"""Tests for path queries over step outputs."""

import pytest

from flowbridge.errors import PathQueryError
from flowbridge.wire.jsonpath import evaluate_path, is_valid_path, parse_path

DATA = {"a": {"b": [10, 20, 30]}}

ITEMS = {
    "items": [
        {"name": "pen", "price": 5, "tags": {"sale": True}},
        {"name": "book", "price": 15},
        {"name": "lamp", "price": 25, "tags": {"sale": False}},
    ]
}


class TestBasicSelectors:
    """Field, index, wildcard and slice access."""

    @pytest.mark.parametrize(
        "query,expected",
        [
            ("$.a.b[1]", 20),
            ("$.a.b[-1]", 30),
            ("$.a.b[*]", [10, 20, 30]),
            ("$.a.b[0:2]", [10, 20]),
            ("$.a.b[-2:]", [20, 30]),
            ("$.a.b[::2]", [10, 30]),
            ("$.a.b[0,2]", [10, 30]),
            ("$['a']['b'][0]", 10),
        ],
    )
    def test_query(self, query, expected):
        assert evaluate_path(DATA, query) == expected

    def test_root_returns_data(self):
        assert evaluate_path(DATA, "$") == DATA

    def test_quoted_key_with_space(self):
        assert evaluate_path({"a b": 1}, "$['a b']") == 1

    def test_wildcard_on_object_returns_values(self):
        assert evaluate_path({"x": 1, "y": 2}, "$.*") == [1, 2]

    def test_missing_field_is_none(self):
        assert evaluate_path(DATA, "$.a.missing") is None

    def test_out_of_range_index_is_none(self):
        assert evaluate_path(DATA, "$.a.b[9]") is None

    def test_field_on_scalar_is_none(self):
        assert evaluate_path({"a": 5}, "$.a.b") is None


class TestFiltersAndDescendants:
    """Filter predicates and recursive descent."""

    def test_numeric_filter(self):
        result = evaluate_path(ITEMS, "$.items[?(@.price > 10)]")
        assert [item["name"] for item in result] == ["book", "lamp"]

    def test_filter_then_field(self):
        assert evaluate_path(ITEMS, "$.items[?(@.price > 10)].name") == ["book", "lamp"]

    def test_string_equality_filter(self):
        assert evaluate_path(ITEMS, "$.items[?(@.name == 'pen')].price") == [5]

    def test_nested_field_filter(self):
        assert evaluate_path(ITEMS, "$.items[?(@.tags.sale == true)].name") == ["pen"]

    def test_existence_filter(self):
        assert evaluate_path(ITEMS, "$.items[?(@.tags)].name") == ["pen", "lamp"]

    def test_mismatched_types_never_match_ordering(self):
        assert evaluate_path(ITEMS, "$.items[?(@.name > 3)]") == []

    def test_descendant_in_document_order(self):
        data = {"a": {"name": "x", "b": [{"name": "y"}, {"other": {"name": "z"}}]}}
        assert evaluate_path(data, "$..name") == ["x", "y", "z"]

    def test_wildcard_then_field(self):
        assert evaluate_path(ITEMS, "$.items[*].price") == [5, 15, 25]


class TestMalformedQueries:
    """Malformed queries raise PathQueryError with a position."""

    @pytest.mark.parametrize(
        "query",
        ["a.b", "$.", "$.a[", "$[1:2:0]", "$[?(@.x ~ 1)]", "$.a b", "$[]"],
    )
    def test_rejected(self, query):
        with pytest.raises(PathQueryError):
            parse_path(query)
        assert not is_valid_path(query)

    def test_error_carries_position(self):
        with pytest.raises(PathQueryError) as exc_info:
            parse_path("$.a[")
        assert exc_info.value.column == 3
        assert "position 3" in str(exc_info.value)

    def test_evaluate_raises_on_malformed_query(self):
        with pytest.raises(PathQueryError):
            evaluate_path(DATA, "no-dollar")
