"""Tests for JSON/YAML rendering and parsing of wire documents."""

import json

import pytest
import yaml

from flowbridge.compiler.exporter import compile_graph
from flowbridge.errors import ParseError
from flowbridge.wire.expressions import StepRef
from flowbridge.wire.serialization import (
    detect_format,
    document_to_json,
    document_to_yaml,
    load_document_data,
    load_document_file,
    parse_document,
)
from flowbridge.wire.types import (
    WireErrorHandler,
    error_handler_from_dict,
    wire_document_from_dict,
)


@pytest.fixture
def document(sample_graph_dict):
    return compile_graph(sample_graph_dict).document


class TestRendering:
    """document_to_yaml / document_to_json."""

    def test_yaml_has_header_and_sections(self, document):
        text = document_to_yaml(document)
        assert text.startswith("# Stepflow workflow: Demo\n# Generated by flowbridge\n")
        assert "\n\nsteps:\n" in text
        assert text.rstrip().splitlines()[-2:] == ["output:", "  $step: out_1"]

    def test_yaml_without_header(self, document):
        assert not document_to_yaml(document, header=False).startswith("#")

    def test_yaml_structure_survives_parse(self, document):
        assert yaml.safe_load(document_to_yaml(document)) == document.to_dict()

    def test_yaml_render_parse_render_is_stable(self, document):
        text = document_to_yaml(document)
        assert document_to_yaml(parse_document(text)) == text

    def test_json_structure_survives_parse(self, document):
        assert json.loads(document_to_json(document)) == document.to_dict()

    def test_canonical_key_order(self, document):
        keys = list(document.to_dict())
        assert keys == ["schema", "name", "description", "schemas", "steps", "output"]

    def test_references_kept_as_mappings(self, document):
        text = document_to_yaml(document)
        assert "$step: in_1" in text
        assert "{$step" not in text

    def test_document_without_output(self):
        doc = wire_document_from_dict({"name": "x", "steps": [{"id": "a", "component": "/builtin/input"}]})
        text = document_to_yaml(doc)
        assert "output" not in yaml.safe_load(text)


class TestParsing:
    """load_document_data / parse_document / load_document_file."""

    def test_detect_format(self):
        assert detect_format('  {"name": "x"}') == "json"
        assert detect_format("name: x\n") == "yaml"

    def test_parse_yaml(self):
        doc = parse_document(
            "name: demo\nsteps:\n  - id: a\n    component: /builtin/input\noutput:\n  $step: a\n"
        )
        assert doc.name == "demo"
        assert doc.output == StepRef("a")
        assert doc.has_output

    def test_yaml_syntax_error_has_line(self):
        with pytest.raises(ParseError) as exc_info:
            load_document_data("name: demo\nsteps: [unclosed\n", "yaml")
        assert exc_info.value.source == "yaml"
        assert exc_info.value.line is not None

    def test_json_syntax_error_has_line_and_column(self):
        with pytest.raises(ParseError) as exc_info:
            load_document_data('{\n  "name": \n}', "json")
        assert exc_info.value.line == 3
        assert exc_info.value.column is not None
        assert "line 3" in str(exc_info.value)

    def test_top_level_must_be_mapping(self):
        with pytest.raises(ParseError):
            load_document_data("- a\n- b\n")

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            load_document_data("name: x", "toml")

    def test_load_files(self, tmp_path, document):
        yaml_path = tmp_path / "flow.yaml"
        yaml_path.write_text(document_to_yaml(document), encoding="utf-8")
        json_path = tmp_path / "flow.json"
        json_path.write_text(document_to_json(document), encoding="utf-8")
        assert load_document_file(yaml_path) == load_document_file(json_path) == document.to_dict()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_document_file(tmp_path / "nope.yaml")

    def test_legacy_input_schema(self):
        schema = {"type": "object", "properties": {"q": {"type": "string"}}}
        doc = wire_document_from_dict({"name": "x", "steps": [], "input_schema": schema})
        assert doc.input_schema == schema
        assert doc.to_dict()["schemas"] == {"input": schema}

    def test_step_missing_component(self):
        with pytest.raises(ParseError) as exc_info:
            wire_document_from_dict({"name": "x", "steps": [{"id": "a"}]})
        assert exc_info.value.path == "steps[0]"


class TestErrorHandlers:
    """on_error parsing, native and legacy."""

    def test_native_default_with_null(self):
        handler = error_handler_from_dict({"type": "default", "value": None})
        assert handler == WireErrorHandler(type="default", value=None, has_value=True)
        assert handler.to_dict() == {"type": "default", "value": None}

    def test_native_default_without_value(self):
        assert error_handler_from_dict({"type": "default"}).to_dict() == {"type": "default"}

    def test_legacy_skip(self):
        assert error_handler_from_dict({"action": "skip"}).to_dict() == {"type": "default", "value": None}

    def test_legacy_retry(self):
        handler = error_handler_from_dict({"action": "retry", "max_retries": 4})
        assert handler.to_dict() == {"type": "retry", "max_attempts": 4}

    @pytest.mark.parametrize("data", [{"type": "explode"}, {"action": "ignore"}, {}, "retry"])
    def test_rejected(self, data):
        with pytest.raises(ParseError):
            error_handler_from_dict(data)
