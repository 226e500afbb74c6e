"""Tests for compiling workflow graphs into Stepflow documents."""

import copy
import logging

import pytest
import yaml
from conftest import make_edge, make_node

from flowbridge.compiler.exporter import (
    NODE_CONVERTERS,
    build_error_handler,
    compile_graph,
    export_json,
    export_yaml,
)
from flowbridge.config.component_registry import ComponentRegistry
from flowbridge.errors import GraphValidationError, UnsupportedNodeTypeError
from flowbridge.graph.types import (
    ErrorHandlerConfig,
    ErrorStrategy,
    NodeType,
    workflow_graph_from_dict,
)
from flowbridge.validator import validate_document
from flowbridge.wire.expressions import InputRef, LiteralExpr, StepRef, TemplateExpr
from flowbridge.wire.types import DEFAULT_SCHEMA_URI


def _graph(nodes, edges=(), **extra):
    data = {"id": "wf", "name": "Test", "nodes": list(nodes), "edges": list(edges)}
    data.update(extra)
    return data


def _steps_by_id(document):
    return {step.id: step for step in document.steps}


class TestCompileSampleGraph:
    """input -> prompt -> output, end to end."""

    def test_step_ids_are_sanitized_and_ordered(self, sample_graph_dict):
        result = compile_graph(sample_graph_dict)
        assert result.document.step_ids() == ["in_1", "p_1", "out_1"]
        assert result.id_mapping.to_node_id("p_1") == "p-1"

    def test_prompt_step(self, sample_graph_dict):
        step = _steps_by_id(compile_graph(sample_graph_dict).document)["p_1"]
        assert step.component == "/builtin/openai"
        assert step.input["model"] == "gpt-4"
        messages = step.input["messages"]
        assert messages[0] == {"role": "system", "content": "Be brief."}
        assert messages[1] == {"role": "user", "content": StepRef("in_1")}
        assert step.input["temperature"] == 0.7
        assert step.input["max_tokens"] == 2048
        assert step.input["top_p"] == 1.0

    def test_user_message_wire_shape(self, sample_graph_dict):
        data = compile_graph(sample_graph_dict).document.to_dict()
        assert data["steps"][1]["input"]["messages"][1]["content"] == {"$step": "in_1"}

    def test_output_and_metadata(self, sample_graph_dict):
        document = compile_graph(sample_graph_dict).document
        out = _steps_by_id(document)["out_1"]
        assert out.input == {"format": "json", "value": StepRef("p_1")}
        assert out.metadata == {"label": "Result", "source_node_id": "out-1"}
        assert document.output == StepRef("out_1")

    def test_document_header_fields(self, sample_graph_dict):
        document = compile_graph(sample_graph_dict).document
        assert document.schema_uri == DEFAULT_SCHEMA_URI
        assert document.name == "Demo"
        assert document.description == "Generated from workflow: Demo"

    def test_input_schema(self, sample_graph_dict):
        schema = compile_graph(sample_graph_dict).document.input_schema
        assert schema == {
            "type": "object",
            "properties": {"in_1": {"type": "string", "description": "Question"}},
            "required": ["in_1"],
        }

    def test_compiled_document_validates(self, sample_graph_dict):
        data = compile_graph(sample_graph_dict).document.to_dict()
        result = validate_document(data)
        assert result.valid, [str(e) for e in result.errors]

    def test_accepts_graph_object(self, sample_graph):
        assert compile_graph(sample_graph).document.step_ids() == ["in_1", "p_1", "out_1"]

    def test_export_helpers(self, sample_graph_dict):
        assert yaml.safe_load(export_yaml(sample_graph_dict))["name"] == "Demo"
        assert '"name": "Demo"' in export_json(sample_graph_dict)

    def test_graph_is_not_mutated(self, sample_graph_dict):
        before = copy.deepcopy(sample_graph_dict)
        compile_graph(sample_graph_dict)
        assert sample_graph_dict == before


class TestNodeConverters:
    """Per-type conversion."""

    def test_every_node_type_has_a_converter(self):
        assert set(NODE_CONVERTERS) == set(NodeType)

    def test_full_graph_components(self, full_graph_dict):
        steps = _steps_by_id(compile_graph(full_graph_dict).document)
        assert {sid: s.component for sid, s in steps.items()} == {
            "in": "/builtin/input",
            "p": "/builtin/openai",
            "br": "/builtin/conditional",
            "mc": "/builtin/parallel",
            "agg": "/builtin/aggregate",
            "hg": "/builtin/pause",
            "out": "/builtin/output",
        }

    def test_prompt_error_handling_and_must_execute(self, full_graph_dict):
        step = _steps_by_id(compile_graph(full_graph_dict).document)["p"]
        assert step.on_error.to_dict() == {"type": "retry", "max_attempts": 5}
        assert step.must_execute is True
        assert step.to_dict()["must_execute"] is True

    def test_prompt_template_content(self, full_graph_dict):
        step = _steps_by_id(compile_graph(full_graph_dict).document)["p"]
        assert step.input["messages"] == [
            {"role": "user", "content": TemplateExpr("Summarize {{$step.in}}")}
        ]

    def test_branch_defaults(self, full_graph_dict):
        step = _steps_by_id(compile_graph(full_graph_dict).document)["br"]
        assert step.input == {
            "condition": "true",
            "branches": [{"id": "true", "label": "True", "condition": "true"}],
        }

    def test_model_compare_branches(self, full_graph_dict):
        step = _steps_by_id(compile_graph(full_graph_dict).document)["mc"]
        branches = step.input["branches"]
        assert [b["component"] for b in branches] == [
            "/builtin/openai",
            "/stepflow-anthropic/anthropic",
        ]
        assert branches[1]["input"]["messages"] == [{"role": "user", "content": InputRef("$")}]

    def test_aggregate_and_human_gate(self, full_graph_dict):
        steps = _steps_by_id(compile_graph(full_graph_dict).document)
        assert steps["agg"].input == {
            "strategy": "concat",
            "separator": "\n---\n",
            "inputs": [StepRef("p"), StepRef("mc")],
        }
        assert steps["hg"].input == {
            "instructions": "Please review and approve",
            "allow_edit": True,
            "timeout_seconds": 60,
            "value": StepRef("agg"),
        }

    def test_aggregate_keeps_edge_order(self):
        graph = _graph(
            [
                make_node("a", "input"),
                make_node("b", "input"),
                make_node("c", "input"),
                make_node("agg", "aggregate"),
            ],
            [make_edge("c", "agg"), make_edge("a", "agg"), make_edge("b", "agg")],
        )
        step = _steps_by_id(compile_graph(graph).document)["agg"]
        assert step.input["inputs"] == [StepRef("c"), StepRef("a"), StepRef("b")]

    def test_dependencies_come_first(self, full_graph_dict):
        reordered = copy.deepcopy(full_graph_dict)
        reordered["nodes"].reverse()
        order = compile_graph(reordered).document.step_ids()
        for edge in reordered["edges"]:
            assert order.index(edge["source"]) < order.index(edge["target"])

    def test_literal_prompt(self):
        graph = _graph([make_node("p", "prompt", model="gpt-4", userPrompt="\\{{not a ref\\}}")])
        step = _steps_by_id(compile_graph(graph).document)["p"]
        assert step.input["messages"][0]["content"] == LiteralExpr("not a ref")
        assert step.to_dict()["input"]["messages"][0]["content"] == {"$literal": "not a ref"}

    def test_implicit_upstream_reference_is_reported(self):
        graph = _graph(
            [make_node("src", "input"), make_node("p", "prompt", model="gpt-4", userPrompt="About {{topic}}")],
            [make_edge("src", "p")],
        )
        result = compile_graph(graph)
        content = _steps_by_id(result.document)["p"].input["messages"][0]["content"]
        assert content == TemplateExpr("{{$step.src}} About {{topic}}")
        assert any(w.startswith("Node 'p':") for w in result.warnings)

    def test_missing_model_uses_default_and_warns(self):
        graph = _graph([make_node("p", "prompt", userPrompt="hi")])
        result = compile_graph(graph)
        step = _steps_by_id(result.document)["p"]
        assert step.input["model"] == "gpt-4"
        assert any("no model" in w for w in result.warnings)

    def test_default_model_from_environment(self, monkeypatch):
        monkeypatch.setenv("FLOWBRIDGE_DEFAULT_MODEL", "claude-3-sonnet")
        step = _steps_by_id(compile_graph(_graph([make_node("p", "prompt", userPrompt="hi")])).document)["p"]
        assert step.component == "/stepflow-anthropic/anthropic"

    def test_unknown_model_falls_back(self, caplog):
        graph = _graph([make_node("p", "prompt", model="mistral-large", userPrompt="hi")])
        with caplog.at_level(logging.WARNING):
            step = _steps_by_id(compile_graph(graph).document)["p"]
        assert step.component == "/builtin/openai"
        assert "mistral-large" in caplog.text

    def test_registry_model_rules(self):
        registry = ComponentRegistry()
        registry.register_model_rule("gemini-", "/custom/gemini")
        graph = _graph(
            [
                make_node("p", "prompt", model="gemini-pro", userPrompt="hi"),
                make_node("mc", "model_compare", models=["gemini-1.5", "gpt-4"], prompt="hi"),
            ]
        )
        steps = _steps_by_id(compile_graph(graph, registry).document)
        assert steps["p"].component == "/custom/gemini"
        assert [b["component"] for b in steps["mc"].input["branches"]] == [
            "/custom/gemini",
            "/builtin/openai",
        ]
        # The shared registry keeps the default rules
        assert _steps_by_id(compile_graph(graph).document)["p"].component == "/builtin/openai"


    def test_multiple_terminal_nodes_output_object(self):
        graph = _graph(
            [make_node("src", "input"), make_node("a-1", "prompt", model="gpt-4", userPrompt="x"), make_node("b", "prompt", model="gpt-4", userPrompt="y")],
            [make_edge("src", "a-1"), make_edge("src", "b")],
        )
        document = compile_graph(graph).document
        assert document.output == {"a_1": StepRef("a_1"), "b": StepRef("b")}

    def test_colliding_ids(self):
        graph = _graph([make_node("a-b", "input"), make_node("a_b", "input")])
        assert compile_graph(graph).document.step_ids() == ["a_b", "a_b_1"]

    def test_long_name_truncated(self):
        graph = _graph([make_node("a", "input")])
        graph["name"] = "n" * 300
        assert len(compile_graph(graph).document.name) == 256


class TestErrorHandler:
    """Tests for build_error_handler."""

    def test_none(self):
        assert build_error_handler(None) is None

    def test_retry_default_attempts(self):
        handler = build_error_handler(ErrorHandlerConfig(ErrorStrategy.RETRY))
        assert handler.to_dict() == {"type": "retry", "max_attempts": 3}

    def test_default_with_explicit_null(self):
        handler = build_error_handler(
            ErrorHandlerConfig(ErrorStrategy.DEFAULT, fallback_value=None, has_fallback=True)
        )
        assert handler.to_dict() == {"type": "default", "value": None}

    def test_fail(self):
        assert build_error_handler(ErrorHandlerConfig(ErrorStrategy.FAIL)).to_dict() == {"type": "fail"}


class TestCompileRejections:
    """Graphs that cannot be compiled."""

    def test_cycle_raises_with_subject_on_cycle(self):
        graph = _graph(
            [make_node(n, "prompt", model="gpt-4", userPrompt="x") for n in ("a", "b", "c")],
            [make_edge("a", "b"), make_edge("b", "c"), make_edge("c", "a")],
        )
        with pytest.raises(GraphValidationError) as exc_info:
            compile_graph(graph)
        errors = exc_info.value.result.errors
        assert len(errors) == 1
        assert errors[0].subject in {"a", "b", "c"}
        assert "Circular dependency" in errors[0].problem

    def test_dangling_edge_raises(self):
        graph = _graph([make_node("a", "input")], [make_edge("a", "ghost")])
        with pytest.raises(GraphValidationError) as exc_info:
            compile_graph(graph)
        assert exc_info.value.result.errors[0].subject == "ghost"

    def test_empty_graph_raises(self):
        with pytest.raises(GraphValidationError):
            compile_graph(_graph([]))

    def test_unknown_node_type(self):
        graph = _graph([make_node("x", "mystery")])
        with pytest.raises(UnsupportedNodeTypeError) as exc_info:
            compile_graph(graph)
        assert exc_info.value.node_type == "mystery"

    def test_unknown_node_type_when_parsing(self):
        with pytest.raises(UnsupportedNodeTypeError):
            workflow_graph_from_dict(_graph([make_node("x", "mystery")]))
