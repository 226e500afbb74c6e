"""Tests for the value-expression model and evaluator."""

import pytest

from flowbridge.errors import ExpressionParseError, ExpressionReferenceError, PathQueryError
from flowbridge.wire.evaluator import (
    EvaluationContext,
    create_empty_context,
    evaluate,
    extract_step_references,
    extract_variable_references,
    get_dependencies,
    process_step_input,
    render_template,
    stringify,
    validate_statically,
)
from flowbridge.wire.expressions import (
    FromRef,
    InputRef,
    LiteralExpr,
    StepRef,
    TemplateExpr,
    VariableRef,
    collect_expression_errors,
    expression_to_wire,
    has_expressions,
    iter_references,
    parse_expression,
)


@pytest.fixture
def context():
    return EvaluationContext(
        input={"question": "why?", "user": {"name": "Ada"}},
        step_outputs={
            "search": {"items": [{"name": "first"}, {"name": "second"}]},
            "draft": "hello",
        },
        variables={"tone": "calm"},
    )


class TestParseExpression:
    """Tests for parse_expression / expression_to_wire."""

    def test_each_reference_shape(self):
        raw = {
            "a": {"$step": "s", "path": "$.x"},
            "b": {"$input": "q"},
            "c": {"$variable": "v", "default": None},
            "d": {"$template": "Hi {{$input}}"},
            "e": {"$literal": {"$step": "not a ref"}},
            "f": {"$from": {"workflow": {"path": "wf"}, "step": "s", "path": "$.y"}},
        }
        parsed = parse_expression(raw)
        assert parsed["a"] == StepRef("s", "$.x")
        assert parsed["b"] == InputRef("q")
        assert parsed["c"] == VariableRef("v", None, has_default=True)
        assert parsed["d"] == TemplateExpr("Hi {{$input}}")
        assert parsed["e"] == LiteralExpr({"$step": "not a ref"})
        assert parsed["f"] == FromRef(workflow_path="wf", step="s", path="$.y")
        assert expression_to_wire(parsed) == raw

    def test_plain_structure_passes_through(self):
        raw = {"list": [1, "two", None, True], "nested": {"k": 1.5}}
        assert parse_expression(raw) == raw
        assert not has_expressions(raw)

    def test_parse_is_idempotent(self):
        parsed = parse_expression({"x": {"$step": "s"}})
        assert parse_expression(parsed) == parsed

    def test_mixed_tags_rejected(self):
        with pytest.raises(ExpressionParseError) as exc_info:
            parse_expression({"x": {"$step": "a", "$input": "b"}})
        assert exc_info.value.path == "root.x"

    def test_unexpected_key_next_to_tag_rejected(self):
        with pytest.raises(ExpressionParseError):
            parse_expression({"$step": "a", "extra": 1})

    def test_wrong_tag_value_type_rejected(self):
        with pytest.raises(ExpressionParseError):
            parse_expression({"$step": 3})

    def test_literal_contents_not_scanned(self):
        parsed = parse_expression([{"$literal": {"$step": "x"}}, {"$step": "y"}])
        assert [r for r in iter_references(parsed)] == [LiteralExpr({"$step": "x"}), StepRef("y")]

    def test_collect_expression_errors_reports_every_problem(self):
        errors = collect_expression_errors(
            {"a": {"$step": "s", "$input": "q"}, "b": [{"$variable": 1}]}
        )
        assert [path for path, _ in errors] == ["root.a", "root.b[0]"]


class TestEvaluate:
    """Tests for evaluate."""

    def test_step_with_path(self, context):
        assert evaluate({"$step": "search", "path": "$.items[1].name"}, context) == "second"

    def test_step_without_path(self, context):
        assert evaluate({"$step": "draft"}, context) == "hello"

    def test_missing_step_raises(self, context):
        with pytest.raises(ExpressionReferenceError) as exc_info:
            evaluate({"$step": "nope"}, context)
        assert exc_info.value.kind == "step"
        assert exc_info.value.name == "nope"

    def test_malformed_path_raises(self, context):
        with pytest.raises(PathQueryError):
            evaluate({"$step": "search", "path": "$.items["}, context)

    def test_whole_input(self, context):
        assert evaluate({"$input": "$"}, context) == context.input
        assert evaluate({"$input": ""}, context) == context.input

    def test_input_field_and_nested_field(self, context):
        assert evaluate({"$input": "question"}, context) == "why?"
        assert evaluate({"$input": "user.name"}, context) == "Ada"
        assert evaluate({"$input": "missing"}, context) is None

    def test_variable_present(self, context):
        assert evaluate({"$variable": "tone", "default": "loud"}, context) == "calm"

    def test_variable_default(self):
        assert evaluate({"$variable": "limit", "default": 42}, create_empty_context()) == 42

    def test_variable_explicit_null_default(self):
        assert evaluate({"$variable": "limit", "default": None}, create_empty_context()) is None

    def test_missing_variable_without_default_raises(self):
        with pytest.raises(ExpressionReferenceError) as exc_info:
            evaluate({"$variable": "limit"}, create_empty_context())
        assert exc_info.value.kind == "variable"

    def test_literal_returned_verbatim(self, context):
        assert evaluate({"$literal": {"$step": "draft"}}, context) == {"$step": "draft"}

    def test_nested_structure(self, context):
        expr = {"messages": [{"role": "user", "content": {"$step": "draft"}}], "n": 2}
        assert evaluate(expr, context) == {"messages": [{"role": "user", "content": "hello"}], "n": 2}

    def test_from_without_storage_raises(self, context):
        with pytest.raises(ExpressionReferenceError) as exc_info:
            evaluate({"$from": {"workflow": {"path": "wf"}}}, context)
        assert exc_info.value.kind == "workflow"

    def test_from_with_storage(self):
        ctx = EvaluationContext(workflow_storage={"wf": {"s": {"x": 1}}})
        expr = {"$from": {"workflow": {"path": "wf"}, "step": "s", "path": "$.x"}}
        assert evaluate(expr, ctx) == 1

    def test_process_step_input(self, context):
        result = process_step_input({"a": {"$step": "draft"}, "b": "plain"}, context)
        assert result == {"a": "hello", "b": "plain"}

    def test_context_from_camel_case_dict(self):
        ctx = EvaluationContext.from_dict({"input": 1, "stepOutputs": {"s": 2}, "variables": {"v": 3}})
        assert ctx.step_outputs == {"s": 2}
        assert ctx.variables == {"v": 3}
        assert ctx.workflow_storage is None


class TestTemplates:
    """Tests for template rendering."""

    def test_render_all_marker_kinds(self, context):
        text = "Q: {{$input.question}} by {{$input.user.name}}, {{$step.draft}} ({{$variable.tone}})"
        assert render_template(text, context) == "Q: why? by Ada, hello (calm)"

    def test_step_field(self, context):
        ctx = EvaluationContext(step_outputs={"b": {"text": "y", "meta": {"n": 2}}})
        assert render_template("{{$step.b.text}}/{{$step.b.meta.n}}", ctx) == "y/2"

    def test_missing_step_renders_placeholder(self, context):
        assert evaluate({"$template": "x {{$step.ghost}}"}, context) == "x [step ghost not found]"

    def test_missing_variable_renders_empty(self, context):
        assert render_template("[{{$variable.none}}]", context) == "[]"

    def test_object_output_renders_as_json(self):
        ctx = EvaluationContext(step_outputs={"s": {"a": 1}})
        assert render_template("{{$step.s}}", ctx) == '{"a":1}'

    def test_substituted_text_is_not_rescanned(self):
        ctx = EvaluationContext(
            input="SECRET_INPUT",
            step_outputs={"a": "user said {{$input}}", "b": "{{$variable.k}}"},
            variables={"k": "SECRET_VAR"},
        )
        result = evaluate({"$template": "A: {{$step.a}} / {{$variable.k}}"}, ctx)
        assert result == "A: user said {{$input}} / SECRET_VAR"
        assert render_template("{{$step.b}}", ctx) == "{{$variable.k}}"

    @pytest.mark.parametrize(
        "value,expected",
        [(None, ""), (True, "true"), (False, "false"), (3.0, "3"), (2.5, "2.5"), ([1, 2], "[1,2]")],
    )
    def test_stringify(self, value, expected):
        assert stringify(value) == expected


class TestStaticChecks:
    """Tests for validate_statically and dependency extraction."""

    def test_unknown_step_is_error(self):
        result = validate_statically({"x": {"$step": "ghost"}}, ["a"])
        assert not result.valid
        assert result.errors == ["Step 'ghost' not found"]

    def test_unknown_template_step_is_warning(self):
        result = validate_statically({"$template": "{{$step.ghost}}"}, ["a"])
        assert result.valid
        assert result.warnings == ["Template references unknown step 'ghost'"]

    def test_invalid_path_is_error(self):
        result = validate_statically({"$step": "a", "path": "a.b"}, ["a"])
        assert result.errors == ["Invalid path query 'a.b'"]

    def test_variable_with_default_is_fine(self):
        assert validate_statically({"$variable": "v", "default": 1}, []).valid

    def test_malformed_expression_is_reported_not_raised(self):
        result = validate_statically({"$step": "a", "$input": "b"}, ["a"])
        assert not result.valid

    def test_extract_step_references_in_order(self):
        expr = {"a": {"$step": "s2"}, "b": {"$template": "{{$step.s1}} {{$step.s2}}"}}
        assert extract_step_references(expr) == ["s2", "s1"]

    def test_extract_variable_references(self):
        expr = [{"$variable": "v1"}, {"$template": "{{$variable.v2}} {{$variable.v1}}"}]
        assert extract_variable_references(expr) == ["v1", "v2"]

    def test_get_dependencies(self):
        deps = get_dependencies({"x": {"$step": "s"}, "y": {"$variable": "v"}})
        assert deps == {"steps": ["s"], "variables": ["v"]}
