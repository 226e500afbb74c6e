"""
evaluator.py - Evaluate and statically check value-expressions.

evaluate() resolves an expression tree against an EvaluationContext. It raises
ExpressionReferenceError when a step output or a variable without default is
missing, since by the time anything is evaluated the references have already
been validated and a miss means the caller built the context wrong.

Templates are display-oriented: a missing step inside a template renders as a
visible placeholder instead of raising.

validate_statically() performs the same dispatch without evaluating and never
raises. extract_step_references() / extract_variable_references() collect
dependencies from both native references and template markers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from flowbridge.errors import ExpressionParseError, ExpressionReferenceError
from flowbridge.wire.expressions import (
    TEMPLATE_MARKER_PATTERN,
    FromRef,
    InputRef,
    LiteralExpr,
    StepRef,
    TemplateExpr,
    VariableRef,
    iter_references,
    parse_expression,
    template_step_references,
    template_variable_references,
)
from flowbridge.wire.jsonpath import evaluate_path, is_valid_path


@dataclass
class EvaluationContext:
    """Everything an expression may read. Built per evaluation by the caller."""

    input: Any = None
    step_outputs: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)
    workflow_storage: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationContext":
        return cls(
            input=data.get("input"),
            step_outputs=dict(data.get("stepOutputs") or data.get("step_outputs") or {}),
            variables=dict(data.get("variables") or {}),
            workflow_storage=data.get("workflowStorage", data.get("workflow_storage")),
        )


def create_empty_context() -> EvaluationContext:
    return EvaluationContext(input={}, step_outputs={}, variables={})


# =============================================================================
# Evaluation
# =============================================================================


def stringify(value: Any) -> str:
    """Render a value for template substitution (None becomes empty)."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _dotted_lookup(data: Any, dotted: str) -> Any:
    current = data
    for part in dotted.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.lstrip("-").isdigit():
            index = int(part)
            current = current[index] if -len(current) <= index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def render_template(template: str, context: EvaluationContext) -> str:
    """Substitute {{$step.X[.f]}}, {{$input[.f]}} and {{$variable.N}} markers.

    Markers are replaced in a single pass; text produced by one substitution
    is emitted verbatim even if it looks like another marker.
    """

    def substitute(match) -> str:
        step_id = match.group("step")
        if step_id is not None:
            if step_id not in context.step_outputs:
                return f"[step {step_id} not found]"
            output = context.step_outputs[step_id]
            field_name = match.group("step_field")
            if field_name and isinstance(output, (dict, list)):
                return stringify(_dotted_lookup(output, field_name))
            return stringify(output)
        variable = match.group("variable")
        if variable is not None:
            return stringify(context.variables.get(variable))
        field_name = match.group("input_field")
        if field_name:
            return stringify(_dotted_lookup(context.input, field_name))
        return stringify(context.input)

    return TEMPLATE_MARKER_PATTERN.sub(substitute, template)


def _evaluate(expr: Any, context: EvaluationContext) -> Any:
    if isinstance(expr, StepRef):
        if expr.step not in context.step_outputs:
            raise ExpressionReferenceError(
                "step", expr.step, f"Step '{expr.step}' not found in execution context"
            )
        output = context.step_outputs[expr.step]
        if expr.path:
            return evaluate_path(output, expr.path)
        return output

    if isinstance(expr, InputRef):
        if expr.is_root:
            return context.input
        return _dotted_lookup(context.input, expr.field)

    if isinstance(expr, VariableRef):
        if expr.name in context.variables:
            return context.variables[expr.name]
        if expr.has_default:
            return expr.default
        raise ExpressionReferenceError(
            "variable",
            expr.name,
            f"Variable '{expr.name}' not found and no default provided",
        )

    if isinstance(expr, TemplateExpr):
        return render_template(expr.template, context)

    if isinstance(expr, LiteralExpr):
        return expr.value

    if isinstance(expr, FromRef):
        if context.workflow_storage is None:
            raise ExpressionReferenceError(
                "workflow",
                expr.workflow_path or "",
                "Workflow storage not available for $from reference",
            )
        data: Any = context.workflow_storage
        if expr.workflow_path is not None:
            data = context.workflow_storage.get(expr.workflow_path)
        if expr.step is not None and isinstance(data, dict):
            data = data.get(expr.step)
        if expr.path:
            data = evaluate_path(data, expr.path)
        return data

    if isinstance(expr, list):
        return [_evaluate(item, context) for item in expr]

    if isinstance(expr, dict):
        return {key: _evaluate(item, context) for key, item in expr.items()}

    return expr


def evaluate(expr: Any, context: EvaluationContext) -> Any:
    """Evaluate a raw or parsed expression tree to a concrete value.

    Raises:
        ExpressionParseError: if the raw tree has a malformed reference.
        PathQueryError: if a path query is malformed.
        ExpressionReferenceError: if a required reference is missing.
    """
    return _evaluate(parse_expression(expr), context)


def process_step_input(input_map: Dict[str, Any], context: EvaluationContext) -> Dict[str, Any]:
    """Evaluate every entry of a step input map."""
    return {key: evaluate(value, context) for key, value in input_map.items()}


# =============================================================================
# Static Analysis
# =============================================================================


@dataclass
class StaticCheckResult:
    """Result of validate_statically. Template misses are warnings only."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


def validate_statically(
    expr: Any,
    available_steps: Iterable[str],
    available_variables: Iterable[str] = (),
) -> StaticCheckResult:
    """Check references without evaluating. Never raises."""
    result = StaticCheckResult()
    steps = set(available_steps)
    variables = set(available_variables)

    try:
        parsed = parse_expression(expr)
    except ExpressionParseError as e:
        result.errors.append(f"[{e.path}] {e.message}")
        return result

    for ref in iter_references(parsed):
        if isinstance(ref, StepRef):
            if ref.step not in steps:
                result.errors.append(f"Step '{ref.step}' not found")
            if ref.path is not None and not is_valid_path(ref.path):
                result.errors.append(f"Invalid path query '{ref.path}'")
        elif isinstance(ref, VariableRef):
            if ref.name not in variables and not ref.has_default:
                result.errors.append(
                    f"Variable '{ref.name}' not found and no default provided"
                )
        elif isinstance(ref, FromRef):
            if ref.path is not None and not is_valid_path(ref.path):
                result.errors.append(f"Invalid path query '{ref.path}'")
        elif isinstance(ref, TemplateExpr):
            for step_id in template_step_references(ref.template):
                if step_id not in steps:
                    result.warnings.append(f"Template references unknown step '{step_id}'")
            for name in template_variable_references(ref.template):
                if name not in variables:
                    result.warnings.append(f"Template references unknown variable '{name}'")

    return result


def _ordered_union(groups: Iterable[Iterable[str]]) -> List[str]:
    seen = set()
    result = []
    for group in groups:
        for item in group:
            if item not in seen:
                seen.add(item)
                result.append(item)
    return result


def extract_step_references(expr: Any) -> List[str]:
    """Every step id referenced natively or inside templates, in order, deduplicated."""
    groups = []
    for ref in iter_references(parse_expression(expr)):
        if isinstance(ref, StepRef):
            groups.append([ref.step])
        elif isinstance(ref, TemplateExpr):
            groups.append(template_step_references(ref.template))
    return _ordered_union(groups)


def extract_variable_references(expr: Any) -> List[str]:
    groups = []
    for ref in iter_references(parse_expression(expr)):
        if isinstance(ref, VariableRef):
            groups.append([ref.name])
        elif isinstance(ref, TemplateExpr):
            groups.append(template_variable_references(ref.template))
    return _ordered_union(groups)


def get_dependencies(expr: Any) -> Dict[str, List[str]]:
    return {
        "steps": extract_step_references(expr),
        "variables": extract_variable_references(expr),
    }
