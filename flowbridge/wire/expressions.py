"""
expressions.py - Value-expression model for wire documents.

A value-expression is a symbolic reference to data that only exists at run
time. On the wire, references are objects carrying exactly one tag key:

    {"$step": "summarize", "path": "$.text"}   StepRef
    {"$input": "question"}                      InputRef ("$" or "" = whole input)
    {"$variable": "tone", "default": "calm"}    VariableRef
    {"$template": "Hi {{$input.name}}"}         TemplateExpr
    {"$literal": {"$step": "not a ref"}}        LiteralExpr (never interpreted)
    {"$from": {"workflow": {"path": "p"}, "step": "s", "path": "$.x"}}   FromRef

Everything else (strings, numbers, booleans, None, lists, and objects with no
tag key) is plain structure whose children may themselves be expressions.

parse_expression() turns raw JSON-like data into this model, expression_to_wire()
turns it back. Both are total inverses for well-formed input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from flowbridge.errors import ExpressionParseError

STEP_TAG = "$step"
INPUT_TAG = "$input"
VARIABLE_TAG = "$variable"
TEMPLATE_TAG = "$template"
LITERAL_TAG = "$literal"
FROM_TAG = "$from"

TAG_KEYS = (STEP_TAG, INPUT_TAG, VARIABLE_TAG, TEMPLATE_TAG, LITERAL_TAG, FROM_TAG)

# Extra keys allowed next to each tag
_ALLOWED_EXTRAS = {
    STEP_TAG: {"path"},
    INPUT_TAG: set(),
    VARIABLE_TAG: {"default"},
    TEMPLATE_TAG: set(),
    LITERAL_TAG: set(),
    FROM_TAG: set(),
}


# =============================================================================
# Expression Types
# =============================================================================


@dataclass(frozen=True)
class StepRef:
    """Output of another step, optionally narrowed with a path query."""
    step: str
    path: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {STEP_TAG: self.step}
        if self.path is not None:
            result["path"] = self.path
        return result


@dataclass(frozen=True)
class InputRef:
    """Workflow input. field "$" (or "") selects the whole input."""
    field: str = "$"

    @property
    def is_root(self) -> bool:
        return self.field in ("$", "")

    def to_wire(self) -> Dict[str, Any]:
        return {INPUT_TAG: self.field}


@dataclass(frozen=True)
class VariableRef:
    """Runtime variable. has_default is True even when default is None."""
    name: str
    default: Any = None
    has_default: bool = False

    def to_wire(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {VARIABLE_TAG: self.name}
        if self.has_default:
            result["default"] = self.default
        return result


@dataclass(frozen=True)
class TemplateExpr:
    template: str

    def to_wire(self) -> Dict[str, Any]:
        return {TEMPLATE_TAG: self.template}


@dataclass(frozen=True)
class LiteralExpr:
    value: Any

    def to_wire(self) -> Dict[str, Any]:
        return {LITERAL_TAG: self.value}


@dataclass(frozen=True)
class FromRef:
    """Value stored by another workflow."""
    workflow_path: Optional[str] = None
    step: Optional[str] = None
    path: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if self.workflow_path is not None:
            body["workflow"] = {"path": self.workflow_path}
        if self.step is not None:
            body["step"] = self.step
        if self.path is not None:
            body["path"] = self.path
        return {FROM_TAG: body}


Reference = Union[StepRef, InputRef, VariableRef, TemplateExpr, LiteralExpr, FromRef]
REFERENCE_TYPES = (StepRef, InputRef, VariableRef, TemplateExpr, LiteralExpr, FromRef)

# Primitive | list | plain dict | Reference
Expression = Any


def is_reference(value: Any) -> bool:
    return isinstance(value, REFERENCE_TYPES)


# =============================================================================
# Embedded Template References
# =============================================================================

# Markers understood inside {"$template": ...} strings
TEMPLATE_STEP_PATTERN = re.compile(r"\{\{\$step\.(\w+)(?:\.(\w+(?:\.\w+)*))?\}\}")
TEMPLATE_INPUT_PATTERN = re.compile(r"\{\{\$input(?:\.(\w+(?:\.\w+)*))?\}\}")
TEMPLATE_VARIABLE_PATTERN = re.compile(r"\{\{\$variable\.(\w+)\}\}")

# All three markers in one alternation so substituted text is never rescanned
TEMPLATE_MARKER_PATTERN = re.compile(
    r"\{\{(?:"
    r"\$step\.(?P<step>\w+)(?:\.(?P<step_field>\w+(?:\.\w+)*))?"
    r"|\$input(?:\.(?P<input_field>\w+(?:\.\w+)*))?"
    r"|\$variable\.(?P<variable>\w+)"
    r")\}\}"
)


def template_step_references(template: str) -> List[str]:
    """Step ids embedded in a template string, deduplicated, in order."""
    return _unique(m.group(1) for m in TEMPLATE_STEP_PATTERN.finditer(template))


def template_variable_references(template: str) -> List[str]:
    return _unique(m.group(1) for m in TEMPLATE_VARIABLE_PATTERN.finditer(template))


def _unique(items) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


# =============================================================================
# Parsing
# =============================================================================


def _expect_str(value: Any, what: str, path: str) -> str:
    if not isinstance(value, str):
        raise ExpressionParseError(
            f"{what} must be a string, got {type(value).__name__}", path
        )
    return value


def _parse_tagged(tag: str, data: Dict[str, Any], path: str) -> Reference:
    extras = set(data) - {tag}
    unexpected = extras - _ALLOWED_EXTRAS[tag]
    if unexpected:
        raise ExpressionParseError(
            f"Unexpected keys {sorted(unexpected)} next to '{tag}'", path
        )

    value = data[tag]

    if tag == STEP_TAG:
        step = _expect_str(value, "'$step'", path)
        step_path = data.get("path")
        if step_path is not None:
            _expect_str(step_path, "'path'", path)
        return StepRef(step=step, path=step_path)

    if tag == INPUT_TAG:
        return InputRef(field=_expect_str(value, "'$input'", path))

    if tag == VARIABLE_TAG:
        return VariableRef(
            name=_expect_str(value, "'$variable'", path),
            default=data.get("default"),
            has_default="default" in data,
        )

    if tag == TEMPLATE_TAG:
        return TemplateExpr(template=_expect_str(value, "'$template'", path))

    if tag == LITERAL_TAG:
        return LiteralExpr(value=value)

    # FROM_TAG
    if not isinstance(value, dict):
        raise ExpressionParseError("'$from' must be an object", path)
    unknown = set(value) - {"workflow", "step", "path"}
    if unknown:
        raise ExpressionParseError(f"Unexpected keys {sorted(unknown)} in '$from'", path)
    workflow = value.get("workflow")
    workflow_path = None
    if workflow is not None:
        if not isinstance(workflow, dict) or not isinstance(workflow.get("path"), str):
            raise ExpressionParseError("'$from.workflow' must be {path: string}", path)
        workflow_path = workflow["path"]
    step = value.get("step")
    if step is not None:
        _expect_str(step, "'$from.step'", path)
    from_path = value.get("path")
    if from_path is not None:
        _expect_str(from_path, "'$from.path'", path)
    return FromRef(workflow_path=workflow_path, step=step, path=from_path)


def parse_expression(value: Any, path: str = "root") -> Expression:
    """Parse raw JSON-like data into an expression tree.

    Idempotent: already-parsed references are returned unchanged.

    Raises:
        ExpressionParseError: if an object mixes tag keys, carries unexpected
            keys next to a tag, or a tag value has the wrong type.
    """
    if is_reference(value):
        return value

    if isinstance(value, list):
        return [parse_expression(item, f"{path}[{i}]") for i, item in enumerate(value)]

    if isinstance(value, tuple):
        return [parse_expression(item, f"{path}[{i}]") for i, item in enumerate(value)]

    if isinstance(value, dict):
        tags = [key for key in TAG_KEYS if key in value]
        if len(tags) > 1:
            raise ExpressionParseError(f"Mixed reference tags {tags}", path)
        if tags:
            return _parse_tagged(tags[0], value, path)
        return {key: parse_expression(item, f"{path}.{key}") for key, item in value.items()}

    if value is None or isinstance(value, (str, int, float, bool)):
        return value

    raise ExpressionParseError(f"Unsupported value type {type(value).__name__}", path)


def expression_to_wire(expr: Expression) -> Any:
    """Convert an expression tree back to plain JSON-like data."""
    if is_reference(expr):
        return expr.to_wire()
    if isinstance(expr, (list, tuple)):
        return [expression_to_wire(item) for item in expr]
    if isinstance(expr, dict):
        return {key: expression_to_wire(item) for key, item in expr.items()}
    return expr


def iter_references(expr: Expression):
    """Yield every reference in the tree, depth-first, in document order.

    Literal contents are not descended into.
    """
    if is_reference(expr):
        yield expr
    elif isinstance(expr, (list, tuple)):
        for item in expr:
            yield from iter_references(item)
    elif isinstance(expr, dict):
        for item in expr.values():
            yield from iter_references(item)


def has_expressions(value: Any) -> bool:
    """True if any reference occurs in the (raw or parsed) tree."""
    if is_reference(value):
        return True
    if isinstance(value, (list, tuple)):
        return any(has_expressions(item) for item in value)
    if isinstance(value, dict):
        if any(key in value for key in TAG_KEYS):
            return True
        return any(has_expressions(item) for item in value.values())
    return False


def collect_expression_errors(value: Any, path: str = "root") -> List[Tuple[str, str]]:
    """Walk a raw tree and return every (path, problem) shape error instead of raising."""
    errors: List[Tuple[str, str]] = []

    def walk(node: Any, node_path: str) -> None:
        if isinstance(node, list):
            for i, item in enumerate(node):
                walk(item, f"{node_path}[{i}]")
            return
        if not isinstance(node, dict):
            if node is not None and not isinstance(node, (str, int, float, bool)):
                errors.append((node_path, f"Unsupported value type {type(node).__name__}"))
            return
        tags = [key for key in TAG_KEYS if key in node]
        if not tags:
            for key, item in node.items():
                walk(item, f"{node_path}.{key}")
            return
        try:
            parse_expression(node, node_path)
        except ExpressionParseError as e:
            errors.append((e.path, e.message))

    walk(value, path)
    return errors
