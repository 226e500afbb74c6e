"""
interpolate.py - Convert editor template strings to value-expressions and back.

Editor prompts use double-brace markers:

    {{input}}                      whole workflow input
    {{input.FIELD}}                one input field
    {{nodes.ID.output}}            output of node ID
    {{nodes.ID.output.a.b}}        nested field of that output
    {{variables.NAME}}             runtime variable

The wire spellings ({{$input}}, {{$input.F}}, {{$step.ID}}, {{$step.ID.F}},
{{$variable.NAME}}) are accepted too, so prompts reconstructed from a wire
document compile again unchanged.

A string that is exactly one marker becomes the native reference
({"$step": ...}, {"$input": "$"}, ...). Anything else with markers becomes a
{"$template": ...} with the markers rewritten to wire spelling.

Backslash-escaped braces (\\{{ and \\}}) are literal text. A string that is
entirely one escaped expression, \\{{content\\}}, becomes {"$literal": "content"}.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional, Sequence

from flowbridge.graph.ids import IdMapping
from flowbridge.graph.types import GraphEdge
from flowbridge.wire.expressions import (
    InputRef,
    LiteralExpr,
    StepRef,
    TemplateExpr,
    VariableRef,
)

logger = logging.getLogger(__name__)

ESCAPED_OPEN = "\\{{"
ESCAPED_CLOSE = "\\}}"

# Private-use characters stand in for escaped braces while markers are rewritten
_OPEN_PLACEHOLDER = "\ue000"
_CLOSE_PLACEHOLDER = "\ue001"

_MARKER = re.compile(r"\{\{\s*(.*?)\s*\}\}")
_WHOLE_ESCAPE = re.compile(r"^\\\{\{(.*)\\\}\}$", re.DOTALL)

_FIELDS = r"\w+(?:\.\w+)*"
_INPUT = re.compile(rf"^\$?input(?:\.({_FIELDS}))?$")
_NODE_OUTPUT = re.compile(rf"^nodes\.([^\s.}}]+)\.output(?:\.({_FIELDS}))?$")
_WIRE_STEP = re.compile(rf"^\$step\.(\w+)(?:\.({_FIELDS}))?$")
_VARIABLE = re.compile(r"^(?:variables|\$variable)\.(\w+)$")
_SIMPLE_PATH = re.compile(rf"^\$\.({_FIELDS})$")
_NODE_ID_IN_MARKER = re.compile(r"^[^\s.}]+$")


# =============================================================================
# Graph -> Wire
# =============================================================================


def _step_for(name: str, mapping: IdMapping) -> str:
    if name in mapping.sanitized_to_original:
        return name
    return mapping.to_step_id(name)


def classify_marker(body: str, mapping: IdMapping):
    """Turn the inside of one {{...}} marker into a reference, or None."""
    match = _INPUT.match(body)
    if match:
        return InputRef(field=match.group(1) or "$")

    match = _NODE_OUTPUT.match(body)
    if match:
        step = mapping.to_step_id(match.group(1))
        fields = match.group(2)
        return StepRef(step=step, path=f"$.{fields}" if fields else None)

    match = _WIRE_STEP.match(body)
    if match:
        step = _step_for(match.group(1), mapping)
        fields = match.group(2)
        return StepRef(step=step, path=f"$.{fields}" if fields else None)

    match = _VARIABLE.match(body)
    if match:
        return VariableRef(name=match.group(1))

    return None


def _wire_marker(ref) -> str:
    if isinstance(ref, InputRef):
        return "{{$input}}" if ref.is_root else f"{{{{$input.{ref.field}}}}}"
    if isinstance(ref, StepRef):
        if ref.path:
            return f"{{{{$step.{ref.step}.{ref.path[2:]}}}}}"
        return f"{{{{$step.{ref.step}}}}}"
    return f"{{{{$variable.{ref.name}}}}}"


def _restore(text: str) -> str:
    return text.replace(_OPEN_PLACEHOLDER, "{{").replace(_CLOSE_PLACEHOLDER, "}}")


def interpolate_template(
    template: str,
    incoming_edges: Sequence[GraphEdge] = (),
    mapping: Optional[IdMapping] = None,
    warnings: Optional[List[str]] = None,
) -> Any:
    """Convert one editor template string into a value-expression.

    When the string has markers but none is recognized and the node has an
    incoming edge, a reference to the first upstream step is prepended. That
    changes the prompt, so a warning is logged and appended to `warnings`.
    """
    if template is None:
        return ""
    if "{{" not in template:
        return template
    mapping = mapping or IdMapping()

    whole = _WHOLE_ESCAPE.match(template.strip())
    if whole and ESCAPED_OPEN not in whole.group(1) and ESCAPED_CLOSE not in whole.group(1):
        return LiteralExpr(value=whole.group(1))

    protected = template.replace(ESCAPED_OPEN, _OPEN_PLACEHOLDER).replace(
        ESCAPED_CLOSE, _CLOSE_PLACEHOLDER
    )
    matches = list(_MARKER.finditer(protected))
    if not matches:
        # Only escaped braces
        return _restore(protected)

    refs = [classify_marker(m.group(1), mapping) for m in matches]
    recognized = [r for r in refs if r is not None]

    if len(matches) == 1 and recognized and protected.strip() == matches[0].group(0):
        return recognized[0]

    def rewrite(match) -> str:
        ref = classify_marker(match.group(1), mapping)
        return _wire_marker(ref) if ref is not None else match.group(0)

    converted = _MARKER.sub(rewrite, protected)

    if not recognized and incoming_edges:
        upstream = mapping.to_step_id(incoming_edges[0].source)
        converted = f"{{{{$step.{upstream}}}}} {converted}"
        message = (
            f"Template has no recognized reference; prepended implicit reference "
            f"to upstream step '{upstream}'"
        )
        logger.warning("%s: %r", message, template)
        if warnings is not None:
            warnings.append(message)

    return TemplateExpr(template=_restore(converted))


# =============================================================================
# Wire -> Graph
# =============================================================================


def _escape_braces(text: str) -> str:
    # Openers only, so "{{x}}" never takes the whole-string literal form
    return text.replace("{{", ESCAPED_OPEN)


def expression_to_template(expr: Any, mapping: Optional[IdMapping] = None) -> str:
    """Render a value-expression back into editor template syntax.

    Inverse of interpolate_template for everything it produces. Plain strings
    containing braces are escaped so they stay plain text when recompiled.
    """
    mapping = mapping or IdMapping()

    if isinstance(expr, str):
        return _escape_braces(expr)

    if isinstance(expr, LiteralExpr):
        value = expr.value if isinstance(expr.value, str) else json.dumps(expr.value)
        return f"{ESCAPED_OPEN}{value}{ESCAPED_CLOSE}"

    if isinstance(expr, InputRef):
        return "{{input}}" if expr.is_root else f"{{{{input.{expr.field}}}}}"

    if isinstance(expr, StepRef):
        node_id = mapping.to_node_id(expr.step)
        fields = None
        if expr.path:
            simple = _SIMPLE_PATH.match(expr.path)
            if simple:
                fields = simple.group(1)
            else:
                logger.warning(
                    "Path '%s' on reference to '%s' cannot be written as a template; dropped",
                    expr.path,
                    expr.step,
                )
        if _NODE_ID_IN_MARKER.match(node_id):
            suffix = f".{fields}" if fields else ""
            return f"{{{{nodes.{node_id}.output{suffix}}}}}"
        return _wire_marker(StepRef(step=expr.step, path=f"$.{fields}" if fields else None))

    if isinstance(expr, VariableRef):
        if expr.has_default:
            logger.warning(
                "Default for variable '%s' cannot be written as a template; dropped",
                expr.name,
            )
        return f"{{{{variables.{expr.name}}}}}"

    if isinstance(expr, TemplateExpr):
        return expr.template

    if expr is None:
        return ""

    return json.dumps(expr) if isinstance(expr, (dict, list)) else str(expr)
