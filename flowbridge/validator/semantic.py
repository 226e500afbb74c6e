"""
semantic.py - Referential checks for wire documents and graphs.

Document side (after the structural pass):
- every {$step: X} in a step input or the document output names a real step
- template markers {{$step.X}} naming unknown steps (warning: templates
  render a placeholder rather than fail)
- malformed path queries on step references
- step dependencies form a DAG

Graph side (before compilation):
- duplicate node ids, edges to unknown nodes, the first cycle found
- advisory warnings for incomplete node configs

compatibility_report() lists runtime features a document relies on, with
recommendations. It never affects validity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from flowbridge.errors import ExpressionParseError
from flowbridge.graph.types import NodeType, PromptConfig, WorkflowGraph
from flowbridge.validator.errors import SEMANTIC, STRUCTURAL, ValidationResult
from flowbridge.wire.expressions import (
    FromRef,
    LiteralExpr,
    StepRef,
    TemplateExpr,
    iter_references,
    parse_expression,
    template_step_references,
)
from flowbridge.wire.jsonpath import is_valid_path

logger = logging.getLogger(__name__)


# =============================================================================
# Document Checks
# =============================================================================


def _step_entries(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    steps = data.get("steps")
    if not isinstance(steps, list):
        return []
    return [s for s in steps if isinstance(s, dict) and isinstance(s.get("id"), str)]


def _parsed_or_none(value: Any, path: str) -> Any:
    try:
        return parse_expression(value, path)
    except ExpressionParseError:
        # Reported by the structural pass
        return None


def _check_references(
    result: ValidationResult,
    expr: Any,
    location: str,
    step_ids: Set[str],
    owner: Optional[str],
) -> List[str]:
    """Record problems in one expression tree; return the steps it depends on."""
    depends_on: List[str] = []
    for ref in iter_references(expr):
        if isinstance(ref, StepRef):
            if ref.step not in step_ids:
                result.add_error(
                    SEMANTIC,
                    location,
                    f"Reference to unknown step '{ref.step}'",
                    "Point the reference at an existing step id",
                    subject=ref.step,
                )
            else:
                depends_on.append(ref.step)
            if ref.path is not None and not is_valid_path(ref.path):
                result.add_error(
                    SEMANTIC,
                    location,
                    f"Invalid path query '{ref.path}' on reference to '{ref.step}'",
                    "Use a path like $.field, $.items[0] or $..name",
                    subject=ref.step,
                )
        elif isinstance(ref, TemplateExpr):
            for step_id in template_step_references(ref.template):
                if step_id not in step_ids:
                    result.add_warning(
                        SEMANTIC,
                        location,
                        f"Template references unknown step '{step_id}'",
                        "Point the template marker at an existing step id",
                        subject=step_id,
                    )
                else:
                    depends_on.append(step_id)
        elif isinstance(ref, FromRef):
            if ref.path is not None and not is_valid_path(ref.path):
                result.add_error(
                    SEMANTIC,
                    location,
                    f"Invalid path query '{ref.path}' in $from reference",
                    "Use a path like $.field",
                )
    if owner is not None and owner in depends_on:
        result.add_error(
            SEMANTIC,
            location,
            f"Step '{owner}' references its own output",
            "Remove the self reference",
            subject=owner,
        )
    return depends_on


def validate_semantics(data: Dict[str, Any]) -> ValidationResult:
    """Check references in raw document data. Collects every violation."""
    result = ValidationResult()
    if not isinstance(data, dict):
        return result

    steps = _step_entries(data)
    step_ids = {s["id"] for s in steps}
    dependencies: Dict[str, List[str]] = {}

    raw_steps = data["steps"] if isinstance(data.get("steps"), list) else []
    for i, step in enumerate(raw_steps):
        if not isinstance(step, dict) or not isinstance(step.get("id"), str):
            continue
        location = f"steps[{i}].input"
        expr = _parsed_or_none(step.get("input") or {}, location)
        if expr is None:
            continue
        deps = _check_references(result, expr, location, step_ids, step["id"])
        dependencies.setdefault(step["id"], []).extend(d for d in deps if d != step["id"])

    if "output" in data:
        expr = _parsed_or_none(data["output"], "output")
        if expr is not None:
            _check_references(result, expr, "output", step_ids, None)

    cycle = _find_cycle(list(dependencies), dependencies)
    if cycle:
        result.add_error(
            SEMANTIC,
            "steps",
            f"Circular dependency between steps: {' -> '.join(cycle)}",
            "Break the cycle so every step only depends on earlier steps",
            subject=cycle[0],
        )

    logger.debug(
        "Semantic validation found %d errors, %d warnings",
        len(result.errors),
        len(result.warnings),
    )
    return result


# =============================================================================
# Graph Checks
# =============================================================================


def _find_cycle(order: List[str], successors: Dict[str, List[str]]) -> Optional[List[str]]:
    """Depth-first search with a recursion stack; return the first cycle found.

    The returned list starts and ends with the node the back edge points to.
    """
    visited: Set[str] = set()
    on_stack: Set[str] = set()

    for root in order:
        if root in visited:
            continue
        path = [root]
        iterators = [iter(successors.get(root, []))]
        visited.add(root)
        on_stack.add(root)

        while iterators:
            advanced = False
            for nxt in iterators[-1]:
                if nxt in on_stack:
                    start = path.index(nxt)
                    return path[start:] + [nxt]
                if nxt not in visited:
                    visited.add(nxt)
                    on_stack.add(nxt)
                    path.append(nxt)
                    iterators.append(iter(successors.get(nxt, [])))
                    advanced = True
                    break
            if not advanced:
                on_stack.discard(path.pop())
                iterators.pop()
    return None


def find_graph_cycle(graph: WorkflowGraph) -> Optional[List[str]]:
    successors: Dict[str, List[str]] = {}
    for edge in graph.edges:
        successors.setdefault(edge.source, []).append(edge.target)
    return _find_cycle([n.id for n in graph.nodes], successors)


def validate_graph(graph: WorkflowGraph) -> ValidationResult:
    """Check a graph before compiling it."""
    result = ValidationResult()

    if not graph.nodes:
        result.add_error(
            STRUCTURAL, "nodes", "Workflow has no nodes", "Add at least one node"
        )

    node_ids: Set[str] = set()
    for node in graph.nodes:
        if node.id in node_ids:
            result.add_error(
                STRUCTURAL,
                f"nodes.{node.id}",
                f"Duplicate node id '{node.id}'",
                "Give every node a unique id",
                subject=node.id,
            )
        node_ids.add(node.id)

    for edge in graph.edges:
        for end in ("source", "target"):
            node_id = getattr(edge, end)
            if node_id not in node_ids:
                result.add_error(
                    SEMANTIC,
                    f"edges.{edge.id}",
                    f"Edge {end} '{node_id}' does not exist",
                    "Remove the edge or reconnect it to an existing node",
                    subject=node_id,
                )

    cycle = find_graph_cycle(graph)
    if cycle:
        result.add_error(
            SEMANTIC,
            f"nodes.{cycle[0]}",
            f"Circular dependency detected involving node: {cycle[0]} "
            f"({' -> '.join(cycle)})",
            "Stepflow workflows must be acyclic; remove one of the edges in the loop",
            subject=cycle[0],
        )

    for node in graph.nodes:
        if node.type is NodeType.PROMPT and isinstance(node.config, PromptConfig):
            if not node.config.model:
                result.add_warning(
                    SEMANTIC,
                    f"nodes.{node.id}",
                    "Prompt node has no model; the default model will be used",
                    "Choose a model",
                    subject=node.id,
                )
            if not node.config.user_prompt:
                result.add_warning(
                    SEMANTIC,
                    f"nodes.{node.id}",
                    "Prompt node has an empty user prompt",
                    "Write a user prompt",
                    subject=node.id,
                )
        if node.type in (NodeType.OUTPUT, NodeType.HUMAN_GATE):
            incoming = graph.incoming_edges(node.id)
            if not incoming:
                result.add_warning(
                    SEMANTIC,
                    f"nodes.{node.id}",
                    f"{node.type.value} node has no incoming edge; its value will be empty",
                    "Connect an upstream node",
                    subject=node.id,
                )
            elif len(incoming) > 1:
                result.add_warning(
                    SEMANTIC,
                    f"nodes.{node.id}",
                    f"{node.type.value} node has {len(incoming)} incoming edges; "
                    "only the first is used",
                    "Insert an aggregate node to combine inputs",
                    subject=node.id,
                )

    return result


# =============================================================================
# Compatibility Report
# =============================================================================


@dataclass
class CompatibilityReport:
    """Runtime features a document uses. Advisory only."""

    features: List[str] = field(default_factory=list)
    external_components: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "features": list(self.features),
            "externalComponents": list(self.external_components),
            "recommendations": list(self.recommendations),
        }


def _uses(value: Any, kind: type) -> bool:
    return any(isinstance(ref, kind) for ref in iter_references(value))


def compatibility_report(data: Dict[str, Any]) -> CompatibilityReport:
    """Detect literals, must_execute, batch schema, templates, external components
    and flow-level output in raw document data."""
    report = CompatibilityReport()
    if not isinstance(data, dict):
        return report

    steps = _step_entries(data)
    inputs = [_parsed_or_none(s.get("input") or {}, s["id"]) for s in steps]
    inputs = [i for i in inputs if i is not None]

    if any(_uses(i, LiteralExpr) for i in inputs):
        report.features.append("literal")
        report.recommendations.append(
            "Literal escapes ($literal) are passed through unevaluated; check they are intentional."
        )

    if any(s.get("must_execute") for s in steps):
        report.features.append("must_execute")
        report.recommendations.append(
            "Steps marked must_execute run even when their output is unused; "
            "ensure the runtime version supports it."
        )

    schemas = data.get("schemas")
    if isinstance(schemas, dict) and schemas.get("batch") is not None:
        report.features.append("batch_schema")
        report.recommendations.append(
            "A batch schema is declared; run the workflow with the runtime's batch mode."
        )

    if any(_uses(i, TemplateExpr) for i in inputs):
        report.features.append("template")
        report.recommendations.append(
            "Template strings are rendered by the runtime; prefer native $step/$input "
            "references where a single value is passed."
        )

    for step in steps:
        component = step.get("component")
        if isinstance(component, str) and not component.startswith("/builtin/"):
            if component not in report.external_components:
                report.external_components.append(component)
    if report.external_components:
        report.features.append("external_components")
        report.recommendations.append(
            "External components are used ("
            + ", ".join(report.external_components)
            + "); ensure external plugin config includes required credentials."
        )

    if "output" in data:
        report.features.append("flow_output")
    else:
        report.recommendations.append(
            "No flow-level output is defined; the runtime will return no result."
        )

    return report
