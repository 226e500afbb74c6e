"""
importer.py - Reconstruct a WorkflowGraph from a Stepflow wire document.

Node types come from the component path: first an exact lookup in the
registry's path -> node type table, then a keyword heuristic over the path
(input, output, conditional, aggregate, pause/human, parallel), then prompt.
The heuristic is best-effort: an external component whose path happens to
contain "aggregate" is imported as an aggregate node.

Edges come from every step reference in a step's input, both native
{"$step": X} references and {{$step.X}} markers inside templates.

Nodes are stacked vertically; layout is left to the editor.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from flowbridge.compiler.interpolate import expression_to_template
from flowbridge.config.component_registry import ComponentRegistry, get_registry
from flowbridge.config.runtime_config import get_default_model, get_layout
from flowbridge.errors import DocumentValidationError, UnsupportedComponentError
from flowbridge.graph.ids import IdMapping, sanitize
from flowbridge.graph.types import (
    AggregateConfig,
    AggregateStrategy,
    BranchConfig,
    BranchOption,
    ErrorHandlerConfig,
    ErrorStrategy,
    GraphEdge,
    GraphNode,
    HumanGateConfig,
    InputConfig,
    ModelCompareConfig,
    NodeConfig,
    NodeType,
    OutputConfig,
    Position,
    PromptConfig,
    WorkflowGraph,
)
from flowbridge.validator import validate_import
from flowbridge.wire.evaluator import extract_step_references
from flowbridge.wire.types import WireDocument, WireErrorHandler, WireStep, wire_document_from_dict

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
DEFAULT_USER_PROMPT = "{{input}}"

# Checked in order; first keyword found in the lowercased path wins
COMPONENT_KEYWORDS: Tuple[Tuple[str, NodeType], ...] = (
    ("input", NodeType.INPUT),
    ("output", NodeType.OUTPUT),
    ("conditional", NodeType.BRANCH),
    ("aggregate", NodeType.AGGREGATE),
    ("pause", NodeType.HUMAN_GATE),
    ("human", NodeType.HUMAN_GATE),
    ("parallel", NodeType.MODEL_COMPARE),
)


@dataclass
class ImportResult:
    graph: WorkflowGraph
    warnings: List[str] = field(default_factory=list)
    id_mapping: IdMapping = field(default_factory=IdMapping)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graph": self.graph.to_dict(),
            "warnings": list(self.warnings),
            "idMapping": self.id_mapping.to_dict(),
        }


def infer_node_type(
    component: str,
    registry: Optional[ComponentRegistry] = None,
    strict: bool = False,
    step_id: str = "",
) -> NodeType:
    """Infer the graph node type for a component path.

    With strict=True, a registered component that is neither an LLM nor a
    known node-type component raises UnsupportedComponentError instead of
    being imported as a prompt.
    """
    registry = registry or get_registry()
    node_type = registry.node_type_for_component(component)
    if node_type is not None:
        return node_type

    lowered = component.lower()
    for keyword, keyword_type in COMPONENT_KEYWORDS:
        if keyword in lowered:
            return keyword_type

    if strict and registry.has_component(component):
        raise UnsupportedComponentError(step_id, component)
    return NodeType.PROMPT


# =============================================================================
# Config Reconstruction
# =============================================================================


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _text(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _error_handler(handler: Optional[WireErrorHandler]) -> Optional[ErrorHandlerConfig]:
    if handler is None:
        return None
    return ErrorHandlerConfig(
        strategy=ErrorStrategy(handler.type),
        max_attempts=handler.max_attempts,
        fallback_value=handler.value,
        has_fallback=handler.has_value,
    )


def _find_message(messages: List[Any], role: str) -> Optional[Dict[str, Any]]:
    for message in messages:
        if isinstance(message, dict) and message.get("role") == role:
            return message
    return None


def _prompt_config(step: WireStep, mapping: IdMapping) -> PromptConfig:
    data = step.input
    messages = data.get("messages")
    if isinstance(messages, list):
        system = _find_message(messages, "system")
        user = _find_message(messages, "user")
        system_prompt = expression_to_template(system.get("content"), mapping) if system else ""
        if user is not None and "content" in user:
            user_prompt = expression_to_template(user["content"], mapping)
        else:
            user_prompt = DEFAULT_USER_PROMPT
    else:
        system_prompt = DEFAULT_SYSTEM_PROMPT
        user_prompt = DEFAULT_USER_PROMPT

    return PromptConfig(
        user_prompt=user_prompt,
        system_prompt=system_prompt,
        model=_text(data.get("model")) or get_default_model(),
        temperature=_number(data.get("temperature")),
        max_tokens=_number(data.get("max_tokens")),
        top_p=_number(data.get("top_p")),
        frequency_penalty=_number(data.get("frequency_penalty")),
        presence_penalty=_number(data.get("presence_penalty")),
        on_error=_error_handler(step.on_error),
        must_execute=step.must_execute,
    )


def _branch_config(step: WireStep) -> BranchConfig:
    branches = []
    for item in step.input.get("branches") or []:
        if not isinstance(item, dict):
            continue
        branches.append(
            BranchOption(
                id=str(item.get("id", "")),
                label=_text(item.get("label")),
                condition=_text(item.get("condition")),
            )
        )
    return BranchConfig(
        condition=_text(step.input.get("condition")) or "true",
        branches=tuple(branches),
    )


def _aggregate_config(step: WireStep, warnings: List[str]) -> AggregateConfig:
    raw = step.input.get("strategy") or "concat"
    try:
        strategy = AggregateStrategy(raw)
    except ValueError:
        warnings.append(f"Step '{step.id}': unknown aggregate strategy {raw!r}, using concat")
        strategy = AggregateStrategy.CONCAT
    separator = step.input.get("separator")
    return AggregateConfig(
        strategy=strategy,
        separator=separator if isinstance(separator, str) else "\n",
    )


def _model_compare_config(step: WireStep, mapping: IdMapping) -> ModelCompareConfig:
    branches = [b for b in step.input.get("branches") or [] if isinstance(b, dict)]
    branch_inputs = [b.get("input") for b in branches if isinstance(b.get("input"), dict)]
    models = tuple(
        i["model"] for i in branch_inputs if isinstance(i.get("model"), str) and i["model"]
    )

    prompt = DEFAULT_USER_PROMPT
    temperature = max_tokens = None
    if branch_inputs:
        first = branch_inputs[0]
        temperature = _number(first.get("temperature"))
        max_tokens = _number(first.get("max_tokens"))
        messages = first.get("messages")
        if isinstance(messages, list):
            user = _find_message(messages, "user")
            if user is not None and "content" in user:
                prompt = expression_to_template(user["content"], mapping)

    return ModelCompareConfig(
        models=models,
        prompt=prompt,
        temperature=temperature,
        max_tokens=max_tokens,
    )


def rebuild_config(
    node_type: NodeType, step: WireStep, mapping: IdMapping, warnings: List[str]
) -> NodeConfig:
    """Inverse of the exporter's converter for node_type."""
    data = step.input

    if node_type is NodeType.PROMPT:
        return _prompt_config(step, mapping)

    if node_type is NodeType.INPUT:
        return InputConfig(
            input_type=_text(data.get("input_type")) or "text",
            required=data.get("required") is True,
            description=_text(data.get("description")),
        )

    if node_type is NodeType.OUTPUT:
        return OutputConfig()

    if node_type is NodeType.BRANCH:
        return _branch_config(step)

    if node_type is NodeType.AGGREGATE:
        return _aggregate_config(step, warnings)

    if node_type is NodeType.HUMAN_GATE:
        allow_edit = data.get("allow_edit")
        timeout = data.get("timeout_seconds")
        return HumanGateConfig(
            instructions=_text(data.get("instructions")),
            allow_edit=allow_edit if isinstance(allow_edit, bool) else True,
            timeout=timeout if isinstance(timeout, int) and not isinstance(timeout, bool) else None,
        )

    if node_type is NodeType.MODEL_COMPARE:
        return _model_compare_config(step, mapping)

    raise UnsupportedComponentError(step.id, step.component)


# =============================================================================
# Entry Points
# =============================================================================


def _node_mapping(doc: WireDocument) -> IdMapping:
    """Map step ids back to node ids, honoring metadata.source_node_id."""
    mapping = IdMapping()
    used = set()
    for step in doc.steps:
        source = step.metadata.get("source_node_id")
        node_id = source if isinstance(source, str) and source else step.id
        if node_id in used:
            node_id = step.id if step.id not in used else sanitize(step.id, used)
        used.add(node_id)
        mapping.add(node_id, step.id)
    return mapping


def reconstruct_graph(
    document: Union[WireDocument, Dict[str, Any]],
    registry: Optional[ComponentRegistry] = None,
    graph_id: Optional[str] = None,
    strict: bool = False,
) -> ImportResult:
    """Rebuild a graph from a wire document.

    Does not validate; use import_document() for untrusted input.

    Raises:
        ParseError: if `document` is raw data that cannot be parsed.
        UnsupportedComponentError: in strict mode, for components with no node type.
    """
    if isinstance(document, dict):
        document = wire_document_from_dict(document)
    registry = registry or get_registry()

    mapping = _node_mapping(document)
    warnings: List[str] = []
    x, y_start, y_step = get_layout()

    nodes: List[GraphNode] = []
    for i, step in enumerate(document.steps):
        node_type = infer_node_type(step.component, registry, strict=strict, step_id=step.id)
        label = step.metadata.get("label")
        nodes.append(
            GraphNode(
                id=mapping.to_node_id(step.id),
                type=node_type,
                label=label if isinstance(label, str) and label else step.id,
                config=rebuild_config(node_type, step, mapping, warnings),
                position=Position(x=x, y=y_start + i * y_step),
            )
        )

    step_ids = set(document.step_ids())
    edges: List[GraphEdge] = []
    seen = set()
    for step in document.steps:
        target = mapping.to_node_id(step.id)
        for ref in extract_step_references(step.input):
            if ref not in step_ids:
                logger.warning(
                    "Step '%s' references unknown step '%s'; edge skipped", step.id, ref
                )
                warnings.append(f"Step '{step.id}' references unknown step '{ref}'; edge skipped")
                continue
            source = mapping.to_node_id(ref)
            if source == target or (source, target) in seen:
                continue
            seen.add((source, target))
            edges.append(GraphEdge(id=f"edge-{source}-{target}", source=source, target=target))

    graph = WorkflowGraph(
        id=graph_id or str(uuid.uuid4()),
        name=document.name,
        nodes=tuple(nodes),
        edges=tuple(edges),
        variables={},
        description=document.description or "",
    )
    logger.debug(
        "Reconstructed workflow '%s': %d nodes, %d edges",
        graph.name,
        len(nodes),
        len(edges),
    )
    return ImportResult(graph=graph, warnings=warnings, id_mapping=mapping)


def import_document(
    data: Dict[str, Any],
    registry: Optional[ComponentRegistry] = None,
    graph_id: Optional[str] = None,
) -> ImportResult:
    """Validate untrusted document data, then reconstruct a graph from it.

    Raises:
        DocumentValidationError: carrying every structural and semantic error.
    """
    validation = validate_import(data)
    if not validation.valid:
        raise DocumentValidationError(validation)

    result = reconstruct_graph(data, registry=registry, graph_id=graph_id)
    result.warnings[:0] = [str(w) for w in validation.warnings]
    return result
