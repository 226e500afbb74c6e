"""
exporter.py - Compile a WorkflowGraph into a Stepflow wire document.

Compilation steps:
1. Validate the graph (duplicate ids, dangling edges, cycles). Errors abort.
2. Map node ids to wire-legal step ids.
3. Order nodes so every step comes after the steps it depends on.
4. Convert each node with the converter registered for its type.
5. Derive the flow output from terminal nodes and the input schema from
   input nodes.

Every NodeType has a converter; a missing one fails at import time, not when
a graph happens to use the type.

Usage:
    from flowbridge.compiler.exporter import compile_graph

    result = compile_graph(graph)
    print(document_to_yaml(result.document))
    for warning in result.warnings:
        print(warning)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from flowbridge.compiler.interpolate import interpolate_template
from flowbridge.config.component_registry import ComponentRegistry, get_registry
from flowbridge.config.runtime_config import get_default, get_default_model, get_schema_uri
from flowbridge.errors import GraphValidationError, UnsupportedNodeTypeError
from flowbridge.graph.ids import IdMapping, build_id_mapping
from flowbridge.graph.types import (
    AggregateConfig,
    BranchConfig,
    BranchOption,
    ErrorHandlerConfig,
    ErrorStrategy,
    GraphEdge,
    GraphNode,
    HumanGateConfig,
    InputConfig,
    ModelCompareConfig,
    NodeType,
    PromptConfig,
    WorkflowGraph,
    workflow_graph_from_dict,
)
from flowbridge.validator.semantic import validate_graph
from flowbridge.wire.expressions import StepRef
from flowbridge.wire.serialization import document_to_json, document_to_yaml
from flowbridge.wire.types import WireDocument, WireErrorHandler, WireStep

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = "Please review and approve"
DEFAULT_INPUT_DESCRIPTION = "User input"


@dataclass
class CompileResult:
    """A compiled document plus everything the caller may want to show."""

    document: WireDocument
    warnings: List[str] = field(default_factory=list)
    id_mapping: IdMapping = field(default_factory=IdMapping)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document": self.document.to_dict(),
            "warnings": list(self.warnings),
            "idMapping": self.id_mapping.to_dict(),
        }


@dataclass
class _CompileState:
    graph: WorkflowGraph
    mapping: IdMapping
    registry: ComponentRegistry
    incoming: Dict[str, List[GraphEdge]]
    warnings: List[str]

    def step_id(self, node_id: str) -> str:
        return self.mapping.to_step_id(node_id)

    def first_source(self, node: GraphNode) -> Optional[StepRef]:
        """Reference to the first incoming edge's source. Later edges are ignored."""
        edges = self.incoming.get(node.id, [])
        if not edges:
            return None
        return StepRef(step=self.step_id(edges[0].source))

    def interpolate(self, node: GraphNode, template: str) -> Any:
        before = len(self.warnings)
        value = interpolate_template(
            template, self.incoming.get(node.id, []), self.mapping, self.warnings
        )
        for i in range(before, len(self.warnings)):
            self.warnings[i] = f"Node '{node.id}': {self.warnings[i]}"
        return value


# =============================================================================
# Node Converters
# =============================================================================


def _fixed_component(node: GraphNode, state: _CompileState) -> str:
    component = state.registry.component_for_node_type(node.type)
    if component is None:
        raise UnsupportedNodeTypeError(node.id, node.type.value)
    return component


def _convert_input(node: GraphNode, state: _CompileState) -> WireStep:
    config: InputConfig = node.config
    return WireStep(
        id=state.step_id(node.id),
        component=_fixed_component(node, state),
        input={
            "input_type": config.input_type or "text",
            "required": config.required,
            "description": config.description or DEFAULT_INPUT_DESCRIPTION,
        },
    )


def _convert_output(node: GraphNode, state: _CompileState) -> WireStep:
    step_input: Dict[str, Any] = {"format": "json"}
    source = state.first_source(node)
    if source is not None:
        step_input["value"] = source
    return WireStep(
        id=state.step_id(node.id),
        component=_fixed_component(node, state),
        input=step_input,
    )


def build_error_handler(config: Optional[ErrorHandlerConfig]) -> Optional[WireErrorHandler]:
    """Map the graph error handler onto the wire on_error shape."""
    if config is None:
        return None
    if config.strategy is ErrorStrategy.RETRY:
        attempts = config.max_attempts or get_default("retry_max_attempts", 3)
        return WireErrorHandler(type="retry", max_attempts=attempts)
    if config.strategy is ErrorStrategy.DEFAULT:
        return WireErrorHandler(type="default", value=config.fallback_value, has_value=True)
    return WireErrorHandler(type="fail")


def _with_default(value: Any, key: str, fallback: Any) -> Any:
    return value if value is not None else get_default(key, fallback)


def _convert_prompt(node: GraphNode, state: _CompileState) -> WireStep:
    config: PromptConfig = node.config
    model = config.model or get_default_model()

    messages: List[Dict[str, Any]] = []
    if config.system_prompt:
        messages.append(
            {"role": "system", "content": state.interpolate(node, config.system_prompt)}
        )
    messages.append({"role": "user", "content": state.interpolate(node, config.user_prompt)})

    return WireStep(
        id=state.step_id(node.id),
        component=state.registry.resolve_model_component(model),
        input={
            "model": model,
            "messages": messages,
            "temperature": _with_default(config.temperature, "temperature", 0.7),
            "max_tokens": _with_default(config.max_tokens, "max_tokens", 2048),
            "top_p": _with_default(config.top_p, "top_p", 1.0),
            "frequency_penalty": _with_default(config.frequency_penalty, "frequency_penalty", 0),
            "presence_penalty": _with_default(config.presence_penalty, "presence_penalty", 0),
        },
        on_error=build_error_handler(config.on_error),
        must_execute=config.must_execute,
    )


def _convert_branch(node: GraphNode, state: _CompileState) -> WireStep:
    config: BranchConfig = node.config
    condition = config.condition or "true"
    branches = config.branches or (BranchOption(id="true", label="True", condition=condition),)
    return WireStep(
        id=state.step_id(node.id),
        component=_fixed_component(node, state),
        input={
            "condition": condition,
            "branches": [b.to_dict() for b in branches],
        },
    )


def _convert_aggregate(node: GraphNode, state: _CompileState) -> WireStep:
    config: AggregateConfig = node.config
    inputs = [StepRef(step=state.step_id(e.source)) for e in state.incoming.get(node.id, [])]
    return WireStep(
        id=state.step_id(node.id),
        component=_fixed_component(node, state),
        input={
            "strategy": config.strategy.value,
            "separator": config.separator,
            "inputs": inputs,
        },
    )


def _convert_human_gate(node: GraphNode, state: _CompileState) -> WireStep:
    config: HumanGateConfig = node.config
    step_input: Dict[str, Any] = {
        "instructions": config.instructions or DEFAULT_INSTRUCTIONS,
        "allow_edit": config.allow_edit,
    }
    if config.timeout:
        step_input["timeout_seconds"] = config.timeout
    source = state.first_source(node)
    if source is not None:
        step_input["value"] = source
    return WireStep(
        id=state.step_id(node.id),
        component=_fixed_component(node, state),
        input=step_input,
    )


def _convert_model_compare(node: GraphNode, state: _CompileState) -> WireStep:
    config: ModelCompareConfig = node.config
    models = list(config.models) or list(get_default("compare_models", ["gpt-4", "claude-3-opus"]))
    prompt = state.interpolate(node, config.prompt)
    temperature = _with_default(config.temperature, "temperature", 0.7)
    max_tokens = _with_default(config.max_tokens, "max_tokens", 2048)

    branches = [
        {
            "component": state.registry.resolve_model_component(model),
            "input": {
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
        }
        for model in models
    ]
    return WireStep(
        id=state.step_id(node.id),
        component=_fixed_component(node, state),
        input={"branches": branches},
    )


NodeConverter = Callable[[GraphNode, _CompileState], WireStep]

NODE_CONVERTERS: Dict[NodeType, NodeConverter] = {
    NodeType.INPUT: _convert_input,
    NodeType.OUTPUT: _convert_output,
    NodeType.PROMPT: _convert_prompt,
    NodeType.BRANCH: _convert_branch,
    NodeType.AGGREGATE: _convert_aggregate,
    NodeType.HUMAN_GATE: _convert_human_gate,
    NodeType.MODEL_COMPARE: _convert_model_compare,
}

_missing_converters = [t.value for t in NodeType if t not in NODE_CONVERTERS]
if _missing_converters:
    raise RuntimeError(f"No converter registered for node types: {_missing_converters}")


def convert_node(node: GraphNode, state: _CompileState) -> WireStep:
    converter = NODE_CONVERTERS.get(node.type)
    if converter is None:
        raise UnsupportedNodeTypeError(node.id, str(node.type))
    step = converter(node, state)

    metadata: Dict[str, Any] = {"label": node.label}
    if step.id != node.id:
        metadata["source_node_id"] = node.id
    return WireStep(
        id=step.id,
        component=step.component,
        input=step.input,
        on_error=step.on_error,
        must_execute=step.must_execute,
        metadata=metadata,
    )


# =============================================================================
# Ordering, Output and Input Schema
# =============================================================================


def topological_order(
    graph: WorkflowGraph, incoming: Dict[str, List[GraphEdge]]
) -> List[GraphNode]:
    """Source nodes first (in node order), then every other node after its dependencies.

    The graph must be acyclic.
    """
    nodes_by_id = {n.id: n for n in graph.nodes}
    done = set()
    order: List[GraphNode] = []

    def visit(root: str) -> None:
        stack: List[Tuple[str, bool]] = [(root, False)]
        while stack:
            node_id, expanded = stack.pop()
            if node_id in done:
                continue
            if expanded:
                done.add(node_id)
                order.append(nodes_by_id[node_id])
                continue
            stack.append((node_id, True))
            for edge in reversed(incoming.get(node_id, [])):
                if edge.source in nodes_by_id and edge.source not in done:
                    stack.append((edge.source, False))

    for node in graph.nodes:
        if not incoming.get(node.id):
            visit(node.id)
    for node in graph.nodes:
        visit(node.id)
    return order


def build_output(graph: WorkflowGraph, mapping: IdMapping) -> Tuple[Any, bool]:
    """Return (output expression, has_output).

    Terminal nodes (no outgoing edges) and output-typed nodes are outputs.
    One output is referenced directly; several become an object keyed by step id.
    """
    sources = {e.source for e in graph.edges}
    outputs = [n for n in graph.nodes if n.id not in sources or n.type is NodeType.OUTPUT]
    if not outputs:
        return None, False
    if len(outputs) == 1:
        return StepRef(step=mapping.to_step_id(outputs[0].id)), True
    result: Dict[str, Any] = {}
    for node in outputs:
        step_id = mapping.to_step_id(node.id)
        result[step_id] = StepRef(step=step_id)
    return result, True


def build_input_schema(graph: WorkflowGraph, mapping: IdMapping) -> Optional[Dict[str, Any]]:
    """JSON schema for the workflow input: one property per input node."""
    input_nodes = [n for n in graph.nodes if n.type is NodeType.INPUT]
    if not input_nodes:
        return None

    properties: Dict[str, Any] = {}
    required: List[str] = []
    for node in input_nodes:
        config: InputConfig = node.config
        step_id = mapping.to_step_id(node.id)
        properties[step_id] = {
            "type": "number" if config.input_type == "number" else "string",
            "description": config.description or node.label,
        }
        if config.required:
            required.append(step_id)
    return {"type": "object", "properties": properties, "required": required}


# =============================================================================
# Entry Points
# =============================================================================


def compile_graph(
    graph: Union[WorkflowGraph, Dict[str, Any]],
    registry: Optional[ComponentRegistry] = None,
) -> CompileResult:
    """Compile a graph into a wire document.

    Raises:
        GraphValidationError: if the graph has a cycle, a dangling edge or a
            duplicate node id. No partial document is produced.
        UnsupportedNodeTypeError: if a node type has no converter.
    """
    if isinstance(graph, dict):
        graph = workflow_graph_from_dict(graph)
    registry = registry or get_registry()

    validation = validate_graph(graph)
    if not validation.valid:
        raise GraphValidationError(validation)

    incoming: Dict[str, List[GraphEdge]] = {}
    for edge in graph.edges:
        incoming.setdefault(edge.target, []).append(edge)

    mapping = build_id_mapping(graph.nodes)
    state = _CompileState(
        graph=graph,
        mapping=mapping,
        registry=registry,
        incoming=incoming,
        warnings=[str(w) for w in validation.warnings],
    )

    steps = tuple(convert_node(node, state) for node in topological_order(graph, incoming))
    output, has_output = build_output(graph, mapping)
    name = (graph.name or graph.id or "Untitled workflow")[:256]

    document = WireDocument(
        name=name,
        steps=steps,
        schema_uri=get_schema_uri(),
        description=(graph.description or f"Generated from workflow: {name}")[:4096],
        input_schema=build_input_schema(graph, mapping),
        output=output,
        has_output=has_output,
    )

    logger.debug(
        "Compiled workflow '%s': %d steps, %d warnings",
        name,
        len(steps),
        len(state.warnings),
    )
    return CompileResult(document=document, warnings=state.warnings, id_mapping=mapping)


def export_yaml(graph: Union[WorkflowGraph, Dict[str, Any]], registry=None) -> str:
    return document_to_yaml(compile_graph(graph, registry).document)


def export_json(graph: Union[WorkflowGraph, Dict[str, Any]], registry=None) -> str:
    return document_to_json(compile_graph(graph, registry).document)
