"""
types.py - Dataclasses for the visual workflow graph.

A WorkflowGraph is what the editor produces: nodes with a position and a
type-specific config, plus edges between them. Node configs form a closed
tagged union keyed by NodeType; every NodeType has exactly one config class.

Graphs are treated as immutable values. Parsing uses the editor's camelCase
JSON keys; to_dict() writes the same keys back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from flowbridge.errors import UnsupportedNodeTypeError


class NodeType(Enum):
    """Closed set of graph node types."""
    INPUT = "input"
    OUTPUT = "output"
    PROMPT = "prompt"
    BRANCH = "branch"
    AGGREGATE = "aggregate"
    HUMAN_GATE = "human_gate"
    MODEL_COMPARE = "model_compare"


class ErrorStrategy(Enum):
    """What to do when a step fails."""
    RETRY = "retry"
    DEFAULT = "default"
    FAIL = "fail"


class AggregateStrategy(Enum):
    CONCAT = "concat"
    VOTE = "vote"
    MERGE = "merge"


# =============================================================================
# Node Configs
# =============================================================================


@dataclass(frozen=True)
class ErrorHandlerConfig:
    """Graph-side error handler.

    max_attempts only matters for RETRY, fallback_value only for DEFAULT.
    has_fallback distinguishes an explicit null fallback from no fallback.
    """
    strategy: ErrorStrategy
    max_attempts: Optional[int] = None
    fallback_value: Any = None
    has_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"strategy": self.strategy.value}
        if self.max_attempts is not None:
            result["maxAttempts"] = self.max_attempts
        if self.has_fallback:
            result["fallbackValue"] = self.fallback_value
        return result


@dataclass(frozen=True)
class InputConfig:
    input_type: str = "text"
    required: bool = False
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputType": self.input_type,
            "required": self.required,
            "description": self.description,
        }


@dataclass(frozen=True)
class OutputConfig:
    def to_dict(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class PromptConfig:
    """Config for a single LLM call.

    Numeric fields left as None are filled with defaults at compile time.
    """
    user_prompt: str = ""
    system_prompt: str = ""
    model: str = ""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    on_error: Optional[ErrorHandlerConfig] = None
    must_execute: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "systemPrompt": self.system_prompt,
            "userPrompt": self.user_prompt,
            "model": self.model,
        }
        optional = (
            ("temperature", self.temperature),
            ("maxTokens", self.max_tokens),
            ("topP", self.top_p),
            ("frequencyPenalty", self.frequency_penalty),
            ("presencePenalty", self.presence_penalty),
        )
        for key, value in optional:
            if value is not None:
                result[key] = value
        if self.on_error is not None:
            result["onError"] = self.on_error.to_dict()
        if self.must_execute:
            result["mustExecute"] = True
        return result


@dataclass(frozen=True)
class BranchOption:
    id: str
    label: str
    condition: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "condition": self.condition}


@dataclass(frozen=True)
class BranchConfig:
    condition: str = "true"
    branches: Tuple[BranchOption, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "condition": self.condition,
            "branches": [b.to_dict() for b in self.branches],
        }


@dataclass(frozen=True)
class AggregateConfig:
    strategy: AggregateStrategy = AggregateStrategy.CONCAT
    separator: str = "\n"

    def to_dict(self) -> Dict[str, Any]:
        return {"strategy": self.strategy.value, "separator": self.separator}


@dataclass(frozen=True)
class HumanGateConfig:
    instructions: str = ""
    allow_edit: bool = True
    timeout: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "instructions": self.instructions,
            "allowEdit": self.allow_edit,
        }
        if self.timeout is not None:
            result["timeout"] = self.timeout
        return result


@dataclass(frozen=True)
class ModelCompareConfig:
    models: Tuple[str, ...] = ()
    prompt: str = ""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"models": list(self.models), "prompt": self.prompt}
        if self.temperature is not None:
            result["temperature"] = self.temperature
        if self.max_tokens is not None:
            result["maxTokens"] = self.max_tokens
        return result


NodeConfig = Union[
    InputConfig,
    OutputConfig,
    PromptConfig,
    BranchConfig,
    AggregateConfig,
    HumanGateConfig,
    ModelCompareConfig,
]

CONFIG_TYPES = {
    NodeType.INPUT: InputConfig,
    NodeType.OUTPUT: OutputConfig,
    NodeType.PROMPT: PromptConfig,
    NodeType.BRANCH: BranchConfig,
    NodeType.AGGREGATE: AggregateConfig,
    NodeType.HUMAN_GATE: HumanGateConfig,
    NodeType.MODEL_COMPARE: ModelCompareConfig,
}


# =============================================================================
# Graph Structure
# =============================================================================


@dataclass(frozen=True)
class Position:
    x: float = 0
    y: float = 0


@dataclass(frozen=True)
class GraphNode:
    """A node in the visual graph. Position is UI-only."""
    id: str
    type: NodeType
    label: str
    config: NodeConfig
    position: Position = field(default_factory=Position)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "position": {"x": self.position.x, "y": self.position.y},
            "data": {"label": self.label, "config": self.config.to_dict()},
        }


@dataclass(frozen=True)
class GraphEdge:
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
        }
        if self.source_handle is not None:
            result["sourceHandle"] = self.source_handle
        if self.target_handle is not None:
            result["targetHandle"] = self.target_handle
        return result


@dataclass(frozen=True)
class WorkflowGraph:
    """A complete workflow as drawn in the editor."""
    id: str
    name: str
    nodes: Tuple[GraphNode, ...] = ()
    edges: Tuple[GraphEdge, ...] = ()
    variables: Dict[str, Any] = field(default_factory=dict)
    description: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def incoming_edges(self, node_id: str) -> List[GraphEdge]:
        return [e for e in self.edges if e.target == node_id]

    def outgoing_edges(self, node_id: str) -> List[GraphEdge]:
        return [e for e in self.edges if e.source == node_id]

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "variables": dict(self.variables),
        }
        if self.description:
            result["description"] = self.description
        if self.created_at is not None:
            result["createdAt"] = self.created_at
        if self.updated_at is not None:
            result["updatedAt"] = self.updated_at
        return result


# =============================================================================
# Parsing
# =============================================================================


def error_handler_from_dict(data: Dict[str, Any]) -> ErrorHandlerConfig:
    """Parse a graph-side error handler ({strategy, maxAttempts, fallbackValue})."""
    try:
        strategy = ErrorStrategy(data.get("strategy", "fail"))
    except ValueError:
        raise ValueError(f"Invalid error strategy: {data.get('strategy')!r}")
    return ErrorHandlerConfig(
        strategy=strategy,
        max_attempts=data.get("maxAttempts"),
        fallback_value=data.get("fallbackValue"),
        has_fallback="fallbackValue" in data,
    )


def node_config_from_dict(node_type: NodeType, data: Dict[str, Any]) -> NodeConfig:
    """Parse the type-specific config for a node."""
    data = data or {}

    if node_type is NodeType.INPUT:
        return InputConfig(
            input_type=data.get("inputType") or "text",
            required=bool(data.get("required", False)),
            description=data.get("description") or "",
        )

    if node_type is NodeType.OUTPUT:
        return OutputConfig()

    if node_type is NodeType.PROMPT:
        on_error = data.get("onError")
        return PromptConfig(
            user_prompt=data.get("userPrompt") or "",
            system_prompt=data.get("systemPrompt") or "",
            model=data.get("model") or "",
            temperature=data.get("temperature"),
            max_tokens=data.get("maxTokens"),
            top_p=data.get("topP"),
            frequency_penalty=data.get("frequencyPenalty"),
            presence_penalty=data.get("presencePenalty"),
            on_error=error_handler_from_dict(on_error) if on_error else None,
            must_execute=bool(data.get("mustExecute", False)),
        )

    if node_type is NodeType.BRANCH:
        branches = tuple(
            BranchOption(
                id=str(b.get("id", "")),
                label=b.get("label", ""),
                condition=b.get("condition", ""),
            )
            for b in data.get("branches") or []
        )
        return BranchConfig(condition=data.get("condition") or "true", branches=branches)

    if node_type is NodeType.AGGREGATE:
        strategy_str = data.get("strategy") or "concat"
        try:
            strategy = AggregateStrategy(strategy_str)
        except ValueError:
            raise ValueError(f"Invalid aggregate strategy: {strategy_str!r}")
        separator = data.get("separator")
        return AggregateConfig(
            strategy=strategy,
            separator="\n" if separator is None else separator,
        )

    if node_type is NodeType.HUMAN_GATE:
        return HumanGateConfig(
            instructions=data.get("instructions") or data.get("approvalPrompt") or "",
            allow_edit=bool(data.get("allowEdit", True)),
            timeout=data.get("timeout"),
        )

    if node_type is NodeType.MODEL_COMPARE:
        return ModelCompareConfig(
            models=tuple(data.get("models") or ()),
            prompt=data.get("prompt") or "",
            temperature=data.get("temperature"),
            max_tokens=data.get("maxTokens"),
        )

    raise ValueError(f"No config parser for node type {node_type.value!r}")


def graph_node_from_dict(data: Dict[str, Any]) -> GraphNode:
    """Parse a GraphNode. Unknown types raise UnsupportedNodeTypeError."""
    node_id = str(data["id"])
    type_str = data.get("type", "")
    try:
        node_type = NodeType(type_str)
    except ValueError:
        raise UnsupportedNodeTypeError(node_id, str(type_str))

    node_data = data.get("data") or {}
    position_data = data.get("position") or {}
    return GraphNode(
        id=node_id,
        type=node_type,
        label=node_data.get("label") or node_id,
        config=node_config_from_dict(node_type, node_data.get("config") or {}),
        position=Position(x=position_data.get("x", 0), y=position_data.get("y", 0)),
    )


def graph_edge_from_dict(data: Dict[str, Any]) -> GraphEdge:
    source = str(data["source"])
    target = str(data["target"])
    return GraphEdge(
        id=str(data.get("id") or f"edge-{source}-{target}"),
        source=source,
        target=target,
        source_handle=data.get("sourceHandle"),
        target_handle=data.get("targetHandle"),
    )


def workflow_graph_from_dict(data: Dict[str, Any]) -> WorkflowGraph:
    """Parse a WorkflowGraph from the editor's JSON shape."""
    return WorkflowGraph(
        id=str(data.get("id", "")),
        name=data.get("name", ""),
        nodes=tuple(graph_node_from_dict(n) for n in data.get("nodes", [])),
        edges=tuple(graph_edge_from_dict(e) for e in data.get("edges", [])),
        variables=dict(data.get("variables") or {}),
        description=data.get("description", ""),
        created_at=data.get("createdAt"),
        updated_at=data.get("updatedAt"),
    )
