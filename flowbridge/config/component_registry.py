"""Component/provider registry for Stepflow components.

Provides:
1. The builtin component catalog (input, output, conditional, aggregate, pause,
   parallel, eval, blob get/put, http) plus the known external LLM plugins
2. Prefix-based model -> component resolution for prompt nodes
3. Node type <-> component path tables used by the compiler and reconstructor
4. Search, autocomplete, path validation and Markdown documentation
5. Plugin and MCP server registration, and the runtime's plugin/route config

A ComponentRegistry is a value: tests and callers can build isolated
instances. get_registry() returns a shared instance for convenience;
registration on it is guarded by a lock.

Model resolution examples:
    >>> resolve_model_component("gpt-4o")
    '/builtin/openai'
    >>> resolve_model_component("Claude-3-opus")
    '/stepflow-anthropic/anthropic'
"""

from __future__ import annotations

import copy
import difflib
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from flowbridge.config.runtime_config import get_fallback_component
from flowbridge.graph.types import NodeType, PromptConfig, WorkflowGraph

logger = logging.getLogger(__name__)

CATEGORIES = ("llm", "tool", "data", "control", "utility", "integration", "custom")


@dataclass(frozen=True)
class ComponentExample:
    name: str
    input: Dict[str, Any]
    description: str = ""


@dataclass(frozen=True)
class ComponentInfo:
    """A component the runtime can execute."""
    path: str
    name: str
    provider: str
    category: str
    description: str = ""
    input_schema: Optional[Dict[str, Any]] = None
    output_schema: Optional[Dict[str, Any]] = None
    supports_streaming: bool = False
    required_env: Tuple[str, ...] = ()
    examples: Tuple[ComponentExample, ...] = ()

    @property
    def is_builtin(self) -> bool:
        return self.provider == "builtin"

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "path": self.path,
            "name": self.name,
            "provider": self.provider,
            "category": self.category,
            "description": self.description,
            "supportsStreaming": self.supports_streaming,
        }
        if self.input_schema is not None:
            result["inputSchema"] = self.input_schema
        if self.output_schema is not None:
            result["outputSchema"] = self.output_schema
        if self.required_env:
            result["requiredEnv"] = list(self.required_env)
        return result


@dataclass(frozen=True)
class PluginInfo:
    id: str
    type: str  # builtin | stepflow | mcp
    name: str
    components: Tuple[ComponentInfo, ...] = ()
    description: str = ""
    status: str = "connected"  # connected | disconnected | error
    last_error: Optional[str] = None


@dataclass(frozen=True)
class MCPServerConfig:
    id: str
    name: str
    type: str = "stdio"  # stdio | sse | http
    command: Optional[str] = None
    args: Tuple[str, ...] = ()
    env: Dict[str, str] = field(default_factory=dict)
    url: Optional[str] = None
    description: str = ""


@dataclass
class PathCheck:
    """Result of validate_component_path."""
    valid: bool
    component: Optional[ComponentInfo] = None
    error: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "component": self.component.to_dict() if self.component else None,
            "error": self.error,
            "suggestions": list(self.suggestions),
        }


# =============================================================================
# Catalog
# =============================================================================


def _obj(properties: Dict[str, Any], required: Iterable[str] = ()) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    required = list(required)
    if required:
        schema["required"] = required
    return schema


BUILTIN_COMPONENTS: Tuple[ComponentInfo, ...] = (
    ComponentInfo(
        path="/builtin/openai",
        name="OpenAI",
        provider="builtin",
        category="llm",
        description="OpenAI GPT models (GPT-4, GPT-3.5, etc.)",
        input_schema=_obj(
            {
                "model": {"type": "string", "description": "Model ID (e.g., gpt-4)"},
                "messages": {"type": "array", "description": "Chat messages"},
                "temperature": {"type": "number", "default": 0.7},
                "max_tokens": {"type": "number", "default": 2048},
                "top_p": {"type": "number", "default": 1.0},
                "frequency_penalty": {"type": "number", "default": 0},
                "presence_penalty": {"type": "number", "default": 0},
            },
            required=("model", "messages"),
        ),
        supports_streaming=True,
        required_env=("OPENAI_API_KEY",),
        examples=(
            ComponentExample(
                name="Simple chat",
                input={"model": "gpt-4", "messages": [{"role": "user", "content": "Hello!"}]},
            ),
        ),
    ),
    ComponentInfo(
        path="/builtin/input",
        name="Input",
        provider="builtin",
        category="control",
        description="Collect user input",
        input_schema=_obj(
            {
                "input_type": {"type": "string", "enum": ["text", "number", "file"], "default": "text"},
                "required": {"type": "boolean", "default": False},
                "description": {"type": "string"},
            }
        ),
    ),
    ComponentInfo(
        path="/builtin/output",
        name="Output",
        provider="builtin",
        category="control",
        description="Output workflow results",
        input_schema=_obj(
            {
                "format": {"type": "string", "enum": ["json", "text"], "default": "json"},
                "value": {},
            }
        ),
    ),
    ComponentInfo(
        path="/builtin/conditional",
        name="Conditional",
        provider="builtin",
        category="control",
        description="Branch execution based on condition",
        input_schema=_obj(
            {
                "condition": {"type": "string", "description": "Expression to evaluate"},
                "branches": {"type": "array"},
            }
        ),
    ),
    ComponentInfo(
        path="/builtin/aggregate",
        name="Aggregate",
        provider="builtin",
        category="control",
        description="Aggregate multiple inputs",
        input_schema=_obj(
            {
                "strategy": {"type": "string", "enum": ["concat", "vote", "merge"], "default": "concat"},
                "separator": {"type": "string", "default": "\n"},
                "inputs": {"type": "array"},
            }
        ),
    ),
    ComponentInfo(
        path="/builtin/pause",
        name="Pause/Human Gate",
        provider="builtin",
        category="control",
        description="Pause for human review and approval",
        input_schema=_obj(
            {
                "instructions": {"type": "string"},
                "allow_edit": {"type": "boolean", "default": True},
                "timeout_seconds": {"type": "number"},
                "value": {},
            }
        ),
    ),
    ComponentInfo(
        path="/builtin/parallel",
        name="Parallel",
        provider="builtin",
        category="control",
        description="Execute branches in parallel",
        input_schema=_obj({"branches": {"type": "array"}}),
    ),
    ComponentInfo(
        path="/builtin/eval",
        name="Eval",
        provider="builtin",
        category="utility",
        description="Evaluate an expression",
        input_schema=_obj(
            {"expression": {"type": "string"}, "context": {"type": "object"}},
            required=("expression",),
        ),
    ),
    ComponentInfo(
        path="/builtin/put_blob",
        name="Put Blob",
        provider="builtin",
        category="data",
        description="Store data in blob storage",
        input_schema=_obj({"data": {}}, required=("data",)),
        output_schema=_obj({"blob_id": {"type": "string"}}),
    ),
    ComponentInfo(
        path="/builtin/get_blob",
        name="Get Blob",
        provider="builtin",
        category="data",
        description="Retrieve data from blob storage",
        input_schema=_obj({"blob_id": {"type": "string"}}, required=("blob_id",)),
    ),
    ComponentInfo(
        path="/builtin/http",
        name="HTTP Request",
        provider="builtin",
        category="integration",
        description="Make HTTP requests",
        input_schema=_obj(
            {
                "method": {"type": "string", "enum": ["GET", "POST", "PUT", "DELETE", "PATCH"], "default": "GET"},
                "url": {"type": "string"},
                "headers": {"type": "object"},
                "body": {},
            },
            required=("url",),
        ),
    ),
)

EXTERNAL_COMPONENTS: Tuple[ComponentInfo, ...] = (
    ComponentInfo(
        path="/stepflow-anthropic/anthropic",
        name="Anthropic Claude",
        provider="stepflow-anthropic",
        category="llm",
        description="Anthropic Claude models (Claude 3, etc.)",
        input_schema=_obj(
            {
                "model": {"type": "string"},
                "messages": {"type": "array"},
                "max_tokens": {"type": "number", "default": 4096},
                "temperature": {"type": "number", "default": 0.7},
            },
            required=("model", "messages"),
        ),
        supports_streaming=True,
        required_env=("ANTHROPIC_API_KEY",),
    ),
    ComponentInfo(
        path="/stepflow-cohere/cohere",
        name="Cohere",
        provider="stepflow-cohere",
        category="llm",
        description="Cohere Command models",
        input_schema=_obj(
            {
                "model": {"type": "string"},
                "message": {"type": "string"},
                "temperature": {"type": "number", "default": 0.7},
            },
            required=("model", "message"),
        ),
        supports_streaming=True,
        required_env=("COHERE_API_KEY",),
    ),
)

# Checked in order with a case-insensitive startswith; first match wins
MODEL_PREFIX_RULES: Tuple[Tuple[str, str], ...] = (
    ("gpt-", "/builtin/openai"),
    ("o1-", "/builtin/openai"),
    ("o3-", "/builtin/openai"),
    ("claude-", "/stepflow-anthropic/anthropic"),
    ("command-", "/stepflow-cohere/cohere"),
    ("c4ai-", "/stepflow-cohere/cohere"),
    ("local/", "/python/local_llm"),
    ("ollama/", "/python/local_llm"),
)

# Component used for every node type except prompt (resolved by model)
NODE_TYPE_COMPONENTS: Dict[NodeType, str] = {
    NodeType.INPUT: "/builtin/input",
    NodeType.OUTPUT: "/builtin/output",
    NodeType.BRANCH: "/builtin/conditional",
    NodeType.AGGREGATE: "/builtin/aggregate",
    NodeType.HUMAN_GATE: "/builtin/pause",
    NodeType.MODEL_COMPARE: "/builtin/parallel",
}

# Exact reverse lookup consulted before the substring heuristic on import
COMPONENT_NODE_TYPES: Dict[str, NodeType] = {
    path: node_type for node_type, path in NODE_TYPE_COMPONENTS.items()
}
COMPONENT_NODE_TYPES.update(
    {path: NodeType.PROMPT for _, path in MODEL_PREFIX_RULES}
)

_NODE_TYPE_CATEGORIES: Dict[NodeType, Tuple[str, ...]] = {
    NodeType.PROMPT: ("llm",),
    NodeType.MODEL_COMPARE: ("llm",),
    NodeType.BRANCH: ("control",),
    NodeType.AGGREGATE: ("control",),
    NodeType.HUMAN_GATE: ("control",),
    NodeType.INPUT: ("control",),
    NodeType.OUTPUT: ("control",),
}

# Plugin definitions for the runtime config, keyed by component family
_LLM_PLUGINS: Dict[str, Dict[str, Any]] = {
    "anthropic": {
        "prefix": "/stepflow-anthropic/",
        "config": {
            "type": "stepflow",
            "command": "uv",
            "args": ["run", "--package", "stepflow-anthropic", "stepflow_anthropic"],
            "env": {"ANTHROPIC_API_KEY": "${ANTHROPIC_API_KEY:-}"},
        },
    },
    "cohere": {
        "prefix": "/stepflow-cohere/",
        "config": {
            "type": "stepflow",
            "command": "uv",
            "args": ["run", "--package", "stepflow-cohere", "stepflow_cohere"],
            "env": {"COHERE_API_KEY": "${COHERE_API_KEY:-}"},
        },
    },
}


# =============================================================================
# Model Resolution
# =============================================================================


def match_model_prefix(
    model: str, rules: Iterable[Tuple[str, str]] = MODEL_PREFIX_RULES
) -> Optional[str]:
    """Return the component for a model, or None if no prefix rule matches."""
    lowered = (model or "").lower()
    for prefix, component in rules:
        if lowered.startswith(prefix.lower()):
            return component
    return None


def resolve_model_component(
    model: str, rules: Iterable[Tuple[str, str]] = MODEL_PREFIX_RULES
) -> str:
    """Resolve the component for a model, falling back to the default LLM.

    Unknown models log a warning and still resolve.
    """
    component = match_model_prefix(model, rules)
    if component is not None:
        return component
    fallback = get_fallback_component()
    logger.warning("No component rule for model '%s', falling back to %s", model, fallback)
    return fallback


def _model_env_var(model: str, rules: Iterable[Tuple[str, str]]) -> str:
    component = match_model_prefix(model, rules)
    if component == "/stepflow-anthropic/anthropic":
        return "ANTHROPIC_API_KEY"
    if component == "/stepflow-cohere/cohere":
        return "COHERE_API_KEY"
    return "OPENAI_API_KEY"


def required_env_vars(
    graph: WorkflowGraph, rules: Iterable[Tuple[str, str]] = MODEL_PREFIX_RULES
) -> List[str]:
    """Environment variables the runtime needs for the graph's prompt nodes."""
    required: List[str] = []
    for node in graph.nodes:
        if node.type is NodeType.PROMPT and isinstance(node.config, PromptConfig):
            if not node.config.model:
                continue
            var = _model_env_var(node.config.model, rules)
            if var not in required:
                required.append(var)
    return required


# =============================================================================
# MCP Integration
# =============================================================================


def convert_mcp_tool_to_component(tool: Dict[str, Any], server_id: str) -> ComponentInfo:
    """Turn an MCP tool listing ({name, description, inputSchema}) into a component."""
    return ComponentInfo(
        path=f"/mcp/{server_id}/{tool['name']}",
        name=tool["name"],
        provider=f"mcp-{server_id}",
        category="tool",
        description=tool.get("description") or "",
        input_schema=tool.get("inputSchema"),
        supports_streaming=False,
    )


def generate_mcp_plugin_config(server: MCPServerConfig) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Return ({plugin_id: plugin}, {route: handlers}) for one MCP server."""
    plugin_id = f"mcp-{server.id}"
    plugin: Dict[str, Any] = {"type": "mcp", "command": server.command, "args": list(server.args)}
    if server.env:
        plugin["env"] = dict(server.env)
    route = {f"/mcp/{server.id}/{{*component}}": [{"plugin": plugin_id}]}
    return {plugin_id: plugin}, route


# =============================================================================
# Registry
# =============================================================================


class ComponentRegistry:
    """Catalog of known components, plugins and MCP servers.

    Reads work on snapshots; writes hold a lock so concurrent registrations
    cannot corrupt the catalog.
    """

    def __init__(
        self,
        include_external: bool = True,
        model_rules: Optional[Iterable[Tuple[str, str]]] = None,
    ):
        self._lock = threading.Lock()
        self._include_external = include_external
        self._default_model_rules = tuple(
            MODEL_PREFIX_RULES if model_rules is None else model_rules
        )
        self._model_rules: List[Tuple[str, str]] = list(self._default_model_rules)
        self._components: Dict[str, ComponentInfo] = {}
        self._plugins: Dict[str, PluginInfo] = {}
        self._mcp_servers: Dict[str, MCPServerConfig] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        for component in BUILTIN_COMPONENTS:
            self._components[component.path] = component
        self._plugins["builtin"] = PluginInfo(
            id="builtin",
            type="builtin",
            name="Built-in",
            description="Core Stepflow components",
            components=BUILTIN_COMPONENTS,
        )
        if self._include_external:
            for component in EXTERNAL_COMPONENTS:
                self._components[component.path] = component

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_component(self, component: ComponentInfo) -> None:
        with self._lock:
            self._components[component.path] = component
        logger.debug("Registered component %s", component.path)

    def register_plugin(self, plugin: PluginInfo) -> None:
        with self._lock:
            self._plugins[plugin.id] = plugin
            for component in plugin.components:
                self._components[component.path] = component
        logger.debug("Registered plugin %s with %d components", plugin.id, len(plugin.components))

    def register_mcp_server(
        self, server: MCPServerConfig, tools: Iterable[Dict[str, Any]] = ()
    ) -> None:
        """Register an MCP server and, optionally, the tools it lists."""
        components = tuple(convert_mcp_tool_to_component(t, server.id) for t in tools)
        with self._lock:
            self._mcp_servers[server.id] = server
            for component in components:
                self._components[component.path] = component

    def register_model_rule(self, prefix: str, component: str) -> None:
        """Route models starting with `prefix` to `component`.

        Registered rules are checked before the existing ones.
        """
        with self._lock:
            self._model_rules.insert(0, (prefix, component))
        logger.debug("Registered model rule %s* -> %s", prefix, component)

    def clear(self) -> None:
        """Drop all registrations and restore the default catalog."""
        with self._lock:
            self._model_rules = list(self._default_model_rules)
            self._components = {}
            self._plugins = {}
            self._mcp_servers = {}
            self._register_defaults()

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def _snapshot(self) -> List[ComponentInfo]:
        with self._lock:
            return list(self._components.values())

    def get_component(self, path: str) -> Optional[ComponentInfo]:
        with self._lock:
            return self._components.get(path)

    def has_component(self, path: str) -> bool:
        return self.get_component(path) is not None

    def list_components(
        self,
        include_builtin: bool = True,
        category: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[ComponentInfo]:
        components = self._snapshot()
        if not include_builtin:
            components = [c for c in components if not c.is_builtin]
        if category:
            components = [c for c in components if c.category == category]
        if search:
            query = search.lower()
            components = [
                c
                for c in components
                if query in c.name.lower()
                or query in c.description.lower()
                or query in c.path.lower()
            ]
        return components

    def list_plugins(self, include_disconnected: bool = False) -> List[PluginInfo]:
        with self._lock:
            plugins = list(self._plugins.values())
        if include_disconnected:
            return plugins
        return [p for p in plugins if p.status == "connected"]

    def list_mcp_servers(self) -> List[MCPServerConfig]:
        with self._lock:
            return list(self._mcp_servers.values())

    def components_for_node_type(self, node_type: NodeType) -> List[ComponentInfo]:
        categories = _NODE_TYPE_CATEGORIES.get(node_type, ())
        return [c for c in self._snapshot() if c.category in categories]

    def component_for_node_type(self, node_type: NodeType) -> Optional[str]:
        """Fixed component for a node type; None for prompt (model-resolved)."""
        return NODE_TYPE_COMPONENTS.get(node_type)

    @property
    def model_rules(self) -> Tuple[Tuple[str, str], ...]:
        with self._lock:
            return tuple(self._model_rules)

    def match_model_prefix(self, model: str) -> Optional[str]:
        return match_model_prefix(model, self.model_rules)

    def resolve_model_component(self, model: str) -> str:
        """Component for a prompt model under this registry's rules."""
        return resolve_model_component(model, self.model_rules)


    def node_type_for_component(self, path: str) -> Optional[NodeType]:
        """Exact reverse lookup from a component path to a node type."""
        node_type = COMPONENT_NODE_TYPES.get(path)
        if node_type is not None:
            return node_type
        if any(path == component for _, component in self.model_rules):
            return NodeType.PROMPT
        component = self.get_component(path)
        if component is not None and component.category == "llm":
            return NodeType.PROMPT
        return None

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    @staticmethod
    def _score(component: ComponentInfo, partial: str) -> int:
        lowered = partial.lower()
        path = component.path.lower()
        if component.path == partial:
            return 100
        if path.startswith(lowered):
            return 80
        if lowered in path:
            return 60
        if lowered in component.name.lower():
            return 40
        if lowered in component.description.lower():
            return 20
        return 0

    def autocomplete(self, partial: str, limit: int = 10) -> List[ComponentInfo]:
        """Rank components: exact path > path prefix > path substring > name > description."""
        scored = []
        for component in self._snapshot():
            score = self._score(component, partial)
            if score > 0:
                scored.append((score, component))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [component for _, component in scored[:limit]]

    def validate_component_path(self, path: str) -> PathCheck:
        component = self.get_component(path)
        if component is not None:
            return PathCheck(valid=True, component=component)

        components = self._snapshot()
        segments = [s for s in path.split("/") if s]
        if segments:
            family = f"/{segments[0]}/"
            in_family = [c.path for c in components if c.path.startswith(family)]
            if in_family:
                close = difflib.get_close_matches(path, in_family, n=1, cutoff=0.0)
                suggestion = close[0] if close else in_family[0]
                return PathCheck(
                    valid=False,
                    error=f"Component '{path}' not found. Did you mean '{suggestion}'?",
                    suggestions=[suggestion],
                )

        suggestions = [c.path for c in self.autocomplete(path, limit=3)]
        if suggestions:
            return PathCheck(
                valid=False,
                error=f"Component '{path}' not found. Did you mean: {', '.join(suggestions)}?",
                suggestions=suggestions,
            )

        known = [c.path for c in components[:5]]
        return PathCheck(
            valid=False,
            error=f"Component '{path}' not found. Available components: {', '.join(known)}...",
            suggestions=known,
        )

    # -------------------------------------------------------------------------
    # Documentation and Runtime Config
    # -------------------------------------------------------------------------

    def component_documentation(self, path: str) -> str:
        """Markdown documentation for a component."""
        component = self.get_component(path)
        if component is None:
            return f"Component '{path}' not found.\n"

        parts = [f"# {component.name}\n", f"**Path:** `{component.path}`\n"]
        if component.description:
            parts.append(f"{component.description}\n")
        parts.append(f"**Category:** {component.category}\n")

        for title, schema in (
            ("Input Schema", component.input_schema),
            ("Output Schema", component.output_schema),
        ):
            if schema is not None:
                parts.append(f"## {title}\n\n```json\n{json.dumps(schema, indent=2)}\n```\n")

        if component.required_env:
            env_lines = "\n".join(f"- `{name}`" for name in component.required_env)
            parts.append(f"## Required Environment Variables\n\n{env_lines}\n")

        if component.examples:
            parts.append("## Examples\n")
            for example in component.examples:
                body = yaml.safe_dump({"input": example.input}, sort_keys=False)
                text = f"### {example.name}\n\n"
                if example.description:
                    text += f"{example.description}\n\n"
                parts.append(text + f"```yaml\n{body}```\n")

        return "\n".join(parts)

    def generate_runtime_config(
        self,
        graph: Optional[WorkflowGraph] = None,
        mcp_servers: Optional[Iterable[MCPServerConfig]] = None,
    ) -> str:
        """The runtime's plugin/route configuration as YAML.

        LLM plugins are included only when the graph's prompt nodes need them.
        """
        plugins: Dict[str, Any] = {"builtin": {"type": "builtin"}}
        routes: Dict[str, Any] = {
            "/builtin/{*component}": [{"plugin": "builtin"}],
        }

        if graph is not None:
            used = set()
            for node in graph.nodes:
                if node.type is NodeType.PROMPT and isinstance(node.config, PromptConfig):
                    component = self.match_model_prefix(node.config.model) or ""
                    for family, spec in _LLM_PLUGINS.items():
                        if component.startswith(spec["prefix"]):
                            used.add(family)
            for family in sorted(used):
                spec = _LLM_PLUGINS[family]
                plugins[family] = copy.deepcopy(spec["config"])
                routes[spec["prefix"] + "{*component}"] = [{"plugin": family}]

        servers = list(mcp_servers) if mcp_servers is not None else self.list_mcp_servers()
        for server in servers:
            plugin, route = generate_mcp_plugin_config(server)
            plugins.update(plugin)
            routes.update(route)

        routes["/{*component}"] = [{"plugin": "builtin"}]

        config = {
            "plugins": plugins,
            "routes": routes,
            "stateStore": {
                "type": "sqlite",
                "databaseUrl": "sqlite:workflow_state.db",
                "autoMigrate": True,
            },
        }
        header = "# Stepflow runtime configuration\n# Generated by flowbridge\n\n"
        return header + yaml.safe_dump(config, sort_keys=False, default_flow_style=False)


# =============================================================================
# Shared Instance
# =============================================================================

_registry: Optional[ComponentRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> ComponentRegistry:
    """Get the shared ComponentRegistry instance."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = ComponentRegistry()
        return _registry


def reset_registry() -> None:
    """Reset the shared registry (for testing)."""
    global _registry
    with _registry_lock:
        _registry = None
