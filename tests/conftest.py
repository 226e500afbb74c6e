"""
Shared fixtures for flowbridge tests.

Every test runs with a clean configuration: FLOWBRIDGE_* environment
variables removed, the working directory moved to a temporary directory (so a
stray ./flowbridge.yaml is never picked up), and the config and registry
singletons reset.
"""

import copy
import json
from pathlib import Path
from typing import Any, Dict

import pytest

from flowbridge.config.component_registry import reset_registry
from flowbridge.config.runtime_config import (
    ENV_CONFIG_PATH,
    ENV_DEFAULT_MODEL,
    ENV_ENABLE_CORS,
    ENV_FALLBACK_COMPONENT,
    reset_config,
)
from flowbridge.graph.types import WorkflowGraph, workflow_graph_from_dict


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Reset config/registry singletons and hide the caller's environment."""
    for name in (ENV_CONFIG_PATH, ENV_DEFAULT_MODEL, ENV_ENABLE_CORS, ENV_FALLBACK_COMPONENT):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_config()
    reset_registry()
    yield
    reset_config()
    reset_registry()


# ============================================================================
# Graph Builders
# ============================================================================


def make_node(node_id: str, node_type: str, label: str = "", **config: Any) -> Dict[str, Any]:
    """Build a node dict in the editor's JSON shape."""
    return {
        "id": node_id,
        "type": node_type,
        "position": {"x": 0, "y": 0},
        "data": {"label": label or node_id, "config": config},
    }


def make_edge(source: str, target: str) -> Dict[str, Any]:
    return {"id": f"e-{source}-{target}", "source": source, "target": target}


@pytest.fixture
def sample_graph_dict() -> Dict[str, Any]:
    """input -> prompt -> output, with ids that need sanitizing."""
    return {
        "id": "wf-1",
        "name": "Demo",
        "nodes": [
            make_node("in-1", "input", "Question", inputType="text", required=True),
            make_node(
                "p-1",
                "prompt",
                "Answer",
                systemPrompt="Be brief.",
                userPrompt="{{nodes.in-1.output}}",
                model="gpt-4",
            ),
            make_node("out-1", "output", "Result"),
        ],
        "edges": [make_edge("in-1", "p-1"), make_edge("p-1", "out-1")],
        "variables": {},
    }


@pytest.fixture
def sample_graph(sample_graph_dict) -> WorkflowGraph:
    return workflow_graph_from_dict(copy.deepcopy(sample_graph_dict))


@pytest.fixture
def full_graph_dict() -> Dict[str, Any]:
    """One node of every type."""
    return {
        "id": "wf-full",
        "name": "Everything",
        "nodes": [
            make_node("in", "input", "Topic"),
            make_node(
                "p",
                "prompt",
                "Draft",
                userPrompt="Summarize {{nodes.in.output}}",
                model="gpt-4o",
                onError={"strategy": "retry", "maxAttempts": 5},
                mustExecute=True,
            ),
            make_node("br", "branch", "Check"),
            make_node("mc", "model_compare", "Compare", models=["gpt-4o", "claude-3-haiku"], prompt="{{input}}"),
            make_node("agg", "aggregate", "Combine", strategy="concat", separator="\n---\n"),
            make_node("hg", "human_gate", "Review", timeout=60),
            make_node("out", "output", "Done"),
        ],
        "edges": [
            make_edge("in", "p"),
            make_edge("p", "br"),
            make_edge("br", "mc"),
            make_edge("p", "agg"),
            make_edge("mc", "agg"),
            make_edge("agg", "hg"),
            make_edge("hg", "out"),
        ],
    }


@pytest.fixture
def ghost_document() -> Dict[str, Any]:
    """A document whose only step references a step that does not exist."""
    return {
        "name": "ghost",
        "steps": [
            {
                "id": "a",
                "component": "/builtin/openai",
                "input": {"model": "gpt-4", "messages": [{"role": "user", "content": {"$step": "ghost"}}]},
            }
        ],
        "output": {"$step": "a"},
    }


def write_json(path: Path, data: Dict[str, Any]) -> Path:
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path
