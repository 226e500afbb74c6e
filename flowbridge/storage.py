"""
storage.py - Workflow persistence used by the API layer.

The converter itself never touches storage; the HTTP surface needs somewhere
to read graphs from and to put imported graphs. Two implementations:

- InMemoryWorkflowStore: a lock-guarded dict (tests, single process)
- JsonFileWorkflowStore: one <id>.json file per workflow, written atomically
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from flowbridge.errors import BridgeError
from flowbridge.graph.types import WorkflowGraph, workflow_graph_from_dict

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.\-]+$")


class WorkflowStore(Protocol):
    """What the API needs from a persistence backend."""

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowGraph]: ...

    def create_workflow(self, graph: WorkflowGraph) -> None: ...

    def update_workflow(self, graph: WorkflowGraph) -> None: ...

    def list_workflows(self) -> List[WorkflowGraph]: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _stamped(graph: WorkflowGraph, created: bool) -> WorkflowGraph:
    now = _now()
    data = graph.to_dict()
    if created or not data.get("createdAt"):
        data["createdAt"] = now
    data["updatedAt"] = now
    return workflow_graph_from_dict(data)


class InMemoryWorkflowStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._graphs: Dict[str, WorkflowGraph] = {}

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowGraph]:
        with self._lock:
            return self._graphs.get(workflow_id)

    def create_workflow(self, graph: WorkflowGraph) -> None:
        with self._lock:
            if graph.id in self._graphs:
                raise ValueError(f"Workflow '{graph.id}' already exists")
            self._graphs[graph.id] = _stamped(graph, created=True)

    def update_workflow(self, graph: WorkflowGraph) -> None:
        with self._lock:
            if graph.id not in self._graphs:
                raise KeyError(graph.id)
            stamped = _stamped(graph, created=False)
            created_at = self._graphs[graph.id].created_at
            if created_at:
                stamped = workflow_graph_from_dict({**stamped.to_dict(), "createdAt": created_at})
            self._graphs[graph.id] = stamped

    def list_workflows(self) -> List[WorkflowGraph]:
        with self._lock:
            return list(self._graphs.values())


class JsonFileWorkflowStore:
    """Stores each workflow as <root>/<id>.json."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self._lock = threading.Lock()

    def _path(self, workflow_id: str) -> Path:
        if not _SAFE_ID.match(workflow_id):
            raise ValueError(f"Invalid workflow id: {workflow_id!r}")
        return self.root / f"{workflow_id}.json"

    def _write(self, path: Path, data: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix=path.name + ".", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def _read(self, path: Path) -> WorkflowGraph:
        with open(path, "r", encoding="utf-8") as f:
            return workflow_graph_from_dict(json.load(f))

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowGraph]:
        try:
            path = self._path(workflow_id)
        except ValueError:
            return None
        if not path.exists():
            return None
        return self._read(path)

    def create_workflow(self, graph: WorkflowGraph) -> None:
        path = self._path(graph.id)
        with self._lock:
            if path.exists():
                raise ValueError(f"Workflow '{graph.id}' already exists")
            self._write(path, _stamped(graph, created=True).to_dict())
        logger.debug("Created workflow %s at %s", graph.id, path)

    def update_workflow(self, graph: WorkflowGraph) -> None:
        path = self._path(graph.id)
        with self._lock:
            if not path.exists():
                raise KeyError(graph.id)
            existing = self._read(path)
            stamped = _stamped(graph, created=False).to_dict()
            if existing.created_at:
                stamped["createdAt"] = existing.created_at
            self._write(path, stamped)

    def list_workflows(self) -> List[WorkflowGraph]:
        if not self.root.exists():
            return []
        graphs = []
        for path in sorted(self.root.glob("*.json")):
            try:
                graphs.append(self._read(path))
            except (OSError, ValueError, KeyError, BridgeError) as e:
                logger.warning("Skipping unreadable workflow file %s: %s", path, e)
        return graphs
