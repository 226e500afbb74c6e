"""
ids.py - Mapping between graph node ids and wire step ids.

Graph node ids are opaque strings from the editor. Wire step ids must match
^[a-zA-Z_][a-zA-Z0-9_]*$. Sanitization is a pure function of the id and the
ids already assigned, so the same node order always yields the same mapping.

Usage:
    from flowbridge.graph.ids import build_id_mapping

    mapping = build_id_mapping(graph.nodes)
    step_id = mapping.to_step_id("node-1")       # "node_1"
    node_id = mapping.to_node_id("node_1")       # "node-1"
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import AbstractSet, Dict, Iterable, Optional

STEP_ID_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_ILLEGAL_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def sanitize_base(node_id: str) -> str:
    """Sanitize an id without collision handling.

    >>> sanitize_base("node-1")
    'node_1'
    >>> sanitize_base("1st step")
    '_1st_step'
    """
    result = _ILLEGAL_CHARS.sub("_", node_id)
    if not result or result[0].isdigit():
        result = "_" + result
    return result


def sanitize(node_id: str, existing: AbstractSet[str] = frozenset()) -> str:
    """Sanitize an id so it is wire-legal and not in `existing`.

    Collisions get a numeric suffix, counting up from _1.

    >>> sanitize("a-b", {"a_b"})
    'a_b_1'
    >>> sanitize("a-b", {"a_b", "a_b_1"})
    'a_b_2'
    """
    base = sanitize_base(node_id)
    if base not in existing:
        return base
    suffix = 1
    while f"{base}_{suffix}" in existing:
        suffix += 1
    return f"{base}_{suffix}"


def is_valid_step_id(step_id: str) -> bool:
    return bool(STEP_ID_PATTERN.match(step_id))


@dataclass
class IdMapping:
    """Bijection between node ids and step ids for one conversion."""

    original_to_sanitized: Dict[str, str] = field(default_factory=dict)
    sanitized_to_original: Dict[str, str] = field(default_factory=dict)

    def add(self, node_id: str, step_id: str) -> None:
        self.original_to_sanitized[node_id] = step_id
        self.sanitized_to_original[step_id] = node_id

    def to_step_id(self, node_id: str) -> str:
        """Map a node id to its step id.

        Ids outside the mapping (e.g. a reference to a node that does not
        exist) are sanitized without collision handling so that the dangling
        reference still reaches the validator in a readable form.
        """
        mapped = self.original_to_sanitized.get(node_id)
        if mapped is not None:
            return mapped
        return sanitize_base(node_id)

    def to_node_id(self, step_id: str) -> str:
        return self.sanitized_to_original.get(step_id, step_id)

    def get_step_id(self, node_id: str) -> Optional[str]:
        return self.original_to_sanitized.get(node_id)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.original_to_sanitized

    def __len__(self) -> int:
        return len(self.original_to_sanitized)

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        return {
            "originalToSanitized": dict(self.original_to_sanitized),
            "sanitizedToOriginal": dict(self.sanitized_to_original),
        }


def build_id_mapping(nodes: Iterable) -> IdMapping:
    """Build the mapping for a sequence of nodes (or raw node ids), in order.

    A node id seen twice keeps its first mapping.
    """
    mapping = IdMapping()
    assigned = set()
    for node in nodes:
        node_id = node if isinstance(node, str) else node.id
        if node_id in mapping:
            continue
        step_id = sanitize(node_id, assigned)
        assigned.add(step_id)
        mapping.add(node_id, step_id)
    return mapping
