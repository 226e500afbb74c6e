"""
flowbridge.validator - Structural and semantic checks for wire documents
and workflow graphs.

validate_document() runs the structural pass and, when the document is
shaped well enough to have step ids, the semantic pass. Both collect every
problem into one ValidationResult.
"""

from __future__ import annotations

from typing import Any

from flowbridge.validator.errors import (
    SEMANTIC,
    STRUCTURAL,
    ValidationError,
    ValidationResult,
)
from flowbridge.validator.schema import validate_structure
from flowbridge.validator.semantic import (
    CompatibilityReport,
    compatibility_report,
    find_graph_cycle,
    validate_graph,
    validate_semantics,
)


def validate_document(data: Any) -> ValidationResult:
    """Run structural then semantic validation over raw document data."""
    result = validate_structure(data)
    result.extend(validate_semantics(data))
    return result


def validate_import(data: Any) -> ValidationResult:
    """Validate an untrusted parsed document before reconstructing a graph."""
    result = validate_document(data)
    if isinstance(data, dict):
        steps = data.get("steps")
        if isinstance(steps, list):
            for i, step in enumerate(steps):
                if isinstance(step, dict) and isinstance(step.get("metadata"), dict):
                    source = step["metadata"].get("source_node_id")
                    if source is not None and not isinstance(source, str):
                        result.add_error(
                            STRUCTURAL,
                            f"steps[{i}].metadata.source_node_id",
                            "source_node_id must be a string",
                            "Remove the field or make it a string",
                        )
    return result


__all__ = [
    "SEMANTIC",
    "STRUCTURAL",
    "CompatibilityReport",
    "ValidationError",
    "ValidationResult",
    "compatibility_report",
    "find_graph_cycle",
    "validate_document",
    "validate_graph",
    "validate_import",
    "validate_semantics",
    "validate_structure",
]
