"""
flowbridge - Bidirectional translator between visual workflow graphs and
Stepflow workflow documents.

Usage:
    from flowbridge import compile_graph, import_document, document_to_yaml

    result = compile_graph(graph_dict)
    yaml_text = document_to_yaml(result.document)

    imported = import_document(wire_dict)
    graph = imported.graph
"""

from flowbridge.compiler import (
    CompileResult,
    ImportResult,
    compile_graph,
    export_json,
    export_yaml,
    import_document,
    reconstruct_graph,
)
from flowbridge.config.component_registry import ComponentRegistry, get_registry
from flowbridge.errors import (
    BridgeError,
    DocumentValidationError,
    ExpressionParseError,
    ExpressionReferenceError,
    GraphValidationError,
    ParseError,
    PathQueryError,
    UnsupportedComponentError,
    UnsupportedNodeTypeError,
)
from flowbridge.graph.types import WorkflowGraph, workflow_graph_from_dict
from flowbridge.validator import ValidationResult, validate_document, validate_graph
from flowbridge.wire.evaluator import EvaluationContext, evaluate, validate_statically
from flowbridge.wire.serialization import document_to_json, document_to_yaml, parse_document
from flowbridge.wire.types import WireDocument, wire_document_from_dict

__version__ = "0.1.0"

__all__ = [
    "BridgeError",
    "CompileResult",
    "ComponentRegistry",
    "DocumentValidationError",
    "EvaluationContext",
    "ExpressionParseError",
    "ExpressionReferenceError",
    "GraphValidationError",
    "ImportResult",
    "ParseError",
    "PathQueryError",
    "UnsupportedComponentError",
    "UnsupportedNodeTypeError",
    "ValidationResult",
    "WireDocument",
    "WorkflowGraph",
    "compile_graph",
    "document_to_json",
    "document_to_yaml",
    "evaluate",
    "export_json",
    "export_yaml",
    "get_registry",
    "import_document",
    "parse_document",
    "reconstruct_graph",
    "validate_document",
    "validate_graph",
    "validate_statically",
    "wire_document_from_dict",
    "workflow_graph_from_dict",
]
