"""
errors.py - Exception hierarchy for flowbridge.

Validation problems are collected into ValidationResult objects and never
raised (see flowbridge.validator.errors). The exceptions here are reserved for:

- Text that cannot be parsed (ParseError and its subclasses)
- Evaluation against a context that lacks a required reference
- Node types or components the compiler/reconstructor cannot convert
- Graphs or documents rejected before conversion
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from flowbridge.validator.errors import ValidationResult


class BridgeError(Exception):
    """Base exception for flowbridge errors."""

    pass


# =============================================================================
# Parse Errors
# =============================================================================


class ParseError(BridgeError):
    """Raised when text cannot be parsed into a structure.

    Always carries enough positional context (line/column or a path into the
    structure) to locate the problem.
    """

    def __init__(
        self,
        source: str,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        path: Optional[str] = None,
    ):
        self.source = source
        self.message = message
        self.line = line
        self.column = column
        self.path = path

        location = ""
        if line is not None:
            location = f" at line {line}"
            if column is not None:
                location += f", column {column}"
        elif path:
            location = f" at {path}"
        super().__init__(f"{source}: {message}{location}")


class ExpressionParseError(ParseError):
    """Raised when a value-expression node has an unrecognized or mixed shape."""

    def __init__(self, message: str, path: str = "root"):
        super().__init__("expression", message, path=path)


class PathQueryError(ParseError):
    """Raised when a path-query string is malformed."""

    def __init__(self, query: str, message: str, column: Optional[int] = None):
        self.query = query
        super().__init__(f"path query '{query}'", message, column=column)

    def __str__(self) -> str:
        if self.column is not None:
            return f"{self.source}: {self.message} at position {self.column}"
        return f"{self.source}: {self.message}"


# =============================================================================
# Evaluation Errors
# =============================================================================


class ExpressionReferenceError(BridgeError):
    """Raised when evaluation cannot resolve a required reference.

    kind is one of "step", "variable", "workflow".
    """

    def __init__(self, kind: str, name: str, message: Optional[str] = None):
        self.kind = kind
        self.name = name
        super().__init__(message or f"{kind} '{name}' not found")


# =============================================================================
# Conversion Errors
# =============================================================================


class UnsupportedNodeTypeError(BridgeError):
    """Raised when a graph node has a type with no converter."""

    def __init__(self, node_id: str, node_type: str):
        self.node_id = node_id
        self.node_type = node_type
        super().__init__(f"Node '{node_id}' has unsupported type '{node_type}'")


class UnsupportedComponentError(BridgeError):
    """Raised when a wire step names a component that cannot be reconstructed."""

    def __init__(self, step_id: str, component: str):
        self.step_id = step_id
        self.component = component
        super().__init__(f"Step '{step_id}' uses unsupported component '{component}'")


class GraphValidationError(BridgeError):
    """Raised when a graph fails validation before compilation."""

    def __init__(self, result: "ValidationResult"):
        self.result = result
        problems = "; ".join(e.problem for e in result.errors)
        super().__init__(f"Graph validation failed: {problems}")


class DocumentValidationError(BridgeError):
    """Raised when a wire document fails validation before reconstruction."""

    def __init__(self, result: "ValidationResult"):
        self.result = result
        problems = "; ".join(e.problem for e in result.errors)
        super().__init__(f"Document validation failed: {problems}")
