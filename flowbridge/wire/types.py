"""
types.py - Dataclasses for Stepflow wire documents.

These mirror the document a Stepflow runtime consumes:

    schema: https://stepflow.org/schemas/v1/flow.json
    name: ...
    schemas: {input: {...}, batch: {...}}
    steps:
      - id: summarize
        component: /builtin/openai
        input: {messages: [...]}
        on_error: {type: retry, max_attempts: 3}
    output: {$step: summarize}

Step inputs and the document output hold parsed value-expressions (see
flowbridge.wire.expressions); to_dict() converts them back to wire data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from flowbridge.errors import ParseError
from flowbridge.wire.expressions import Expression, expression_to_wire, parse_expression

DEFAULT_SCHEMA_URI = "https://stepflow.org/schemas/v1/flow.json"

ERROR_TYPES = ("retry", "default", "fail")
LEGACY_ERROR_ACTIONS = ("retry", "skip", "fail")


@dataclass(frozen=True)
class WireErrorHandler:
    """Native on_error shape {type, max_attempts?, value?}.

    has_value marks an explicit fallback, including an explicit null.
    """
    type: str
    max_attempts: Optional[int] = None
    value: Any = None
    has_value: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": self.type}
        if self.max_attempts is not None:
            result["max_attempts"] = self.max_attempts
        if self.has_value:
            result["value"] = self.value
        return result


def error_handler_from_dict(data: Dict[str, Any], path: str = "on_error") -> WireErrorHandler:
    """Parse on_error, accepting the legacy {action, max_retries} shape.

    Legacy "skip" becomes the default strategy with a null fallback.
    """
    if not isinstance(data, dict):
        raise ParseError("document", "on_error must be an object", path=path)

    if "type" in data:
        error_type = data["type"]
        if error_type not in ERROR_TYPES:
            raise ParseError("document", f"Unknown on_error type '{error_type}'", path=path)
        return WireErrorHandler(
            type=error_type,
            max_attempts=data.get("max_attempts"),
            value=data.get("value"),
            has_value="value" in data,
        )

    if "action" in data:
        action = data["action"]
        if action == "retry":
            return WireErrorHandler(type="retry", max_attempts=data.get("max_retries"))
        if action == "skip":
            return WireErrorHandler(type="default", value=None, has_value=True)
        if action == "fail":
            return WireErrorHandler(type="fail")
        raise ParseError("document", f"Unknown on_error action '{action}'", path=path)

    raise ParseError("document", "on_error needs 'type' or 'action'", path=path)


@dataclass(frozen=True)
class WireStep:
    id: str
    component: str
    input: Dict[str, Expression] = field(default_factory=dict)
    on_error: Optional[WireErrorHandler] = None
    must_execute: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "component": self.component,
            "input": expression_to_wire(self.input),
        }
        if self.on_error is not None:
            result["on_error"] = self.on_error.to_dict()
        if self.must_execute:
            result["must_execute"] = True
        if self.metadata:
            result["metadata"] = dict(self.metadata)
        return result


@dataclass(frozen=True)
class WireDocument:
    """A point-in-time Stepflow document. Never mutated after construction."""
    name: str
    steps: Tuple[WireStep, ...]
    schema_uri: Optional[str] = DEFAULT_SCHEMA_URI
    description: Optional[str] = None
    input_schema: Optional[Dict[str, Any]] = None
    batch_schema: Optional[Dict[str, Any]] = None
    output: Expression = None
    has_output: bool = False

    def step_ids(self) -> List[str]:
        return [s.id for s in self.steps]

    def get_step(self, step_id: str) -> Optional[WireStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Wire data in canonical key order; output always last."""
        result: Dict[str, Any] = {}
        if self.schema_uri:
            result["schema"] = self.schema_uri
        result["name"] = self.name
        if self.description:
            result["description"] = self.description
        schemas: Dict[str, Any] = {}
        if self.input_schema is not None:
            schemas["input"] = self.input_schema
        if self.batch_schema is not None:
            schemas["batch"] = self.batch_schema
        if schemas:
            result["schemas"] = schemas
        result["steps"] = [s.to_dict() for s in self.steps]
        if self.has_output:
            result["output"] = expression_to_wire(self.output)
        return result


def wire_step_from_dict(data: Dict[str, Any], path: str = "steps[0]") -> WireStep:
    if not isinstance(data, dict):
        raise ParseError("document", "Step must be an object", path=path)
    for key in ("id", "component"):
        if not isinstance(data.get(key), str):
            raise ParseError("document", f"Step is missing string '{key}'", path=path)

    raw_input = data.get("input") or {}
    if not isinstance(raw_input, dict):
        raise ParseError("document", "Step input must be an object", path=f"{path}.input")

    on_error = data.get("on_error")
    return WireStep(
        id=data["id"],
        component=data["component"],
        input=parse_expression(raw_input, f"{path}.input"),
        on_error=error_handler_from_dict(on_error, f"{path}.on_error") if on_error else None,
        must_execute=bool(data.get("must_execute", False)),
        metadata=dict(data.get("metadata") or {}),
    )


def wire_document_from_dict(data: Dict[str, Any]) -> WireDocument:
    """Parse a wire document from decoded JSON/YAML.

    Accepts the legacy top-level input_schema in place of schemas.input.

    Raises:
        ParseError: (or ExpressionParseError) with the path of the bad field.
    """
    if not isinstance(data, dict):
        raise ParseError("document", "Document must be an object", path="root")
    if not isinstance(data.get("name"), str):
        raise ParseError("document", "Document is missing string 'name'", path="name")
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list):
        raise ParseError("document", "Document 'steps' must be a list", path="steps")

    schemas = data.get("schemas") or {}
    input_schema = schemas.get("input", data.get("input_schema"))

    return WireDocument(
        name=data["name"],
        steps=tuple(wire_step_from_dict(s, f"steps[{i}]") for i, s in enumerate(raw_steps)),
        schema_uri=data.get("schema"),
        description=data.get("description"),
        input_schema=input_schema,
        batch_schema=schemas.get("batch"),
        output=parse_expression(data["output"], "output") if "output" in data else None,
        has_output="output" in data,
    )
