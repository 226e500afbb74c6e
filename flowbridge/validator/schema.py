"""
schema.py - Structural validation of wire documents.

Checks raw decoded data (before it is turned into WireDocument objects):

- JSON Schema (Draft 7): required fields, identifier grammar, component path
  grammar, name/description lengths, on_error shape (native or legacy)
- Duplicate step ids
- Every value-expression node has exactly one recognized shape

All problems are collected; nothing is raised for malformed input.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Union

from jsonschema import Draft7Validator

from flowbridge.validator.errors import STRUCTURAL, ValidationResult
from flowbridge.wire.expressions import collect_expression_errors

logger = logging.getLogger(__name__)

STEP_ID_REGEX = r"^[a-zA-Z_][a-zA-Z0-9_]*$"
COMPONENT_PATH_REGEX = r"^/[a-zA-Z0-9_\-/]+$"

_INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "type": {"const": "object"},
        "properties": {"type": "object"},
        "required": {"type": "array", "items": {"type": "string"}},
    },
}

WIRE_DOCUMENT_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["name", "steps"],
    "properties": {
        "schema": {"type": "string"},
        "name": {"type": "string", "minLength": 1, "maxLength": 256},
        "description": {"type": "string", "maxLength": 4096},
        "schemas": {
            "type": "object",
            "properties": {
                "input": _INPUT_SCHEMA,
                "batch": {"type": "object"},
            },
        },
        "input_schema": _INPUT_SCHEMA,
        "steps": {
            "type": "array",
            "minItems": 1,
            "items": {"$ref": "#/definitions/step"},
        },
        "output": {},
    },
    "definitions": {
        "step": {
            "type": "object",
            "required": ["id", "component"],
            "properties": {
                "id": {"type": "string", "pattern": STEP_ID_REGEX},
                "component": {"type": "string", "pattern": COMPONENT_PATH_REGEX},
                "input": {"type": ["object", "null"]},
                "on_error": {"$ref": "#/definitions/error_handler"},
                "must_execute": {"type": "boolean"},
                "metadata": {"type": "object"},
            },
        },
        "error_handler": {
            "anyOf": [
                {
                    "type": "object",
                    "required": ["type"],
                    "properties": {
                        "type": {"enum": ["retry", "default", "fail"]},
                        "max_attempts": {"type": "integer", "minimum": 1},
                        "value": {},
                    },
                },
                {
                    "type": "object",
                    "required": ["action"],
                    "properties": {
                        "action": {"enum": ["retry", "skip", "fail"]},
                        "max_retries": {"type": "integer", "minimum": 1},
                    },
                },
            ]
        },
    },
}

_validator = Draft7Validator(WIRE_DOCUMENT_SCHEMA)


def format_path(parts: Iterable[Union[str, int]]) -> str:
    """Render a jsonschema path deque as steps[0].input.value."""
    result = ""
    for part in parts:
        if isinstance(part, int):
            result += f"[{part}]"
        else:
            result += f".{part}" if result else str(part)
    return result or "root"


def _fix_for(error) -> str:
    validator = error.validator
    if validator == "required":
        return "Add the missing field"
    if validator == "pattern":
        if error.schema.get("pattern") == STEP_ID_REGEX:
            return "Use letters, digits and underscores, not starting with a digit"
        return "Use a path like /builtin/openai"
    if validator in ("minLength", "maxLength", "minItems"):
        return "Adjust the length"
    if validator == "anyOf":
        return "Use {type: retry|default|fail} or the legacy {action: retry|skip|fail}"
    return "Fix the value type"


def validate_structure(data: Any) -> ValidationResult:
    """Run the structural pass over raw document data."""
    result = ValidationResult()

    for error in _validator.iter_errors(data):
        result.add_error(
            STRUCTURAL,
            format_path(error.absolute_path),
            error.message,
            _fix_for(error),
        )

    if not isinstance(data, dict):
        return result

    steps = data.get("steps")
    if isinstance(steps, list):
        seen: Dict[str, int] = {}
        for i, step in enumerate(steps):
            if not isinstance(step, dict):
                continue
            step_id = step.get("id")
            if isinstance(step_id, str):
                if step_id in seen:
                    result.add_error(
                        STRUCTURAL,
                        f"steps[{i}].id",
                        f"Duplicate step id '{step_id}' (first used by steps[{seen[step_id]}])",
                        "Give every step a unique id",
                        subject=step_id,
                    )
                else:
                    seen[step_id] = i
            step_input = step.get("input")
            if isinstance(step_input, dict):
                _add_expression_errors(result, step_input, f"steps[{i}].input")

    if "output" in data:
        _add_expression_errors(result, data["output"], "output")

    logger.debug("Structural validation found %d errors", len(result.errors))
    return result


def _add_expression_errors(result: ValidationResult, value: Any, path: str) -> None:
    for location, problem in collect_expression_errors(value, path):
        result.add_error(
            STRUCTURAL,
            location,
            problem,
            "Use exactly one of $step, $input, $variable, $template, $literal, $from",
        )
