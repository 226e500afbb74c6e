"""
serialization.py - JSON and YAML renderings of wire documents.

Both renderings carry the same structure. The YAML rendering is meant to be
read by people: a comment header, blank lines between top-level sections,
references kept as nested mappings ({$step: x}), a blank line after the steps
block and the output block last. Only the structure is stable across a
render -> parse -> render cycle, not the exact bytes.

Parse failures raise ParseError with the line (and column where known).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from flowbridge.errors import ParseError
from flowbridge.wire.types import WireDocument, wire_document_from_dict

DocumentLike = Union[WireDocument, Dict[str, Any]]


def _as_dict(doc: DocumentLike) -> Dict[str, Any]:
    return doc.to_dict() if isinstance(doc, WireDocument) else doc


# =============================================================================
# Rendering
# =============================================================================


def document_to_json(doc: DocumentLike, indent: int = 2) -> str:
    return json.dumps(_as_dict(doc), indent=indent, ensure_ascii=False) + "\n"


def _dump_yaml(data: Any) -> str:
    return yaml.safe_dump(
        data,
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=1000,
    )


def document_to_yaml(doc: DocumentLike, header: bool = True) -> str:
    """Render a document as commented, sectioned YAML."""
    data = _as_dict(doc)
    sections = []

    if header:
        name = str(data.get("name", "")).replace("\n", " ")
        sections.append(f"# Stepflow workflow: {name}\n# Generated by flowbridge\n")

    for key, value in data.items():
        if key in ("steps", "output"):
            continue
        sections.append(_dump_yaml({key: value}))

    steps = data.get("steps", [])
    if steps:
        lines = ["steps:"]
        for step in steps:
            lines.extend(
                ("  " + line) if line else line
                for line in _dump_yaml([step]).splitlines()
            )
        sections.append("\n".join(lines) + "\n")
    else:
        sections.append("steps: []\n")

    if "output" in data:
        sections.append(_dump_yaml({"output": data["output"]}))

    return "\n".join(sections) + ("" if "output" in data else "\n")


# =============================================================================
# Parsing
# =============================================================================


def detect_format(text: str) -> str:
    """'json' if the text looks like a JSON object, else 'yaml'."""
    return "json" if text.lstrip().startswith("{") else "yaml"


def load_document_data(text: str, fmt: Optional[str] = None) -> Dict[str, Any]:
    """Decode document text without interpreting it.

    Raises:
        ParseError: with line/column of the syntax error, or if the top level
            is not a mapping.
    """
    fmt = fmt or detect_format(text)

    if fmt == "json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError("json", e.msg, line=e.lineno, column=e.colno)
    elif fmt == "yaml":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            problem = getattr(e, "problem", None) or str(e)
            if mark is not None:
                raise ParseError("yaml", problem, line=mark.line + 1, column=mark.column + 1)
            raise ParseError("yaml", problem)
    else:
        raise ValueError(f"Unknown document format: {fmt}")

    if not isinstance(data, dict):
        raise ParseError(fmt, "Top level of a workflow document must be a mapping", line=1)
    return data


def parse_document(text: str, fmt: Optional[str] = None) -> WireDocument:
    """Decode and interpret document text."""
    return wire_document_from_dict(load_document_data(text, fmt))


def load_document_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a .json/.yaml/.yml document file into raw data."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    fmt = "json" if path.suffix.lower() == ".json" else None
    return load_document_data(text, fmt)
