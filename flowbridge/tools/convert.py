#!/usr/bin/env python3
"""
convert.py - Offline Stepflow export/import/validation.

Usage:
  flowbridge export workflow.json                  # YAML to stdout
  flowbridge export workflow.json --format json -o flow.json
  flowbridge import flow.yaml -o workflow.json
  flowbridge validate flow.yaml
  flowbridge validate workflow.json --graph
  flowbridge components --search openai

Exit Codes:
  0 - Success
  1 - Validation failed
  2 - Fatal error (missing file, parse error)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from flowbridge.compiler.exporter import compile_graph
from flowbridge.compiler.importer import import_document
from flowbridge.config.component_registry import get_registry
from flowbridge.errors import BridgeError, DocumentValidationError, GraphValidationError
from flowbridge.graph.types import workflow_graph_from_dict
from flowbridge.validator import (
    ValidationResult,
    compatibility_report,
    validate_document,
    validate_graph,
)
from flowbridge.wire.serialization import document_to_json, document_to_yaml, load_document_file

logger = logging.getLogger(__name__)


def _print_result(result: ValidationResult) -> None:
    for error in result.errors:
        print(error.format(), file=sys.stderr)
    for warning in result.warnings:
        print(f"[WARN] {warning}", file=sys.stderr)


def _write_or_print(text: str, output: Optional[str]) -> None:
    if output:
        Path(output).write_text(text, encoding="utf-8")
        logger.info("Wrote %s", output)
    else:
        sys.stdout.write(text)


def _load_graph(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return workflow_graph_from_dict(json.load(f))


def cmd_export(args: argparse.Namespace) -> int:
    graph = _load_graph(args.graph)
    try:
        result = compile_graph(graph, get_registry())
    except GraphValidationError as e:
        _print_result(e.result)
        return 1
    for warning in result.warnings:
        print(f"[WARN] {warning}", file=sys.stderr)
    if args.format == "json":
        text = document_to_json(result.document)
    else:
        text = document_to_yaml(result.document)
    _write_or_print(text, args.output)
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    data = load_document_file(args.document)
    try:
        result = import_document(data, get_registry(), graph_id=args.id)
    except DocumentValidationError as e:
        _print_result(e.result)
        return 1
    for warning in result.warnings:
        print(f"[WARN] {warning}", file=sys.stderr)
    _write_or_print(json.dumps(result.graph.to_dict(), indent=2) + "\n", args.output)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    if args.graph:
        result = validate_graph(_load_graph(args.path))
        report = None
    else:
        data = load_document_file(args.path)
        result = validate_document(data)
        report = compatibility_report(data)

    if args.json:
        payload = result.to_dict()
        if report is not None:
            payload["compatibility"] = report.to_dict()
        print(json.dumps(payload, indent=2))
    else:
        _print_result(result)
        if report is not None:
            for recommendation in report.recommendations:
                print(f"[INFO] {recommendation}", file=sys.stderr)
        if result.valid:
            print(f"[PASS] {args.path}")
    return 0 if result.valid else 1


def cmd_components(args: argparse.Namespace) -> int:
    components = get_registry().list_components(category=args.category, search=args.search)
    for component in components:
        print(f"{component.path:<40} {component.category:<10} {component.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowbridge",
        description="Convert between workflow graphs and Stepflow documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit Codes:
  0 - Success
  1 - Validation failed
  2 - Fatal error (missing file, parse error)
        """,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    export = sub.add_parser("export", help="Compile a graph JSON file to a Stepflow document")
    export.add_argument("graph", help="Path to workflow graph JSON")
    export.add_argument("--format", choices=["yaml", "json"], default="yaml")
    export.add_argument("-o", "--output", help="Write to file instead of stdout")
    export.set_defaults(func=cmd_export)

    imp = sub.add_parser("import", help="Reconstruct a graph from a Stepflow document")
    imp.add_argument("document", help="Path to Stepflow YAML or JSON")
    imp.add_argument("--id", help="Id for the reconstructed workflow")
    imp.add_argument("-o", "--output", help="Write graph JSON to file instead of stdout")
    imp.set_defaults(func=cmd_import)

    validate = sub.add_parser("validate", help="Validate a Stepflow document or a graph")
    validate.add_argument("path", help="Path to document (or graph with --graph)")
    validate.add_argument("--graph", action="store_true", help="Validate a workflow graph JSON")
    validate.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    validate.set_defaults(func=cmd_validate)

    components = sub.add_parser("components", help="List known components")
    components.add_argument("--search", help="Filter by path, name or description")
    components.add_argument("--category", help="Filter by category")
    components.set_defaults(func=cmd_components)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except (BridgeError, ValueError, KeyError) as e:
        # ParseError, unsupported node types, malformed graph JSON
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
