"""
flowbridge.compiler - Graph <-> wire conversion.
"""

from flowbridge.compiler.exporter import CompileResult, compile_graph, export_json, export_yaml
from flowbridge.compiler.importer import ImportResult, import_document, reconstruct_graph
from flowbridge.compiler.interpolate import expression_to_template, interpolate_template

__all__ = [
    "CompileResult",
    "ImportResult",
    "compile_graph",
    "export_json",
    "export_yaml",
    "expression_to_template",
    "import_document",
    "interpolate_template",
    "reconstruct_graph",
]
