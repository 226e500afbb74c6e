"""
Routes package for the flowbridge API.

- stepflow: export, preview, validation, import and expression evaluation
- components: component discovery (list, autocomplete, path check, docs)
"""

from .components import router as components_router
from .stepflow import router as stepflow_router

__all__ = ["components_router", "stepflow_router"]
