"""
flowbridge API - FastAPI surface for the workflow editor.

Endpoints (all under /api):
    GET    /workflows/{id}/stepflow/yaml      - Export stored graph as YAML
    GET    /workflows/{id}/stepflow/json      - Export stored graph as JSON
    GET    /workflows/{id}/stepflow/preview   - Document, YAML, validation, report
    POST   /workflows/{id}/stepflow/validate  - Validate stored graph
    POST   /stepflow/import                   - Import a JSON document
    POST   /stepflow/import-yaml              - Import a YAML document
    POST   /stepflow/validate                 - Validate a posted document
    POST   /stepflow/evaluate                 - Evaluate one expression
    GET    /stepflow/components               - List/search components
    GET    /stepflow/components/autocomplete  - Rank components for a partial path
    GET    /stepflow/components/validate      - Check a component path
    GET    /stepflow/components/docs          - Markdown docs for a component
    GET    /health                            - Health check
"""

from .server import create_app, get_store, set_store

__all__ = ["create_app", "get_store", "set_store"]
