"""
Stepflow endpoints for the flowbridge API.

Provides REST endpoints for:
- Exporting stored graphs (YAML, JSON, preview)
- Validating stored graphs and posted documents
- Importing documents (JSON body or YAML text) into new stored graphs
- Evaluating a single value-expression against a posted context
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, HTTPException, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from flowbridge.compiler.exporter import compile_graph
from flowbridge.compiler.importer import import_document
from flowbridge.config.component_registry import get_registry, required_env_vars
from flowbridge.errors import (
    DocumentValidationError,
    ExpressionReferenceError,
    GraphValidationError,
    ParseError,
)
from flowbridge.graph.types import WorkflowGraph
from flowbridge.validator import compatibility_report, validate_document, validate_graph
from flowbridge.wire.evaluator import EvaluationContext, evaluate
from flowbridge.wire.serialization import document_to_yaml, load_document_data

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stepflow"])


# =============================================================================
# Pydantic Models
# =============================================================================


class ImportYamlRequest(BaseModel):
    """Request for the YAML import endpoint."""

    yaml: str = Field(..., description="Stepflow document as YAML text")
    workflow_id: Optional[str] = Field(None, description="Id for the new workflow")


class ImportResponse(BaseModel):
    """Response for import endpoints."""

    workflow: Dict[str, Any]
    warnings: List[str] = Field(default_factory=list)


class EvaluateRequest(BaseModel):
    """Request for the expression preview endpoint."""

    expression: Any = Field(None, description="Value-expression in wire form")
    context: Dict[str, Any] = Field(
        default_factory=dict,
        description="{input, stepOutputs, variables, workflowStorage}",
    )


class EvaluateResponse(BaseModel):
    value: Any = None


# =============================================================================
# Helpers
# =============================================================================


def _get_store():
    """Get the workflow store."""
    # Import here to avoid circular imports
    from ..server import get_store

    return get_store()


def _load_workflow(workflow_id: str) -> WorkflowGraph:
    graph = _get_store().get_workflow(workflow_id)
    if graph is None:
        raise HTTPException(
            status_code=404,
            detail={
                "error": "workflow_not_found",
                "message": f"Workflow '{workflow_id}' not found",
            },
        )
    return graph


def _compile_or_400(graph: WorkflowGraph):
    try:
        return compile_graph(graph, get_registry())
    except GraphValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "validation_failed",
                "message": str(e),
                "errors": [err.to_dict() for err in e.result.errors],
                "warnings": [w.to_dict() for w in e.result.warnings],
            },
        )


def _import(data: Dict[str, Any], workflow_id: Optional[str]) -> JSONResponse:
    try:
        result = import_document(data, get_registry(), graph_id=workflow_id)
    except DocumentValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid_document",
                "message": str(e),
                "errors": [err.to_dict() for err in e.result.errors],
                "warnings": [w.to_dict() for w in e.result.warnings],
            },
        )
    except ParseError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "parse_error", "message": str(e), "errors": []},
        )

    store = _get_store()
    try:
        store.create_workflow(result.graph)
    except ValueError as e:
        raise HTTPException(
            status_code=409,
            detail={"error": "workflow_exists", "message": str(e)},
        )
    stored = store.get_workflow(result.graph.id) or result.graph
    logger.info("Imported workflow %s with %d nodes", stored.id, len(stored.nodes))
    return JSONResponse(
        status_code=201,
        content=ImportResponse(workflow=stored.to_dict(), warnings=result.warnings).model_dump(),
    )


# =============================================================================
# Workflow Export Endpoints
# =============================================================================


@router.get("/workflows/{workflow_id}/stepflow/yaml")
async def export_workflow_yaml(workflow_id: str):
    """Export a stored workflow as Stepflow YAML.

    Raises:
        404: Workflow not found.
        400: Graph failed validation (full error list in detail).
    """
    graph = _load_workflow(workflow_id)
    result = _compile_or_400(graph)
    return Response(
        content=document_to_yaml(result.document),
        media_type="application/x-yaml",
        headers={"Content-Disposition": f'attachment; filename="{result.document.name}.yaml"'},
    )


@router.get("/workflows/{workflow_id}/stepflow/json")
async def export_workflow_json(workflow_id: str):
    """Export a stored workflow as a Stepflow JSON document."""
    graph = _load_workflow(workflow_id)
    result = _compile_or_400(graph)
    return JSONResponse(content=result.document.to_dict())


@router.get("/workflows/{workflow_id}/stepflow/preview")
async def preview_workflow(workflow_id: str):
    """Compile a stored workflow and return everything the editor shows.

    Returns:
        document, yaml, validation result, compatibility report,
        compiler warnings and the id mapping.
    """
    graph = _load_workflow(workflow_id)
    result = _compile_or_400(graph)
    data = result.document.to_dict()
    return {
        "document": data,
        "yaml": document_to_yaml(result.document),
        "validation": validate_document(data).to_dict(),
        "compatibility": compatibility_report(data).to_dict(),
        "warnings": result.warnings,
        "idMapping": result.id_mapping.to_dict(),
        "requiredEnv": required_env_vars(graph, get_registry().model_rules),
    }


@router.post("/workflows/{workflow_id}/stepflow/validate")
async def validate_workflow(workflow_id: str):
    """Validate a stored workflow graph for Stepflow export."""
    graph = _load_workflow(workflow_id)
    result = validate_graph(graph).to_dict()
    result["requiredEnv"] = required_env_vars(graph, get_registry().model_rules)
    return result


# =============================================================================
# Document Endpoints
# =============================================================================


@router.post("/stepflow/import", status_code=201, response_model=ImportResponse)
async def import_stepflow_json(
    document: Dict[str, Any] = Body(...),
    workflow_id: Optional[str] = None,
):
    """Import a Stepflow document (JSON body) as a new workflow.

    Raises:
        400: Document invalid (all errors in detail).
        409: Workflow id already taken.
    """
    return _import(document, workflow_id)


@router.post("/stepflow/import-yaml", status_code=201, response_model=ImportResponse)
async def import_stepflow_yaml(request: ImportYamlRequest):
    """Import a Stepflow document given as YAML text."""
    try:
        data = load_document_data(request.yaml, "yaml")
    except ParseError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "parse_error",
                "message": str(e),
                "line": e.line,
                "column": e.column,
            },
        )
    return _import(data, request.workflow_id)


@router.post("/stepflow/validate")
async def validate_stepflow_document(document: Dict[str, Any] = Body(...)):
    """Structural and semantic validation plus the compatibility report."""
    result = validate_document(document).to_dict()
    result["compatibility"] = compatibility_report(document).to_dict()
    return result


@router.post("/stepflow/evaluate", response_model=EvaluateResponse)
async def evaluate_expression(request: EvaluateRequest):
    """Evaluate one value-expression against a posted context (preview only).

    Raises:
        400: Expression or path query malformed.
        422: A required reference is missing from the context.
    """
    context = EvaluationContext.from_dict(request.context)
    try:
        value = evaluate(request.expression, context)
    except ExpressionReferenceError as e:
        raise HTTPException(
            status_code=422,
            detail={"error": "reference_error", "kind": e.kind, "name": e.name, "message": str(e)},
        )
    except ParseError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "parse_error", "message": str(e)},
        )
    return EvaluateResponse(value=value)
