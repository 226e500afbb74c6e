"""
Component discovery endpoints for the flowbridge API.

Provides REST endpoints for:
- Listing and searching registered components
- Autocomplete for partially typed component paths
- Component path validation with suggestions
- Markdown documentation for a single component
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from flowbridge.config.component_registry import get_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stepflow/components", tags=["components"])


class ComponentListResponse(BaseModel):
    """Response for list components endpoint."""

    components: List[Dict[str, Any]]
    count: int


class ComponentDocsResponse(BaseModel):
    path: str
    markdown: str


@router.get("", response_model=ComponentListResponse)
async def list_components(
    search: Optional[str] = None,
    category: Optional[str] = None,
    include_builtin: bool = True,
):
    """List components, optionally filtered by search text or category."""
    components = get_registry().list_components(
        include_builtin=include_builtin,
        category=category,
        search=search,
    )
    return ComponentListResponse(
        components=[c.to_dict() for c in components],
        count=len(components),
    )


@router.get("/autocomplete")
async def autocomplete_components(q: str = "", limit: int = 10):
    """Rank components for a partially typed path."""
    if not q:
        return {"suggestions": []}
    suggestions = get_registry().autocomplete(q, limit=limit)
    return {"suggestions": [c.to_dict() for c in suggestions]}


@router.get("/validate")
async def validate_component(path: str):
    """Check that a component path is known; suggest alternatives if not."""
    return get_registry().validate_component_path(path).to_dict()


@router.get("/docs", response_model=ComponentDocsResponse)
async def component_docs(path: str):
    """Markdown documentation for one component.

    Raises:
        404: Component not found.
    """
    registry = get_registry()
    if not registry.has_component(path):
        raise HTTPException(
            status_code=404,
            detail={
                "error": "component_not_found",
                "message": f"Component '{path}' not found",
            },
        )
    return ComponentDocsResponse(path=path, markdown=registry.component_documentation(path))
