"""
FastAPI server exposing Stepflow export, import, validation and component
discovery to the workflow editor.

Usage:
    # Run standalone
    python -m flowbridge.api.server

    # Or via factory
    from flowbridge.api import create_app
    app = create_app()
    uvicorn.run(app, port=5001)

API Structure:
    /api/workflows/{id}/stepflow/  - Export, preview and validate stored graphs
    /api/stepflow/                 - Import, document validation, expression preview
    /api/stepflow/components/      - Component discovery
    /api/health                    - Health check
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from flowbridge.config.component_registry import get_registry
from flowbridge.config.runtime_config import get_store_path, is_cors_enabled
from flowbridge.storage import InMemoryWorkflowStore, JsonFileWorkflowStore, WorkflowStore

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# Store Access
# =============================================================================

_store: Optional[WorkflowStore] = None


def _default_store() -> WorkflowStore:
    store_path = get_store_path()
    if store_path:
        logger.info("Using JSON file workflow store at %s", store_path)
        return JsonFileWorkflowStore(store_path)
    return InMemoryWorkflowStore()


def get_store() -> WorkflowStore:
    """Get the workflow store the routes read from and write to."""
    global _store
    if _store is None:
        _store = _default_store()
    return _store


def set_store(store: Optional[WorkflowStore]) -> None:
    """Replace the workflow store (None resets to the configured default)."""
    global _store
    _store = store


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    store: Optional[WorkflowStore] = None,
    enable_cors: Optional[bool] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        store: Workflow store; defaults to the configured store.
        enable_cors: Whether to enable CORS middleware; defaults to config.

    Returns:
        Configured FastAPI application.
    """
    set_store(store)
    if enable_cors is None:
        enable_cors = is_cors_enabled()

    app = FastAPI(
        title="flowbridge API",
        description="Bidirectional conversion between workflow graphs and Stepflow documents.",
        version="0.1.0",
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    from .routes import components_router, stepflow_router

    app.include_router(stepflow_router, prefix="/api")
    app.include_router(components_router, prefix="/api")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        logger.info(
            "%s %s %s %.3fs",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response

    @app.get("/api/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "components": len(get_registry().list_components()),
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="127.0.0.1", port=5001)
