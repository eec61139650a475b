"""Health check endpoints for Reviewgate.

Routes:
    GET /health/ - Basic liveness check
    GET /health/ready - Readiness check that reads from the result store
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from reviewgate.logging import get_logger
from reviewgate.web.routes.changes import get_orchestrator
from reviewgate.workflow import ChangeState, WorkflowOrchestrator

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str


class ReadinessResponse(BaseModel):
    """Readiness check response model.

    Attributes:
        status: "ok" or "unhealthy"
        store: "reachable" or "unreachable"
        reviewing: Number of changes currently under review
    """

    status: str
    store: str
    reviewing: int = 0


def create_health_router() -> APIRouter:
    """Create the health check router."""
    router = APIRouter(prefix="/health", tags=["health"])

    @router.get("/", response_model=HealthResponse)
    async def health() -> dict[str, Any]:
        return {"status": "ok"}

    @router.get("/ready", response_model=ReadinessResponse)
    async def readiness(
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> dict[str, Any]:
        try:
            reviewing = await orchestrator.list_changes(ChangeState.REVIEWING)
        except Exception as exc:
            logger.warning("readiness_check_failed", store="unreachable", error=str(exc))
            return {"status": "unhealthy", "store": "unreachable"}

        return {"status": "ok", "store": "reachable", "reviewing": len(reviewing)}

    return router
