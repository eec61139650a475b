"""FastAPI route definitions for the Reviewgate HTTP API."""

from __future__ import annotations

from reviewgate.web.routes.changes import (
    AbandonRequest,
    ChangeCreate,
    ResolveRequest,
    ReviewSubmission,
    StageSubmission,
    create_changes_router,
    get_orchestrator,
)
from reviewgate.web.routes.health import (
    HealthResponse,
    ReadinessResponse,
    create_health_router,
)

__all__ = [
    # Changes
    "AbandonRequest",
    "ChangeCreate",
    "ResolveRequest",
    "ReviewSubmission",
    "StageSubmission",
    "create_changes_router",
    "get_orchestrator",
    # Health
    "HealthResponse",
    "ReadinessResponse",
    "create_health_router",
]
