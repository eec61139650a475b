"""Change workflow REST API endpoints for Reviewgate.

Provides FastAPI routes for opening changes, recording implementation and
review results, running the configured reviewers, evaluating the gate,
and committing or abandoning changes.

Workflow errors map to HTTP status codes: unknown changes and findings are
404, state conflicts and a closed gate are 409, invalid input is 422.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from reviewgate.logging import bind_change_context, get_logger
from reviewgate.workflow import (
    Change,
    ChangeClassification,
    ChangeNotFoundError,
    ChangeState,
    Finding,
    FindingNotFoundError,
    GateClosedError,
    GateDecision,
    ReviewGateError,
    StageName,
    StageOutcome,
    StageResult,
    WorkflowOrchestrator,
    classify_change,
    render_gate_report,
)

logger = get_logger(__name__)


# --- Pydantic Schemas ---


class ChangeCreate(BaseModel):
    """Request schema for opening a change.

    When ``classification`` is omitted it is derived from ``paths`` and
    ``lines_changed``; with neither, the change is non-trivial.
    """

    description: str = Field(..., min_length=1, max_length=2000)
    classification: ChangeClassification | None = None
    paths: list[str] = Field(default_factory=list)
    lines_changed: int = Field(default=0, ge=0)


class StageSubmission(BaseModel):
    """Request schema for recording a stage outcome."""

    outcome: StageOutcome
    findings: list[Finding] = Field(default_factory=list)
    reason: str | None = None


class ReviewSubmission(StageSubmission):
    """Request schema for recording a review stage outcome."""

    stage: StageName


class AbandonRequest(BaseModel):
    """Request schema for abandoning a change."""

    reason: str | None = None


class ResolveRequest(BaseModel):
    """Request schema for resolving a finding."""

    note: str | None = None


# --- Dependency Injection ---


def get_orchestrator(request: Request) -> WorkflowOrchestrator:
    """Extract the workflow orchestrator from FastAPI app state."""
    return request.app.state.orchestrator


async def change_context(change_id: str) -> str:
    """Bind the change ID from the path to the request's log context."""
    bind_change_context(change_id)
    return change_id


ChangeId = Annotated[str, Depends(change_context)]


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (ChangeNotFoundError, FindingNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, GateClosedError):
        return HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "blocking_reasons": exc.decision.blocking_reasons,
            },
        )
    if isinstance(exc, ReviewGateError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=422, detail=str(exc))


# --- Router ---


def create_changes_router() -> APIRouter:
    """Create the change workflow router."""
    router = APIRouter(prefix="/changes", tags=["changes"])

    @router.post("/", response_model=Change, status_code=201)
    async def create_change_endpoint(
        data: ChangeCreate,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> Change:
        classification = data.classification or classify_change(data.paths, data.lines_changed)
        return await orchestrator.create_change(data.description, classification)

    @router.get("/", response_model=list[Change])
    async def list_changes_endpoint(
        state: ChangeState | None = None,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> list[Change]:
        changes = await orchestrator.list_changes(state)
        logger.info("changes_listed", count=len(changes), state=state.value if state else None)
        return changes

    @router.get("/{change_id}", response_model=Change)
    async def get_change_endpoint(
        change_id: ChangeId,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> Change:
        try:
            return await orchestrator.get_change(change_id)
        except ReviewGateError as e:
            raise _http_error(e) from e

    @router.get("/{change_id}/results", response_model=list[StageResult])
    async def list_results_endpoint(
        change_id: ChangeId,
        stage: StageName | None = None,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> list[StageResult]:
        try:
            await orchestrator.get_change(change_id)
        except ReviewGateError as e:
            raise _http_error(e) from e
        return await orchestrator.store.history(change_id, stage)

    @router.post("/{change_id}/implementation", response_model=Change)
    async def record_implementation_endpoint(
        change_id: ChangeId,
        data: StageSubmission,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> Change:
        try:
            return await orchestrator.record_implementation(
                change_id, data.outcome, data.findings, data.reason
            )
        except ReviewGateError as e:
            raise _http_error(e) from e

    @router.post("/{change_id}/reviews", response_model=Change)
    async def submit_review_endpoint(
        change_id: ChangeId,
        data: ReviewSubmission,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> Change:
        try:
            return await orchestrator.submit_review(
                change_id, data.stage, data.outcome, data.findings, data.reason
            )
        except (ReviewGateError, ValueError) as e:
            raise _http_error(e) from e

    @router.post("/{change_id}/reviews/run", response_model=Change)
    async def run_reviews_endpoint(
        change_id: ChangeId,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> Change:
        try:
            return await orchestrator.run_reviews(change_id)
        except ReviewGateError as e:
            raise _http_error(e) from e

    @router.get("/{change_id}/gate", response_model=GateDecision)
    async def evaluate_gate_endpoint(
        change_id: ChangeId,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> GateDecision:
        try:
            return await orchestrator.evaluate(change_id)
        except ReviewGateError as e:
            raise _http_error(e) from e

    @router.get("/{change_id}/report", response_class=PlainTextResponse)
    async def report_endpoint(
        change_id: ChangeId,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> PlainTextResponse:
        try:
            change = await orchestrator.get_change(change_id)
        except ReviewGateError as e:
            raise _http_error(e) from e
        decision = await orchestrator.evaluator.evaluate(change)
        report = render_gate_report(
            change,
            decision,
            await orchestrator.store.latest_results(change_id),
            await orchestrator.store.resolved_finding_ids(change_id),
        )
        return PlainTextResponse(report, media_type="text/markdown")

    @router.post(
        "/{change_id}/findings/{finding_id}/resolve",
        response_model=GateDecision,
    )
    async def resolve_finding_endpoint(
        change_id: ChangeId,
        finding_id: str,
        data: ResolveRequest,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> GateDecision:
        try:
            return await orchestrator.resolve_finding(change_id, finding_id, data.note)
        except ReviewGateError as e:
            raise _http_error(e) from e

    @router.post("/{change_id}/revise", response_model=Change)
    async def revise_endpoint(
        change_id: ChangeId,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> Change:
        try:
            return await orchestrator.begin_revision(change_id)
        except ReviewGateError as e:
            raise _http_error(e) from e

    @router.post("/{change_id}/commit", response_model=Change)
    async def commit_endpoint(
        change_id: ChangeId,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> Change:
        try:
            return await orchestrator.commit(change_id)
        except ReviewGateError as e:
            raise _http_error(e) from e

    @router.post("/{change_id}/abandon", response_model=Change)
    async def abandon_endpoint(
        change_id: ChangeId,
        data: AbandonRequest,
        orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> Change:
        try:
            return await orchestrator.abandon(change_id, data.reason)
        except ReviewGateError as e:
            raise _http_error(e) from e

    return router
