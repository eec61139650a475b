"""Shared pytest fixtures for Reviewgate tests.

Provides an in-memory result store and a workflow orchestrator wired to
scripted reviewers.
"""

from __future__ import annotations

import pytest
from fakes import ScriptedReviewer, passing_reviewers

from reviewgate.workflow import InMemoryStageResultStore, StageName, WorkflowOrchestrator


@pytest.fixture
def store() -> InMemoryStageResultStore:
    """Create an empty in-memory store."""
    return InMemoryStageResultStore()


@pytest.fixture
def reviewers() -> dict[StageName, ScriptedReviewer]:
    """Create a passing reviewer for every review stage."""
    return passing_reviewers()


@pytest.fixture
def orchestrator(
    store: InMemoryStageResultStore,
    reviewers: dict[StageName, ScriptedReviewer],
) -> WorkflowOrchestrator:
    """Create an orchestrator over the in-memory store and scripted reviewers."""
    return WorkflowOrchestrator(
        store=store,
        reviewers=reviewers,
        stage_timeout_seconds=5.0,
        max_revisions=3,
    )
