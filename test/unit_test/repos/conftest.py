"""Fixtures for repository tests.

SQL repositories run against in-memory SQLite through aiosqlite.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from pgben_workflow.repos.sql import (
    SqlRepoBundle,
    build_sql_repos,
    create_all,
    create_engine,
    create_sessionmaker,
)
from pgben_workflow.schemas.domain import (
    ApprovalCase,
    ApprovalPolicy,
    ApprovalStrategy,
    CriticalActionType,
    HistoryEntry,
    RequestWorkflowState,
    Vote,
    VoteDecision,
    WorkflowStage,
)

OPENED = datetime(2026, 1, 9, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def sql_repos(db_engine) -> SqlRepoBundle:
    return build_sql_repos(session_factory=create_sessionmaker(db_engine))


@pytest.fixture
def make_case():
    def _make(case_id: str = "case-1", code: str = "SOL-TEST-000001", hours: int = 24, **kwargs) -> ApprovalCase:
        policy = ApprovalPolicy(
            action_type=CriticalActionType.DELETE_DOCUMENT,
            strategy=ApprovalStrategy.UNANIMOUS,
            min_approvals=2,
            time_limit_hours=hours,
        )
        data = dict(
            id=case_id,
            code=code,
            action_type=CriticalActionType.DELETE_DOCUMENT,
            requester_id="U1",
            payload={"params": {"id": "doc-7"}},
            opened_at=OPENED,
            deadline=OPENED + timedelta(hours=hours),
            votes=[Vote(approver_id="U2", decision=VoteDecision.APPROVE, cast_at=OPENED, comment="ok")],
            eligible_approvers=["U2", "U3"],
            policy=policy,
        )
        data.update(kwargs)
        return ApprovalCase(**data)

    return _make


@pytest.fixture
def make_state():
    def _make(request_id: str = "req-1", deadline_days: int = 2) -> RequestWorkflowState:
        return RequestWorkflowState(
            request_id=request_id,
            workflow_definition_id="beneficio",
            current_stage=WorkflowStage.ABERTA,
            stage_entered_at=OPENED,
            stage_deadline=OPENED + timedelta(days=deadline_days),
            history=[HistoryEntry(to_stage=WorkflowStage.ABERTA, actor_id="U1", at=OPENED, note="start")],
        )

    return _make
