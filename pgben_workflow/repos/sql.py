from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides a Postgres-backed persistence implementation for the
repository interfaces defined in ``pgben_workflow.repos.interfaces``.

Usage
-----

Typical wiring (tests or application setup):

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (for tests/dev; production uses the
  surrounding application's migrations).
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits. Case and workflow-state updates are a single conditional
``UPDATE ... WHERE version = :expected``; zero affected rows means another
writer got there first and ``ConcurrencyConflict`` is raised.
"""

import re
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..clock import as_utc, utc_now
from ..errors import ConcurrencyConflict
from ..schemas.domain import (
    ApprovalCase,
    ApprovalPolicy,
    ApprovalStrategy,
    CaseStatus,
    CriticalActionType,
    HistoryEntry,
    RequestWorkflowState,
    Vote,
    WorkflowDefinition,
    WorkflowStage,
)
from .interfaces import (
    ApprovalCaseRepository,
    ApprovalPolicyRepository,
    WorkflowDefinitionRepository,
    WorkflowStateRepository,
)
from .models import (
    ApprovalCaseRow,
    ApprovalPolicyRow,
    Base,
    WorkflowDefinitionRow,
    WorkflowStateRow,
)


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    The helper normalizes Postgres URLs to ensure the async driver is used.
    For example, it rewrites ``postgresql://`` and other variants to
    ``postgresql+asyncpg://``.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata.

    This is mainly intended for tests and local development.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _policy_from_row(row: ApprovalPolicyRow) -> ApprovalPolicy:
    return ApprovalPolicy(
        action_type=CriticalActionType(row.action_type),
        strategy=ApprovalStrategy(row.strategy),
        min_approvals=row.min_approvals,
        time_limit_hours=row.time_limit_hours,
        allow_self_approval=row.allow_self_approval,
        active=row.active,
        version=row.version,
    )


def _case_values(case: ApprovalCase) -> dict:
    return {
        "code": case.code,
        "action_type": case.action_type.value,
        "requester_id": case.requester_id,
        "payload": case.payload,
        "status": case.status.value,
        "opened_at": case.opened_at,
        "deadline": case.deadline,
        "votes": [v.model_dump(mode="json") for v in case.votes],
        "eligible_approvers": list(case.eligible_approvers),
        "policy": case.policy.model_dump(mode="json"),
        "resolved_at": case.resolved_at,
        "resolved_by": case.resolved_by,
        "version": case.version,
    }


def _case_from_row(row: ApprovalCaseRow) -> ApprovalCase:
    return ApprovalCase(
        id=row.id,
        code=row.code,
        action_type=CriticalActionType(row.action_type),
        requester_id=row.requester_id,
        payload=row.payload or {},
        status=CaseStatus(row.status),
        opened_at=as_utc(row.opened_at),
        deadline=as_utc(row.deadline),
        votes=[Vote.model_validate(v) for v in row.votes or []],
        eligible_approvers=list(row.eligible_approvers or []),
        policy=ApprovalPolicy.model_validate(row.policy),
        resolved_at=as_utc(row.resolved_at),
        resolved_by=row.resolved_by,
        version=row.version,
    )


def _state_values(state: RequestWorkflowState) -> dict:
    return {
        "workflow_definition_id": state.workflow_definition_id,
        "workflow_definition_version": state.workflow_definition_version,
        "current_stage": state.current_stage.value,
        "stage_entered_at": state.stage_entered_at,
        "stage_deadline": state.stage_deadline,
        "history": [h.model_dump(mode="json") for h in state.history],
        "version": state.version,
    }


def _state_from_row(row: WorkflowStateRow) -> RequestWorkflowState:
    return RequestWorkflowState(
        request_id=row.request_id,
        workflow_definition_id=row.workflow_definition_id,
        workflow_definition_version=row.workflow_definition_version,
        current_stage=WorkflowStage(row.current_stage),
        stage_entered_at=as_utc(row.stage_entered_at),
        stage_deadline=as_utc(row.stage_deadline),
        history=[HistoryEntry.model_validate(h) for h in row.history or []],
        version=row.version,
    )


@dataclass(frozen=True)
class SqlApprovalPolicyRepository(ApprovalPolicyRepository):
    """SQL implementation of ``ApprovalPolicyRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, action_type: CriticalActionType) -> Optional[ApprovalPolicy]:
        async with self.session_factory() as s:
            row = await s.get(ApprovalPolicyRow, action_type.value)
            if row is None:
                return None
            return _policy_from_row(row)

    async def upsert(self, policy: ApprovalPolicy) -> None:
        """
        Insert or replace a policy.

        Args:
            policy: The policy to persist; its ``action_type`` is the key.
        """
        async with self.session_factory() as s:
            row = await s.get(ApprovalPolicyRow, policy.action_type.value)
            if row is None:
                row = ApprovalPolicyRow(action_type=policy.action_type.value)
                s.add(row)
            row.strategy = policy.strategy.value
            row.min_approvals = policy.min_approvals
            row.time_limit_hours = policy.time_limit_hours
            row.allow_self_approval = policy.allow_self_approval
            row.active = policy.active
            row.version = policy.version
            row.updated_at = utc_now()
            await s.commit()

    async def list(self) -> list[ApprovalPolicy]:
        async with self.session_factory() as s:
            result = await s.execute(select(ApprovalPolicyRow).order_by(ApprovalPolicyRow.action_type))
            return [_policy_from_row(row) for row in result.scalars().all()]


@dataclass(frozen=True)
class SqlApprovalCaseRepository(ApprovalCaseRepository):
    """SQL implementation of ``ApprovalCaseRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def add(self, case: ApprovalCase) -> None:
        """
        Insert a new case row.

        Args:
            case: The case domain object.

        Raises:
            ConcurrencyConflict: If the id (or code) is already taken.
        """
        async with self.session_factory() as s:
            s.add(ApprovalCaseRow(id=case.id, **_case_values(case)))
            try:
                await s.commit()
            except IntegrityError as exc:
                await s.rollback()
                raise ConcurrencyConflict("ApprovalCase", case.id, 0) from exc

    async def get(self, case_id: str) -> Optional[ApprovalCase]:
        async with self.session_factory() as s:
            row = await s.get(ApprovalCaseRow, case_id)
            if row is None:
                return None
            return _case_from_row(row)

    async def save(self, case: ApprovalCase, *, expected_version: int) -> None:
        """
        Compare-and-swap update of a case.

        Args:
            case: The new case state (``case.version`` is the new version).
            expected_version: The version the caller read.

        Raises:
            ConcurrencyConflict: If no row with ``expected_version`` exists.
        """
        async with self.session_factory() as s:
            stmt = (
                update(ApprovalCaseRow)
                .where(ApprovalCaseRow.id == case.id, ApprovalCaseRow.version == expected_version)
                .values(**_case_values(case))
            )
            result = await s.execute(stmt)
            if result.rowcount != 1:
                await s.rollback()
                raise ConcurrencyConflict("ApprovalCase", case.id, expected_version)
            await s.commit()

    async def list_by_status(self, status: CaseStatus) -> list[ApprovalCase]:
        async with self.session_factory() as s:
            stmt = (
                select(ApprovalCaseRow)
                .where(ApprovalCaseRow.status == status.value)
                .order_by(ApprovalCaseRow.deadline.asc())
            )
            result = await s.execute(stmt)
            return [_case_from_row(row) for row in result.scalars().all()]

    async def count_by_status(self) -> dict[CaseStatus, int]:
        async with self.session_factory() as s:
            stmt = select(ApprovalCaseRow.status, func.count()).group_by(ApprovalCaseRow.status)
            result = await s.execute(stmt)
            return {CaseStatus(status): count for status, count in result.all()}


@dataclass(frozen=True)
class SqlWorkflowDefinitionRepository(WorkflowDefinitionRepository):
    """SQL implementation of ``WorkflowDefinitionRepository``.

    One row per (id, version); registering a new version keeps the old rows
    so requests pinned to them can still be resolved.
    """

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, definition_id: str, version: Optional[int] = None) -> Optional[WorkflowDefinition]:
        async with self.session_factory() as s:
            if version is not None:
                row = await s.get(WorkflowDefinitionRow, (definition_id, version))
            else:
                stmt = (
                    select(WorkflowDefinitionRow)
                    .where(WorkflowDefinitionRow.id == definition_id)
                    .order_by(WorkflowDefinitionRow.version.desc())
                    .limit(1)
                )
                row = (await s.execute(stmt)).scalars().first()
            if row is None:
                return None
            return WorkflowDefinition.model_validate(row.definition)

    async def upsert(self, definition: WorkflowDefinition) -> None:
        async with self.session_factory() as s:
            row = await s.get(WorkflowDefinitionRow, (definition.id, definition.version))
            if row is None:
                row = WorkflowDefinitionRow(id=definition.id, version=definition.version)
                s.add(row)
            row.definition = definition.model_dump(mode="json")
            row.updated_at = utc_now()
            await s.commit()


@dataclass(frozen=True)
class SqlWorkflowStateRepository(WorkflowStateRepository):
    """SQL implementation of ``WorkflowStateRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def add(self, state: RequestWorkflowState) -> None:
        async with self.session_factory() as s:
            s.add(WorkflowStateRow(request_id=state.request_id, **_state_values(state)))
            try:
                await s.commit()
            except IntegrityError as exc:
                await s.rollback()
                raise ConcurrencyConflict("RequestWorkflowState", state.request_id, 0) from exc

    async def get(self, request_id: str) -> Optional[RequestWorkflowState]:
        async with self.session_factory() as s:
            row = await s.get(WorkflowStateRow, request_id)
            if row is None:
                return None
            return _state_from_row(row)

    async def save(self, state: RequestWorkflowState, *, expected_version: int) -> None:
        async with self.session_factory() as s:
            stmt = (
                update(WorkflowStateRow)
                .where(
                    WorkflowStateRow.request_id == state.request_id,
                    WorkflowStateRow.version == expected_version,
                )
                .values(**_state_values(state))
            )
            result = await s.execute(stmt)
            if result.rowcount != 1:
                await s.rollback()
                raise ConcurrencyConflict("RequestWorkflowState", state.request_id, expected_version)
            await s.commit()

    async def list_with_deadline(self) -> list[RequestWorkflowState]:
        async with self.session_factory() as s:
            stmt = (
                select(WorkflowStateRow)
                .where(WorkflowStateRow.stage_deadline.is_not(None))
                .order_by(WorkflowStateRow.stage_deadline.asc())
            )
            result = await s.execute(stmt)
            return [_state_from_row(row) for row in result.scalars().all()]


@dataclass(frozen=True)
class SqlRepoBundle:
    """Convenience bundle of all SQL repositories for dependency injection."""

    policies: SqlApprovalPolicyRepository
    cases: SqlApprovalCaseRepository
    definitions: SqlWorkflowDefinitionRepository
    states: SqlWorkflowStateRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build a ``SqlRepoBundle`` from a session factory."""
    return SqlRepoBundle(
        policies=SqlApprovalPolicyRepository(session_factory=session_factory),
        cases=SqlApprovalCaseRepository(session_factory=session_factory),
        definitions=SqlWorkflowDefinitionRepository(session_factory=session_factory),
        states=SqlWorkflowStateRepository(session_factory=session_factory),
    )
