"""In-memory repository implementations.

Used by tests and single-process deployments. Entities are stored as deep
copies so callers can never mutate stored state behind the repository's
back; version checks behave exactly like the SQL implementation.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from ..errors import ConcurrencyConflict
from ..schemas.domain import (
    ApprovalCase,
    ApprovalPolicy,
    CaseStatus,
    CriticalActionType,
    RequestWorkflowState,
    WorkflowDefinition,
)
from .interfaces import (
    ApprovalCaseRepository,
    ApprovalPolicyRepository,
    WorkflowDefinitionRepository,
    WorkflowStateRepository,
)


class InMemoryApprovalPolicyRepository(ApprovalPolicyRepository):
    def __init__(self) -> None:
        self._rows: Dict[CriticalActionType, ApprovalPolicy] = {}

    async def get(self, action_type: CriticalActionType) -> Optional[ApprovalPolicy]:
        row = self._rows.get(action_type)
        return row.model_copy(deep=True) if row is not None else None

    async def upsert(self, policy: ApprovalPolicy) -> None:
        self._rows[policy.action_type] = policy.model_copy(deep=True)

    async def list(self) -> list[ApprovalPolicy]:
        return [p.model_copy(deep=True) for p in self._rows.values()]


class InMemoryApprovalCaseRepository(ApprovalCaseRepository):
    def __init__(self) -> None:
        self._rows: Dict[str, ApprovalCase] = {}

    async def add(self, case: ApprovalCase) -> None:
        if case.id in self._rows:
            raise ConcurrencyConflict("ApprovalCase", case.id, 0)
        self._rows[case.id] = case.model_copy(deep=True)

    async def get(self, case_id: str) -> Optional[ApprovalCase]:
        row = self._rows.get(case_id)
        return row.model_copy(deep=True) if row is not None else None

    async def save(self, case: ApprovalCase, *, expected_version: int) -> None:
        row = self._rows.get(case.id)
        if row is None or row.version != expected_version:
            raise ConcurrencyConflict("ApprovalCase", case.id, expected_version)
        self._rows[case.id] = case.model_copy(deep=True)

    async def list_by_status(self, status: CaseStatus) -> list[ApprovalCase]:
        rows = [c for c in self._rows.values() if c.status == status]
        rows.sort(key=lambda c: c.deadline)
        return [c.model_copy(deep=True) for c in rows]

    async def count_by_status(self) -> dict[CaseStatus, int]:
        return dict(Counter(c.status for c in self._rows.values()))


class InMemoryWorkflowDefinitionRepository(WorkflowDefinitionRepository):
    def __init__(self) -> None:
        self._rows: Dict[Tuple[str, int], WorkflowDefinition] = {}

    async def get(self, definition_id: str, version: Optional[int] = None) -> Optional[WorkflowDefinition]:
        if version is None:
            versions = [v for (d, v) in self._rows if d == definition_id]
            if not versions:
                return None
            version = max(versions)
        row = self._rows.get((definition_id, version))
        return row.model_copy(deep=True) if row is not None else None

    async def upsert(self, definition: WorkflowDefinition) -> None:
        self._rows[(definition.id, definition.version)] = definition.model_copy(deep=True)


class InMemoryWorkflowStateRepository(WorkflowStateRepository):
    def __init__(self) -> None:
        self._rows: Dict[str, RequestWorkflowState] = {}

    async def add(self, state: RequestWorkflowState) -> None:
        if state.request_id in self._rows:
            raise ConcurrencyConflict("RequestWorkflowState", state.request_id, 0)
        self._rows[state.request_id] = state.model_copy(deep=True)

    async def get(self, request_id: str) -> Optional[RequestWorkflowState]:
        row = self._rows.get(request_id)
        return row.model_copy(deep=True) if row is not None else None

    async def save(self, state: RequestWorkflowState, *, expected_version: int) -> None:
        row = self._rows.get(state.request_id)
        if row is None or row.version != expected_version:
            raise ConcurrencyConflict("RequestWorkflowState", state.request_id, expected_version)
        self._rows[state.request_id] = state.model_copy(deep=True)

    async def list_with_deadline(self) -> list[RequestWorkflowState]:
        rows = [s for s in self._rows.values() if s.stage_deadline is not None]
        rows.sort(key=lambda s: s.stage_deadline)
        return [s.model_copy(deep=True) for s in rows]


@dataclass(frozen=True)
class InMemoryRepoBundle:
    """Convenience bundle of all in-memory repositories."""

    policies: InMemoryApprovalPolicyRepository = field(default_factory=InMemoryApprovalPolicyRepository)
    cases: InMemoryApprovalCaseRepository = field(default_factory=InMemoryApprovalCaseRepository)
    definitions: InMemoryWorkflowDefinitionRepository = field(default_factory=InMemoryWorkflowDefinitionRepository)
    states: InMemoryWorkflowStateRepository = field(default_factory=InMemoryWorkflowStateRepository)


def build_memory_repos() -> InMemoryRepoBundle:
    return InMemoryRepoBundle()
