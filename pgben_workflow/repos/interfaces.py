from __future__ import annotations

"""Repository interface contracts.

The engines and stores depend on these Protocols instead of concrete
persistence implementations.

Contract guidelines
-------------------

- All methods are async.
- Implementations never leak sessions/transactions; each call is its own
  unit of work.
- Returned objects are detached copies: mutating them never changes what is
  stored until ``save`` is called.
- Case and workflow-state writes use compare-and-swap on ``version``:
  ``save(entity, expected_version=n)`` stores ``entity`` only when the stored
  version is still ``n``, and raises ``ConcurrencyConflict`` otherwise. The
  caller sets ``entity.version`` to the new value (normally ``n + 1``).
- ``add`` inserts a new entity and raises ``ConcurrencyConflict`` when the key
  already exists.
"""

from typing import Optional, Protocol

from ..schemas.domain import (
    ApprovalCase,
    ApprovalPolicy,
    CaseStatus,
    CriticalActionType,
    RequestWorkflowState,
    WorkflowDefinition,
)


class ApprovalPolicyRepository(Protocol):
    """Persist approval policies, one per critical action type."""

    async def get(self, action_type: CriticalActionType) -> Optional[ApprovalPolicy]:
        """
        Fetch the configured policy.

        Args:
            action_type: The critical action type.

        Returns:
            The policy, or None when nothing is configured.
        """
        ...

    async def upsert(self, policy: ApprovalPolicy) -> None:
        """Insert or replace the policy of ``policy.action_type``."""
        ...

    async def list(self) -> list[ApprovalPolicy]:
        """Return every configured policy."""
        ...


class ApprovalCaseRepository(Protocol):
    """Persist and query approval cases."""

    async def add(self, case: ApprovalCase) -> None:
        """
        Insert a new case.

        Raises:
            ConcurrencyConflict: If a case with the same id already exists.
        """
        ...

    async def get(self, case_id: str) -> Optional[ApprovalCase]:
        """Return the case or None."""
        ...

    async def save(self, case: ApprovalCase, *, expected_version: int) -> None:
        """
        Replace a stored case if its version is still ``expected_version``.

        Raises:
            ConcurrencyConflict: If the stored version moved or the case vanished.
        """
        ...

    async def list_by_status(self, status: CaseStatus) -> list[ApprovalCase]:
        """Return cases in ``status`` ordered by deadline."""
        ...

    async def count_by_status(self) -> dict[CaseStatus, int]:
        """Return the number of cases for each status present."""
        ...


class WorkflowDefinitionRepository(Protocol):
    """Persist workflow definitions, every version of each benefit type."""

    async def get(self, definition_id: str, version: Optional[int] = None) -> Optional[WorkflowDefinition]:
        """Return ``version`` of the definition, or its latest version when ``version`` is None."""
        ...

    async def upsert(self, definition: WorkflowDefinition) -> None:
        """Store ``definition`` under its (id, version); other versions are kept."""
        ...


class WorkflowStateRepository(Protocol):
    """Persist the workflow state of benefit requests."""

    async def add(self, state: RequestWorkflowState) -> None:
        """
        Insert the state of a newly started request.

        Raises:
            ConcurrencyConflict: If the request already has a state.
        """
        ...

    async def get(self, request_id: str) -> Optional[RequestWorkflowState]: ...

    async def save(self, state: RequestWorkflowState, *, expected_version: int) -> None:
        """
        Replace a stored state if its version is still ``expected_version``.

        Raises:
            ConcurrencyConflict: If the stored version moved or the state vanished.
        """
        ...

    async def list_with_deadline(self) -> list[RequestWorkflowState]:
        """Return states that carry a stage deadline, earliest first."""
        ...
