"""Error types for the approval and workflow engines.

Defines a small hierarchy of exceptions raised by the stores and engines.
Every failure is local to the call that raised it: no partial state is ever
persisted before one of these is raised.
"""

from __future__ import annotations


class WorkflowCoreError(Exception):
    """Base error for all approval/workflow core exceptions."""

    retryable: bool = False


class NotFound(WorkflowCoreError):
    """Raised when a policy, definition, case or workflow state is absent."""

    def __init__(self, kind: str, key: object) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: '{key}'")


class InvalidState(WorkflowCoreError):
    """Raised when an operation needs a status the entity is not in."""


class DuplicatePendingCase(InvalidState):
    """Raised when a pending approval case already exists for the same item."""

    def __init__(self, action_type: str, existing_code: str) -> None:
        self.existing_code = existing_code
        super().__init__(
            f"A pending approval case already exists for action '{action_type}' (code: {existing_code})"
        )


class Forbidden(WorkflowCoreError):
    """Raised when an actor lacks eligibility or permission."""


class IllegalTransition(WorkflowCoreError):
    """Raised when an action has no mapping from the current stage."""

    def __init__(self, stage: str, action: str) -> None:
        self.stage = stage
        self.action = action
        super().__init__(f"No transition for action '{action}' from stage '{stage}'")


class ConcurrencyConflict(WorkflowCoreError):
    """Raised when another writer updated the entity first.

    The only error class a caller may retry, by repeating the whole
    read-decide-write sequence.
    """

    retryable = True

    def __init__(self, kind: str, key: object, expected_version: int) -> None:
        self.kind = kind
        self.key = key
        self.expected_version = expected_version
        super().__init__(f"{kind} '{key}' was modified concurrently (expected version {expected_version})")


class InvalidConfiguration(WorkflowCoreError):
    """Raised when a policy or workflow definition violates its invariants."""
