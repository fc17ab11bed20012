"""Approval and benefit-request workflow core for PGBen.

Two engines live here:

- ``ApprovalEngine``: multi-approver cases gating critical actions (quorum
  strategies, deadlines, expiry).
- ``RequestWorkflowEngine``: data-driven staged workflow for benefit requests
  (role-gated transitions, business-day SLAs, append-only history).

``EscalationScheduler`` expires overdue cases and raises overdue-stage
notifications. Use ``pgben_workflow.factory.build_core`` to wire everything.
"""

from .errors import (
    ConcurrencyConflict,
    DuplicatePendingCase,
    Forbidden,
    IllegalTransition,
    InvalidConfiguration,
    InvalidState,
    NotFound,
    WorkflowCoreError,
)

__all__ = [
    "ConcurrencyConflict",
    "DuplicatePendingCase",
    "Forbidden",
    "IllegalTransition",
    "InvalidConfiguration",
    "InvalidState",
    "NotFound",
    "WorkflowCoreError",
]
