"""Repository interfaces and implementations for approval/workflow persistence.

The repository layer is the persistence boundary for the engines.

Responsibilities
----------------

- Provide a small set of async repository interfaces (Protocols) that the
  engines and stores depend on.
- Persist:

  - approval policies (configuration, one per action type),
  - approval cases with their votes and policy snapshot,
  - workflow definitions (configuration, one per benefit type),
  - workflow states of benefit requests with their history.

Design notes
------------

The engines are written against interfaces so they can be used with:

- a SQL database (async SQLAlchemy implementation in ``repos.sql``),
- the in-memory implementation in ``repos.memory`` (tests, local wiring).

Both implementations enforce the same compare-and-swap rule on ``version``
for cases and workflow states.
"""

from .interfaces import (
    ApprovalCaseRepository,
    ApprovalPolicyRepository,
    WorkflowDefinitionRepository,
    WorkflowStateRepository,
)

__all__ = [
    "ApprovalPolicyRepository",
    "ApprovalCaseRepository",
    "WorkflowDefinitionRepository",
    "WorkflowStateRepository",
]
