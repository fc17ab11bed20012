"""Quorum resolution rules.

``evaluate`` is a pure function of the policy snapshot, the size of the
eligible pool (fixed when the case was opened) and the votes cast so far. It
returns the terminal status the case must move to, or None while the outcome
is still open.

Strategies:

- ``ANY_ONE``: the first REJECT rejects; ``min_approvals`` APPROVE votes
  (normally one) approve.
- ``MAJORITY``: approves once approvals reach ``min_approvals`` and outnumber
  rejections; rejects once that can no longer happen with the approvers who
  have not voted yet.
- ``UNANIMOUS``: any REJECT rejects; approves when every eligible approver
  approved.
"""

from __future__ import annotations

from typing import Optional

from ..schemas.domain import ApprovalCase, ApprovalPolicy, ApprovalStrategy, CaseStatus


def evaluate_counts(
    policy: ApprovalPolicy,
    pool_size: int,
    approvals: int,
    rejections: int,
) -> Optional[CaseStatus]:
    remaining = max(pool_size - approvals - rejections, 0)
    quorum_unreachable = approvals + remaining < policy.min_approvals

    if policy.strategy is ApprovalStrategy.ANY_ONE:
        if rejections > 0 or quorum_unreachable:
            return CaseStatus.REJECTED
        if approvals >= policy.min_approvals:
            return CaseStatus.APPROVED
        return None

    if policy.strategy is ApprovalStrategy.MAJORITY:
        if approvals >= policy.min_approvals and approvals > rejections:
            return CaseStatus.APPROVED
        if quorum_unreachable or rejections > remaining + approvals:
            return CaseStatus.REJECTED
        if remaining == 0:
            # everyone voted and approvals do not outnumber rejections
            return CaseStatus.REJECTED
        return None

    if policy.strategy is ApprovalStrategy.UNANIMOUS:
        if rejections > 0 or quorum_unreachable:
            return CaseStatus.REJECTED
        if approvals == pool_size and approvals >= policy.min_approvals:
            return CaseStatus.APPROVED
        return None

    raise ValueError(f"Unknown approval strategy: {policy.strategy}")


def evaluate(case: ApprovalCase) -> Optional[CaseStatus]:
    """Evaluate ``case`` against its own policy snapshot and approver pool."""
    return evaluate_counts(case.policy, len(case.eligible_approvers), case.approvals, case.rejections)
