"""Approval policy validation.

Rules enforced when a policy is stored and again when a case is opened
against a concrete approver pool.
"""

from __future__ import annotations

from typing import Optional

from ..errors import InvalidConfiguration
from ..schemas.domain import ApprovalPolicy, ApprovalStrategy


def validate_policy(policy: ApprovalPolicy, pool_size: Optional[int] = None) -> None:
    """
    Check that ``policy`` is internally consistent and, when ``pool_size`` is
    given, that its quorum can be reached by that many approvers.

    Raises:
        InvalidConfiguration: On the first violated rule.
    """
    name = policy.action_type.value
    if policy.min_approvals < 1:
        raise InvalidConfiguration(f"Policy '{name}': min_approvals must be at least 1, got {policy.min_approvals}")
    if policy.time_limit_hours < 1:
        raise InvalidConfiguration(
            f"Policy '{name}': time_limit_hours must be at least 1, got {policy.time_limit_hours}"
        )
    if policy.strategy is ApprovalStrategy.MAJORITY and policy.min_approvals < 2:
        raise InvalidConfiguration(f"Policy '{name}': MAJORITY requires min_approvals of at least 2")
    if pool_size is not None and policy.min_approvals > pool_size:
        raise InvalidConfiguration(
            f"Policy '{name}': min_approvals={policy.min_approvals} can never be reached "
            f"with {pool_size} eligible approver(s)"
        )
