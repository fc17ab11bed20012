from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Tuple

from ..core.config import DefaultPolicyConfig
from ..errors import NotFound
from ..repos.interfaces import ApprovalPolicyRepository
from ..schemas.domain import ApprovalPolicy, ApprovalStrategy, CriticalActionType
from .validation import validate_policy

logger = logging.getLogger(__name__)


class ApprovalPolicyStore:
    """Read-mostly access to approval policies, with a TTL cache.

    Returned policies are deep copies; callers may keep them (cases snapshot
    them) without affecting the cache.
    """

    def __init__(
        self,
        repository: ApprovalPolicyRepository,
        *,
        default: Optional[DefaultPolicyConfig] = None,
        cache_ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._repository = repository
        self._default = default or DefaultPolicyConfig()
        self._ttl = cache_ttl_seconds
        self._clock = clock
        self._cache: Dict[CriticalActionType, Tuple[ApprovalPolicy, float]] = {}

    async def get(self, action_type: CriticalActionType) -> ApprovalPolicy:
        """
        Return the configured policy for ``action_type``.

        Raises:
            NotFound: If no policy is configured.
        """
        cached = self._cache.get(action_type)
        if cached is not None:
            policy, fetched_at = cached
            if self._clock() - fetched_at < self._ttl:
                return policy.model_copy(deep=True)
            del self._cache[action_type]

        policy = await self._repository.get(action_type)
        if policy is None:
            raise NotFound("ApprovalPolicy", action_type.value)
        if self._ttl > 0:
            self._cache[action_type] = (policy, self._clock())
        return policy.model_copy(deep=True)

    async def resolve(self, action_type: CriticalActionType) -> ApprovalPolicy:
        """Return the configured policy, or the system default when none exists.

        An unconfigured action still requires approval; it never bypasses.
        """
        try:
            return await self.get(action_type)
        except NotFound:
            logger.debug(f"No approval policy for {action_type.value}; applying system default")
            return self.default_policy(action_type)

    def default_policy(self, action_type: CriticalActionType) -> ApprovalPolicy:
        return ApprovalPolicy(
            action_type=action_type,
            strategy=ApprovalStrategy.ANY_ONE,
            min_approvals=self._default.min_approvals,
            time_limit_hours=self._default.time_limit_hours,
            allow_self_approval=False,
            active=True,
            version=0,
        )

    async def put(self, policy: ApprovalPolicy) -> None:
        """Validate and persist ``policy`` (administrative update)."""
        validate_policy(policy)
        await self._repository.upsert(policy)
        self.invalidate(policy.action_type)
        logger.info(
            f"Approval policy stored: {policy.action_type.value} strategy={policy.strategy.value} "
            f"min_approvals={policy.min_approvals} active={policy.active} version={policy.version}"
        )

    def invalidate(self, action_type: Optional[CriticalActionType] = None) -> None:
        if action_type is None:
            self._cache.clear()
        else:
            self._cache.pop(action_type, None)
