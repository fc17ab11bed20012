from __future__ import annotations

"""Approval case engine.

``ApprovalEngine`` owns the lifecycle of approval cases for critical actions:

- ``open`` resolves the policy, snapshots it together with the eligible
  approver pool and persists a PENDING case (or an APPROVED one when the
  policy is inactive, i.e. bypassed).
- ``cast_vote`` records or replaces a vote and applies the quorum rules from
  ``approval.resolution`` in the same locked read-decide-write unit.
- ``cancel`` and ``expire`` move a PENDING case to CANCELLED / EXPIRED.

Every mutation runs under a per-case ``asyncio.Lock`` and is persisted with a
compare-and-swap on ``version``; the working copy is only written back once
all checks have passed, so a failing call never leaves partial state.
Notifications go out after the save, outside the lock.
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Hashable, Optional, Tuple, Union

from ..clock import as_utc, utc_now
from ..errors import DuplicatePendingCase, Forbidden, InvalidState, NotFound
from ..locks import KeyedLock
from ..notifications import NotificationDispatcher, dispatch
from ..policy.store import ApprovalPolicyStore
from ..policy.validation import validate_policy
from ..providers import AuthorizationProvider
from ..repos.interfaces import ApprovalCaseRepository
from ..schemas.domain import (
    ApprovalCase,
    ApprovalSummary,
    CaseStatus,
    CriticalActionType,
    NotificationEvent,
    NotificationEventType,
    Vote,
    VoteDecision,
)
from .resolution import evaluate

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

_BASE36 = string.digits + string.ascii_uppercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_case_code() -> str:
    """Human-readable case code: ``SOL-<base36 epoch ms>-<6 random base36 chars>``."""
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"SOL-{_base36(millis)}-{suffix}"


def _parse_action_type(action_type: Union[CriticalActionType, str]) -> CriticalActionType:
    try:
        return CriticalActionType(action_type)
    except ValueError:
        raise NotFound("CriticalActionType", str(action_type)) from None


def _item_key(
    action_type: CriticalActionType, requester_id: str, payload: Dict[str, Any]
) -> Tuple[Hashable, ...]:
    params = payload.get("params")
    if isinstance(params, dict) and params.get("id") is not None:
        return (action_type.value, "item", str(params["id"]))
    return (action_type.value, "requester", requester_id)


@dataclass(frozen=True)
class ApprovalDeps:
    """Dependency bundle for ``ApprovalEngine``."""

    cases: ApprovalCaseRepository
    policies: ApprovalPolicyStore
    authorization: AuthorizationProvider
    notifier: Optional[NotificationDispatcher] = None


class ApprovalEngine:
    """Open, vote on, cancel and expire approval cases."""

    def __init__(
        self,
        deps: ApprovalDeps,
        *,
        clock: Callable[[], datetime] = utc_now,
        code_factory: Callable[[], str] = generate_case_code,
    ) -> None:
        self._deps = deps
        self._clock = clock
        self._code_factory = code_factory
        self._case_locks = KeyedLock()
        self._open_locks = KeyedLock()

    async def open(
        self,
        action_type: Union[CriticalActionType, str],
        requester_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ApprovalCase:
        """
        Open an approval case for a critical action.

        Args:
            action_type: The critical action being gated.
            requester_id: The user asking to perform the action.
            payload: Opaque action data; ``payload["params"]["id"]`` identifies
                the affected item when present.

        Returns:
            The persisted case: PENDING, or APPROVED when the policy is inactive.

        Raises:
            NotFound: If ``action_type`` is not in the critical action catalog.
            DuplicatePendingCase: If the same item already has a PENDING case.
            InvalidConfiguration: If the policy quorum cannot be met by the pool.
        """
        action_type = _parse_action_type(action_type)
        payload = dict(payload or {})
        policy = await self._deps.policies.resolve(action_type)
        key = _item_key(action_type, requester_id, payload)

        async with self._open_locks.hold(key):
            for existing in await self._deps.cases.list_by_status(CaseStatus.PENDING):
                if existing.action_type == action_type and _item_key(
                    existing.action_type, existing.requester_id, existing.payload
                ) == key:
                    raise DuplicatePendingCase(action_type.value, existing.code)

            now = self._clock()
            deadline = now + timedelta(hours=policy.time_limit_hours)

            if not policy.active:
                case = ApprovalCase(
                    code=self._code_factory(),
                    action_type=action_type,
                    requester_id=requester_id,
                    payload=payload,
                    status=CaseStatus.APPROVED,
                    opened_at=now,
                    deadline=deadline,
                    policy=policy,
                    resolved_at=now,
                    resolved_by=SYSTEM_ACTOR,
                )
                await self._deps.cases.add(case)
                logger.info(f"Approval bypassed for {action_type.value}: case {case.code} auto-approved")
                event_type = NotificationEventType.case_resolved
            else:
                pool = set(self._deps.authorization.eligible_approvers(action_type))
                if not policy.allow_self_approval:
                    pool.discard(requester_id)
                validate_policy(policy, pool_size=len(pool))
                case = ApprovalCase(
                    code=self._code_factory(),
                    action_type=action_type,
                    requester_id=requester_id,
                    payload=payload,
                    opened_at=now,
                    deadline=deadline,
                    eligible_approvers=sorted(pool),
                    policy=policy,
                )
                await self._deps.cases.add(case)
                logger.info(
                    f"Approval case {case.code} opened for {action_type.value} by {requester_id}: "
                    f"strategy={policy.strategy.value} min_approvals={policy.min_approvals} "
                    f"pool={len(pool)} deadline={deadline.isoformat()}"
                )
                event_type = NotificationEventType.case_opened

        await self._notify(event_type, case, now, auto_approved=not policy.active)
        return case

    async def cast_vote(
        self,
        case_id: str,
        approver_id: str,
        decision: Union[VoteDecision, str],
        comment: Optional[str] = None,
    ) -> ApprovalCase:
        """
        Record ``approver_id``'s vote and resolve the case when the quorum rules say so.

        A second vote from the same approver replaces the first one.

        Raises:
            NotFound: Unknown case.
            InvalidState: The case is no longer PENDING.
            Forbidden: The approver is not in the case's eligible pool.
            ConcurrencyConflict: Another writer updated the case first.
        """
        decision = VoteDecision(decision)
        async with self._case_locks.hold(case_id):
            current = await self.get(case_id)
            if current.status is not CaseStatus.PENDING:
                logger.debug(f"Vote by {approver_id} on {current.code} refused: case is {current.status.value}")
                raise InvalidState(f"Approval case {current.code} is {current.status.value}; voting is closed")
            if approver_id not in current.eligible_approvers:
                logger.warning(f"Vote by {approver_id} on {current.code} refused: not an eligible approver")
                raise Forbidden(f"User '{approver_id}' is not an eligible approver for case {current.code}")

            now = self._clock()
            working = current.model_copy(deep=True)
            vote = Vote(approver_id=approver_id, decision=decision, cast_at=now, comment=comment)
            replaced = False
            for idx, previous in enumerate(working.votes):
                if previous.approver_id == approver_id:
                    working.votes[idx] = vote
                    replaced = True
                    break
            if not replaced:
                working.votes.append(vote)

            outcome = evaluate(working)
            if outcome is not None:
                working.status = outcome
                working.resolved_at = now
                working.resolved_by = approver_id
            working.version = current.version + 1
            await self._deps.cases.save(working, expected_version=current.version)

        logger.debug(
            f"Vote {decision.value} by {approver_id} on {working.code} "
            f"({'replaced' if replaced else 'new'}; approvals={working.approvals} rejections={working.rejections})"
        )
        if outcome is not None:
            logger.info(f"Approval case {working.code} resolved {outcome.value} by vote of {approver_id}")
            await self._notify(NotificationEventType.case_resolved, working, now)
        return working

    async def cancel(self, case_id: str, actor_id: str) -> ApprovalCase:
        """
        Withdraw a PENDING case.

        Raises:
            NotFound: Unknown case.
            InvalidState: The case is already terminal.
        """
        async with self._case_locks.hold(case_id):
            current = await self.get(case_id)
            if current.status is not CaseStatus.PENDING:
                raise InvalidState(f"Approval case {current.code} is {current.status.value}; it cannot be cancelled")
            now = self._clock()
            working = current.model_copy(deep=True)
            working.status = CaseStatus.CANCELLED
            working.resolved_at = now
            working.resolved_by = actor_id
            working.version = current.version + 1
            await self._deps.cases.save(working, expected_version=current.version)

        logger.info(f"Approval case {working.code} cancelled by {actor_id}")
        await self._notify(NotificationEventType.case_cancelled, working, now)
        return working

    async def expire(self, case_id: str, now: Optional[datetime] = None) -> ApprovalCase:
        """
        Expire a PENDING case whose deadline has passed.

        Terminal cases, and PENDING cases still within their deadline, are
        returned unchanged; this is never an error.
        """
        async with self._case_locks.hold(case_id):
            current = await self.get(case_id)
            now = as_utc(now if now is not None else self._clock())
            if current.status is not CaseStatus.PENDING:
                logger.debug(f"Expiry of {current.code} skipped: already {current.status.value}")
                return current
            if now <= current.deadline:
                logger.debug(f"Expiry of {current.code} skipped: deadline {current.deadline.isoformat()} not reached")
                return current
            working = current.model_copy(deep=True)
            working.status = CaseStatus.EXPIRED
            working.resolved_at = now
            working.resolved_by = SYSTEM_ACTOR
            working.version = current.version + 1
            await self._deps.cases.save(working, expected_version=current.version)

        logger.info(f"Approval case {working.code} expired (deadline {working.deadline.isoformat()})")
        await self._notify(NotificationEventType.case_expired, working, now)
        return working

    async def get(self, case_id: str) -> ApprovalCase:
        case = await self._deps.cases.get(case_id)
        if case is None:
            raise NotFound("ApprovalCase", case_id)
        return case

    async def requires_approval(self, action_type: Union[CriticalActionType, str]) -> bool:
        """
        False only when the action's policy is configured and inactive.

        Raises:
            NotFound: ``action_type`` is not in the critical action catalog.
        """
        action_type = _parse_action_type(action_type)
        try:
            policy = await self._deps.policies.get(action_type)
        except NotFound:
            return True
        return policy.active

    async def list_pending(self) -> list[ApprovalCase]:
        return await self._deps.cases.list_by_status(CaseStatus.PENDING)

    async def list_pending_for_approver(self, approver_id: str) -> list[ApprovalCase]:
        """PENDING cases ``approver_id`` may still vote on, earliest deadline first."""
        return [
            case
            for case in await self.list_pending()
            if approver_id in case.eligible_approvers and case.vote_of(approver_id) is None
        ]

    async def summary(self) -> ApprovalSummary:
        counts = await self._deps.cases.count_by_status()
        return ApprovalSummary(
            total=sum(counts.values()),
            pending=counts.get(CaseStatus.PENDING, 0),
            approved=counts.get(CaseStatus.APPROVED, 0),
            rejected=counts.get(CaseStatus.REJECTED, 0),
            expired=counts.get(CaseStatus.EXPIRED, 0),
            cancelled=counts.get(CaseStatus.CANCELLED, 0),
        )

    async def _notify(
        self, event_type: NotificationEventType, case: ApprovalCase, at: datetime, **extra: Any
    ) -> None:
        payload: Dict[str, Any] = {
            "code": case.code,
            "action_type": case.action_type.value,
            "status": case.status.value,
            "requester_id": case.requester_id,
            "deadline": case.deadline.isoformat(),
        }
        payload.update(extra)
        await dispatch(
            self._deps.notifier,
            NotificationEvent(type=event_type, subject_id=case.id, occurred_at=at, payload=payload),
        )
