from __future__ import annotations

"""Escalation scheduler.

``EscalationScheduler.tick`` is meant to be invoked at a fixed interval by an
external timer (or by ``run``):

- PENDING approval cases past their deadline are expired through
  ``ApprovalEngine.expire``; a case resolved by a concurrent vote in the
  meantime is left alone.
- PENDING cases whose deadline falls within the due-soon window get one
  ``case.due_soon`` reminder each.
- Workflow states past their stage deadline get a ``stage.overdue``
  notification. Workflow state is never mutated here; only a human action
  moves an overdue request forward.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Set

from ..approval.engine import SYSTEM_ACTOR, ApprovalEngine
from ..calendar import BusinessCalendar
from ..clock import as_utc, utc_now
from ..errors import ConcurrencyConflict
from ..notifications import NotificationDispatcher, dispatch
from ..schemas.domain import ApprovalSummary, CaseStatus, NotificationEvent, NotificationEventType
from ..workflow.engine import RequestWorkflowEngine

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """Outcome of one scheduler tick."""

    at: datetime
    expired: List[str] = field(default_factory=list)
    already_resolved: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    due_soon: List[str] = field(default_factory=list)
    overdue: List[str] = field(default_factory=list)
    summary: Optional[ApprovalSummary] = None


class EscalationScheduler:
    def __init__(
        self,
        approvals: ApprovalEngine,
        workflows: RequestWorkflowEngine,
        calendar: BusinessCalendar,
        *,
        notifier: Optional[NotificationDispatcher] = None,
        due_soon_hours: float = 24.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._approvals = approvals
        self._workflows = workflows
        self._calendar = calendar
        self._notifier = notifier
        self._due_soon = timedelta(hours=due_soon_hours)
        self._clock = clock
        self._warned: Set[str] = set()

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Run one escalation pass at ``now`` (the clock when omitted; naive values are taken as UTC)."""
        now = as_utc(now if now is not None else self._clock())
        report = TickReport(at=now)

        pending = await self._approvals.list_pending()
        for case in pending:
            if case.deadline < now:
                try:
                    result = await self._approvals.expire(case.id, now)
                except ConcurrencyConflict:
                    logger.warning(f"Expiry of case {case.code} lost a race with another writer; retrying next tick")
                    report.conflicts.append(case.id)
                    continue
                # a vote may have landed since the scan; only this tick's expiry counts
                if (
                    result.status is CaseStatus.EXPIRED
                    and result.resolved_at == now
                    and result.resolved_by == SYSTEM_ACTOR
                ):
                    report.expired.append(case.id)
                else:
                    report.already_resolved.append(case.id)
            elif case.deadline - now <= self._due_soon and case.id not in self._warned:
                self._warned.add(case.id)
                report.due_soon.append(case.id)
                await dispatch(
                    self._notifier,
                    NotificationEvent(
                        type=NotificationEventType.case_due_soon,
                        subject_id=case.id,
                        occurred_at=now,
                        payload={
                            "code": case.code,
                            "action_type": case.action_type.value,
                            "deadline": case.deadline.isoformat(),
                            "hours_left": round((case.deadline - now).total_seconds() / 3600, 2),
                            "waiting_on": [a for a in case.eligible_approvers if case.vote_of(a) is None],
                        },
                    ),
                )
        # forget reminders for cases that are no longer pending
        self._warned.intersection_update(c.id for c in pending if c.id not in report.expired)

        for state in await self._workflows.list_overdue(now):
            report.overdue.append(state.request_id)
            await dispatch(
                self._notifier,
                NotificationEvent(
                    type=NotificationEventType.stage_overdue,
                    subject_id=state.request_id,
                    occurred_at=now,
                    payload={
                        "workflow_definition_id": state.workflow_definition_id,
                        "stage": state.current_stage.value,
                        "stage_deadline": state.stage_deadline.isoformat(),
                        "business_days_late": self._calendar.business_days_between(state.stage_deadline, now),
                    },
                ),
            )

        report.summary = await self._approvals.summary()
        logger.info(
            f"Escalation tick at {now.isoformat()}: expired={len(report.expired)} "
            f"already_resolved={len(report.already_resolved)} conflicts={len(report.conflicts)} "
            f"due_soon={len(report.due_soon)} overdue_stages={len(report.overdue)} "
            f"pending={report.summary.pending}"
        )
        return report

    async def run(self, interval_seconds: float, stop_event: Optional[asyncio.Event] = None) -> None:
        """Call ``tick`` every ``interval_seconds`` until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Escalation scheduler started (interval={interval_seconds}s)")
        while not stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Escalation tick failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Escalation scheduler stopped")
