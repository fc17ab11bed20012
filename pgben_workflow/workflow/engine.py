from __future__ import annotations

"""Benefit request workflow engine.

``RequestWorkflowEngine`` moves a benefit request through the stages of its
workflow definition. Each transition is checked against the definition
(``IllegalTransition``) and the actor's roles (``Forbidden``) inside a
per-request lock, then persisted with a compare-and-swap on ``version``.
History is append-only: each successful transition adds exactly one entry
and never touches the previous ones.

A request stays on the definition version it was started on; registering a
newer version only affects requests started afterwards.

Stage deadlines are computed with the business calendar from the moment the
stage is entered. Terminal stages, and stages without an SLA, carry no
deadline.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Union

from ..calendar import BusinessCalendar
from ..clock import as_utc, utc_now
from ..errors import Forbidden, IllegalTransition, InvalidState, NotFound
from ..locks import KeyedLock
from ..notifications import NotificationDispatcher, dispatch
from ..repos.interfaces import WorkflowStateRepository
from ..schemas.domain import (
    HistoryEntry,
    NotificationEvent,
    NotificationEventType,
    RequestWorkflowState,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowStage,
)
from .definitions import WorkflowDefinitionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkflowDeps:
    """Dependency bundle for ``RequestWorkflowEngine``."""

    states: WorkflowStateRepository
    definitions: WorkflowDefinitionStore
    calendar: BusinessCalendar
    notifier: Optional[NotificationDispatcher] = None


class RequestWorkflowEngine:
    def __init__(self, deps: WorkflowDeps, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._deps = deps
        self._clock = clock
        self._locks = KeyedLock()

    def stage_deadline(
        self, definition: WorkflowDefinition, stage: WorkflowStage, entered_at: datetime
    ) -> Optional[datetime]:
        if definition.is_terminal(stage):
            return None
        days = definition.sla_by_stage.get(stage)
        if days is None:
            return None
        return self._deps.calendar.add_business_days(entered_at, days)

    async def start(
        self,
        request_id: str,
        definition_id: str,
        actor_id: str = "system",
        note: Optional[str] = None,
    ) -> RequestWorkflowState:
        """
        Put a benefit request in the initial stage of its workflow.

        Raises:
            NotFound: Unknown workflow definition.
            InvalidState: The request already has a workflow state.
        """
        definition = await self._deps.definitions.get(definition_id)
        async with self._locks.hold(request_id):
            if await self._deps.states.get(request_id) is not None:
                raise InvalidState(f"Workflow already started for request '{request_id}'")
            now = self._clock()
            initial = definition.initial_stage
            state = RequestWorkflowState(
                request_id=request_id,
                workflow_definition_id=definition.id,
                workflow_definition_version=definition.version,
                current_stage=initial,
                stage_entered_at=now,
                stage_deadline=self.stage_deadline(definition, initial, now),
                history=[HistoryEntry(to_stage=initial, actor_id=actor_id, at=now, note=note)],
            )
            await self._deps.states.add(state)

        logger.info(f"Workflow started for request {request_id}: {definition.id} v{definition.version} at stage {initial.value}")
        return state

    async def list_allowed_actions(self, request_id: str, actor_roles: Iterable[str]) -> set[WorkflowAction]:
        """Actions available from the current stage to an actor holding ``actor_roles``."""
        state = await self.get(request_id)
        definition = await self.definition_of(state)
        roles = set(actor_roles)
        return {t.action for t in definition.transitions_from(state.current_stage) if roles.intersection(t.roles)}

    async def apply_action(
        self,
        request_id: str,
        action: Union[WorkflowAction, str],
        actor_id: str,
        actor_roles: Iterable[str],
        note: Optional[str] = None,
    ) -> RequestWorkflowState:
        """
        Apply ``action`` to the request's current stage.

        Raises:
            NotFound: Unknown request or definition.
            IllegalTransition: ``action`` is not mapped from the current stage.
            Forbidden: None of ``actor_roles`` may take this transition.
            ConcurrencyConflict: Another writer updated the state first.
        """
        roles = set(actor_roles)
        async with self._locks.hold(request_id):
            current = await self.get(request_id)
            definition = await self.definition_of(current)
            try:
                parsed = WorkflowAction(action)
            except ValueError:
                raise IllegalTransition(current.current_stage.value, str(action)) from None
            transition = definition.find_transition(current.current_stage, parsed)
            if transition is None:
                logger.debug(
                    f"Request {request_id}: '{parsed.value}' not mapped from {current.current_stage.value}"
                )
                raise IllegalTransition(current.current_stage.value, parsed.value)
            if not roles.intersection(transition.roles):
                logger.warning(
                    f"Request {request_id}: {actor_id} with roles {sorted(roles)} may not "
                    f"'{parsed.value}' from {current.current_stage.value}"
                )
                raise Forbidden(
                    f"Roles {sorted(roles)} are not allowed to '{parsed.value}' from stage "
                    f"'{current.current_stage.value}'"
                )

            now = self._clock()
            working = current.model_copy(deep=True)
            working.current_stage = transition.to_stage
            working.stage_entered_at = now
            working.stage_deadline = self.stage_deadline(definition, transition.to_stage, now)
            working.history.append(
                HistoryEntry(
                    from_stage=current.current_stage,
                    to_stage=transition.to_stage,
                    action=parsed,
                    actor_id=actor_id,
                    at=now,
                    note=note,
                )
            )
            working.version = current.version + 1
            await self._deps.states.save(working, expected_version=current.version)

        logger.info(
            f"Request {request_id}: {current.current_stage.value} --{parsed.value}--> "
            f"{transition.to_stage.value} by {actor_id}"
        )
        await self._notify(
            NotificationEventType.stage_transitioned,
            working,
            now,
            from_stage=current.current_stage.value,
            action=parsed.value,
            actor_id=actor_id,
        )
        return working

    async def is_overdue(self, request_id: str, now: Optional[datetime] = None) -> bool:
        state = await self.get(request_id)
        return self._overdue(state, as_utc(now if now is not None else self._clock()))

    async def list_overdue(self, now: Optional[datetime] = None) -> list[RequestWorkflowState]:
        now = as_utc(now if now is not None else self._clock())
        return [s for s in await self._deps.states.list_with_deadline() if self._overdue(s, now)]

    async def get(self, request_id: str) -> RequestWorkflowState:
        state = await self._deps.states.get(request_id)
        if state is None:
            raise NotFound("RequestWorkflowState", request_id)
        return state

    async def definition_of(self, state: RequestWorkflowState) -> WorkflowDefinition:
        """The definition version ``state`` was started on."""
        return await self._deps.definitions.get(state.workflow_definition_id, state.workflow_definition_version)

    @staticmethod
    def _overdue(state: RequestWorkflowState, now: datetime) -> bool:
        # stage_deadline is only ever set on non-terminal stages
        return state.stage_deadline is not None and now > state.stage_deadline

    async def _notify(
        self, event_type: NotificationEventType, state: RequestWorkflowState, at: datetime, **extra: Any
    ) -> None:
        payload = {
            "workflow_definition_id": state.workflow_definition_id,
            "workflow_definition_version": state.workflow_definition_version,
            "stage": state.current_stage.value,
            "stage_deadline": state.stage_deadline.isoformat() if state.stage_deadline else None,
        }
        payload.update(extra)
        await dispatch(
            self._deps.notifier,
            NotificationEvent(type=event_type, subject_id=state.request_id, occurred_at=at, payload=payload),
        )

