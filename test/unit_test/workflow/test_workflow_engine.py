from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pgben_workflow.errors import Forbidden, IllegalTransition, InvalidState, NotFound
from pgben_workflow.factory import CoreServices
from pgben_workflow.notifications import CollectingDispatcher
from pgben_workflow.schemas.domain import (
    NotificationEventType,
    Transition,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowStage,
)
from pgben_workflow.workflow.definitions import default_benefit_workflow

S, A = WorkflowStage, WorkflowAction
STAFF = {"TECNICO"}
BOSS = {"GESTOR"}


@pytest.fixture
async def benefit(core: CoreServices) -> WorkflowDefinition:
    return await core.definitions.register(default_benefit_workflow("beneficio-eventual"))


@pytest.fixture
async def three_day_intake(core: CoreServices) -> WorkflowDefinition:
    definition = WorkflowDefinition(
        id="intake",
        stages=[S.ABERTA, S.EM_ANALISE, S.CANCELADA],
        initial_stage=S.ABERTA,
        terminal_stages=[S.CANCELADA],
        transitions=[
            Transition(from_stage=S.ABERTA, action=A.INICIAR_ANALISE, to_stage=S.EM_ANALISE, roles=["TECNICO"]),
            Transition(from_stage=S.ABERTA, action=A.CANCELAR, to_stage=S.CANCELADA, roles=["GESTOR"]),
            Transition(from_stage=S.EM_ANALISE, action=A.CANCELAR, to_stage=S.CANCELADA, roles=["GESTOR"]),
        ],
        sla_by_stage={S.ABERTA: 3, S.EM_ANALISE: 0},
    )
    return await core.definitions.register(definition)


@pytest.mark.asyncio
async def test_start_on_friday_with_three_day_sla_is_due_wednesday(
    core: CoreServices, three_day_intake: WorkflowDefinition
) -> None:
    state = await core.workflows.start("req-1", "intake")
    assert state.current_stage is S.ABERTA
    assert state.stage_deadline == datetime(2026, 1, 14, 10, 0, tzinfo=timezone.utc)
    assert len(state.history) == 1
    first = state.history[0]
    assert first.from_stage is None and first.action is None and first.to_stage is S.ABERTA
    assert first.actor_id == "system"


@pytest.mark.asyncio
async def test_stage_without_sla_has_no_deadline(core: CoreServices, benefit: WorkflowDefinition) -> None:
    state = await core.workflows.start("req-1", benefit.id, actor_id="U1", note="draft created")
    assert state.current_stage is S.RASCUNHO
    assert state.stage_deadline is None
    assert state.history[0].note == "draft created"


@pytest.mark.asyncio
async def test_zero_day_sla_is_due_immediately(core: CoreServices, three_day_intake, clock) -> None:
    await core.workflows.start("req-1", "intake")
    state = await core.workflows.apply_action("req-1", A.INICIAR_ANALISE, "U1", STAFF)
    assert state.stage_deadline == clock.now
    clock.advance(seconds=1)
    assert await core.workflows.is_overdue("req-1") is True


@pytest.mark.asyncio
async def test_start_twice_is_invalid_state(core: CoreServices, benefit: WorkflowDefinition) -> None:
    await core.workflows.start("req-1", benefit.id)
    with pytest.raises(InvalidState):
        await core.workflows.start("req-1", benefit.id)


@pytest.mark.asyncio
async def test_start_with_unknown_definition(core: CoreServices) -> None:
    with pytest.raises(NotFound):
        await core.workflows.start("req-1", "nope")


@pytest.mark.asyncio
async def test_illegal_transition_leaves_state_unchanged(core: CoreServices, benefit: WorkflowDefinition) -> None:
    before = await core.workflows.start("req-1", benefit.id)
    with pytest.raises(IllegalTransition):
        await core.workflows.apply_action("req-1", "aprovar", "U4", {"ADMIN"})
    after = await core.workflows.get("req-1")
    assert after.current_stage is S.RASCUNHO
    assert after == before


@pytest.mark.asyncio
async def test_unknown_action_string_is_illegal_transition(core: CoreServices, benefit: WorkflowDefinition) -> None:
    await core.workflows.start("req-1", benefit.id)
    with pytest.raises(IllegalTransition):
        await core.workflows.apply_action("req-1", "teleportar", "U4", {"ADMIN"})


@pytest.mark.asyncio
async def test_permission_enforced_then_granted(core: CoreServices, benefit: WorkflowDefinition) -> None:
    await core.workflows.start("req-1", benefit.id)
    await core.workflows.apply_action("req-1", A.SUBMETER, "U1", STAFF)
    await core.workflows.apply_action("req-1", A.INICIAR_ANALISE, "U1", STAFF)

    with pytest.raises(Forbidden):
        await core.workflows.apply_action("req-1", A.APROVAR, "U1", STAFF)
    assert (await core.workflows.get("req-1")).current_stage is S.EM_ANALISE

    state = await core.workflows.apply_action("req-1", A.APROVAR, "U1", STAFF | {"COORDENADOR"})
    assert state.current_stage is S.APROVADA


@pytest.mark.asyncio
async def test_history_grows_by_one_per_action_and_never_changes(
    core: CoreServices, benefit: WorkflowDefinition, clock
) -> None:
    state = await core.workflows.start("req-1", benefit.id)
    snapshots = [e.model_dump() for e in state.history]
    steps = [
        (A.SUBMETER, STAFF),
        (A.INICIAR_ANALISE, STAFF),
        (A.PENDENCIAR, STAFF),
        (A.RESOLVER_PENDENCIA, STAFF),
        (A.APROVAR, BOSS),
        (A.LIBERAR, BOSS),
        (A.CONCLUIR, STAFF),
    ]
    for n, (action, roles) in enumerate(steps, start=1):
        clock.advance(hours=1)
        state = await core.workflows.apply_action("req-1", action, "actor", roles, note=f"step {n}")
        assert len(state.history) == n + 1
        assert [e.model_dump() for e in state.history[:-1]] == snapshots
        snapshots.append(state.history[-1].model_dump())

    assert state.current_stage is S.CONCLUIDA
    assert state.stage_deadline is None
    assert state.history[-1].from_stage is S.LIBERADA
    assert state.history[-1].action is A.CONCLUIR


@pytest.mark.asyncio
async def test_terminal_stage_allows_nothing(core: CoreServices, benefit: WorkflowDefinition) -> None:
    await core.workflows.start("req-1", benefit.id)
    await core.workflows.apply_action("req-1", A.CANCELAR, "U3", BOSS)
    assert await core.workflows.list_allowed_actions("req-1", {"ADMIN", "GESTOR", "TECNICO"}) == set()
    with pytest.raises(IllegalTransition):
        await core.workflows.apply_action("req-1", A.SUBMETER, "U4", {"ADMIN"})


@pytest.mark.asyncio
async def test_list_allowed_actions_filters_by_role(core: CoreServices, benefit: WorkflowDefinition) -> None:
    await core.workflows.start("req-1", benefit.id)
    await core.workflows.apply_action("req-1", A.SUBMETER, "U1", STAFF)
    await core.workflows.apply_action("req-1", A.INICIAR_ANALISE, "U1", STAFF)

    assert await core.workflows.list_allowed_actions("req-1", STAFF) == {A.PENDENCIAR}
    assert await core.workflows.list_allowed_actions("req-1", {"COORDENADOR"}) == {
        A.PENDENCIAR,
        A.APROVAR,
        A.CANCELAR,
    }
    assert await core.workflows.list_allowed_actions("req-1", set()) == set()


@pytest.mark.asyncio
async def test_deadline_recomputed_from_transition_time(core: CoreServices, benefit: WorkflowDefinition, clock) -> None:
    await core.workflows.start("req-1", benefit.id)
    state = await core.workflows.apply_action("req-1", A.SUBMETER, "U1", STAFF)
    # ABERTA has a 2 business day SLA: Friday -> Tuesday
    assert state.stage_deadline == datetime(2026, 1, 13, 10, 0, tzinfo=timezone.utc)
    assert state.stage_entered_at == clock.now


@pytest.mark.asyncio
async def test_is_overdue(core: CoreServices, benefit: WorkflowDefinition, clock) -> None:
    await core.workflows.start("req-1", benefit.id)
    await core.workflows.apply_action("req-1", A.SUBMETER, "U1", STAFF)
    assert await core.workflows.is_overdue("req-1") is False
    assert await core.workflows.is_overdue("req-1", now=datetime(2026, 1, 13, 10, 1, tzinfo=timezone.utc)) is True


@pytest.mark.asyncio
async def test_transition_notification(core: CoreServices, benefit: WorkflowDefinition, notifier: CollectingDispatcher) -> None:
    await core.workflows.start("req-1", benefit.id)
    await core.workflows.apply_action("req-1", A.SUBMETER, "U1", STAFF)
    events = notifier.of_type(NotificationEventType.stage_transitioned)
    assert len(events) == 1
    assert events[0].subject_id == "req-1"
    assert events[0].payload["from_stage"] == "rascunho"
    assert events[0].payload["stage"] == "aberta"
    assert events[0].payload["actor_id"] == "U1"


@pytest.mark.asyncio
async def test_concurrent_conflicting_actions_apply_exactly_one(core: CoreServices, benefit: WorkflowDefinition) -> None:
    await core.workflows.start("req-1", benefit.id)
    await core.workflows.apply_action("req-1", A.SUBMETER, "U1", STAFF)
    await core.workflows.apply_action("req-1", A.INICIAR_ANALISE, "U1", STAFF)

    results = await asyncio.gather(
        core.workflows.apply_action("req-1", A.APROVAR, "U3", BOSS),
        core.workflows.apply_action("req-1", A.PENDENCIAR, "U3", BOSS),
        return_exceptions=True,
    )
    assert sum(1 for r in results if isinstance(r, IllegalTransition)) == 1
    state = await core.workflows.get("req-1")
    assert len(state.history) == 4


def _short_benefit_v2(definition_id: str) -> WorkflowDefinition:
    return WorkflowDefinition(
        id=definition_id,
        version=2,
        stages=[S.RASCUNHO, S.EM_ANALISE, S.CONCLUIDA, S.CANCELADA],
        initial_stage=S.RASCUNHO,
        terminal_stages=[S.CONCLUIDA, S.CANCELADA],
        transitions=[
            Transition(from_stage=S.RASCUNHO, action=A.SUBMETER, to_stage=S.EM_ANALISE, roles=["TECNICO"]),
            Transition(from_stage=S.EM_ANALISE, action=A.CONCLUIR, to_stage=S.CONCLUIDA, roles=["GESTOR"]),
            Transition(from_stage=S.RASCUNHO, action=A.CANCELAR, to_stage=S.CANCELADA, roles=["GESTOR"]),
            Transition(from_stage=S.EM_ANALISE, action=A.CANCELAR, to_stage=S.CANCELADA, roles=["GESTOR"]),
        ],
        sla_by_stage={S.EM_ANALISE: 4},
    )


@pytest.mark.asyncio
async def test_request_stays_on_its_definition_version(core: CoreServices, clock) -> None:
    await core.definitions.register(default_benefit_workflow("auxilio"))
    await core.workflows.start("R1", "auxilio")
    await core.workflows.apply_action("R1", A.SUBMETER, "U1", STAFF)

    # v2 drops the ABERTA stage R1 is sitting in
    await core.definitions.register(_short_benefit_v2("auxilio"))

    in_flight = await core.workflows.get("R1")
    assert in_flight.workflow_definition_version == 1
    assert in_flight.current_stage in (await core.workflows.definition_of(in_flight)).stages
    assert await core.workflows.list_allowed_actions("R1", BOSS) == {A.INICIAR_ANALISE, A.CANCELAR}
    state = await core.workflows.apply_action("R1", A.INICIAR_ANALISE, "U3", BOSS)
    # EM_ANALISE keeps the v1 SLA of 5 business days: Friday -> next Friday
    assert state.stage_deadline == clock.now + timedelta(days=7)

    fresh = await core.workflows.start("R2", "auxilio")
    assert fresh.workflow_definition_version == 2
    moved = await core.workflows.apply_action("R2", A.SUBMETER, "U1", STAFF)
    assert moved.current_stage is S.EM_ANALISE


@pytest.mark.asyncio
async def test_transition_notification_carries_definition_version(
    core: CoreServices, benefit: WorkflowDefinition, notifier: CollectingDispatcher
) -> None:
    await core.workflows.start("req-1", benefit.id)
    await core.workflows.apply_action("req-1", A.SUBMETER, "U1", STAFF)
    event = notifier.of_type(NotificationEventType.stage_transitioned)[0]
    assert event.payload["workflow_definition_version"] == benefit.version


@pytest.mark.asyncio
async def test_is_overdue_accepts_naive_now_as_utc(core: CoreServices, benefit: WorkflowDefinition) -> None:
    await core.workflows.start("req-1", benefit.id)
    await core.workflows.apply_action("req-1", A.SUBMETER, "U1", STAFF)
    assert await core.workflows.is_overdue("req-1", now=datetime(2026, 1, 13, 9, 59)) is False
    assert await core.workflows.is_overdue("req-1", now=datetime(2026, 1, 13, 10, 1)) is True
    assert [s.request_id for s in await core.workflows.list_overdue(datetime(2026, 1, 13, 10, 1))] == ["req-1"]
