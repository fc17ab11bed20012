from __future__ import annotations

"""Workflow definitions: storage, validation and the standard benefit workflow.

A ``WorkflowDefinition`` is data: the stages of a benefit type, the
transitions between them (with the roles allowed to take each one) and the
SLA of each stage in business days. The engine never hard-codes a stage
graph; it only interprets a registered definition.
"""

import logging
from collections import Counter
from typing import Dict, Optional

from ..errors import InvalidConfiguration, NotFound
from ..repos.interfaces import WorkflowDefinitionRepository
from ..schemas.domain import Transition, WorkflowAction, WorkflowDefinition, WorkflowStage

logger = logging.getLogger(__name__)

ROLE_ADMIN = "ADMIN"
ROLE_GESTOR = "GESTOR"
ROLE_COORDENADOR = "COORDENADOR"
ROLE_TECNICO = "TECNICO"
ROLE_ASSISTENTE_SOCIAL = "ASSISTENTE_SOCIAL"

DEFAULT_SLA_BY_STAGE: Dict[WorkflowStage, int] = {
    WorkflowStage.ABERTA: 2,
    WorkflowStage.EM_ANALISE: 5,
    WorkflowStage.PENDENTE: 10,
    WorkflowStage.APROVADA: 3,
    WorkflowStage.LIBERADA: 5,
}


def validate_definition(definition: WorkflowDefinition, *, require_cancel_everywhere: bool = False) -> None:
    """
    Reject definitions that would let a request get stuck or escape a terminal stage.

    Raises:
        InvalidConfiguration: On the first violated rule.
    """
    name = definition.id
    stages = set(definition.stages)
    if not stages:
        raise InvalidConfiguration(f"Workflow '{name}': no stages declared")
    duplicated = [s.value for s, n in Counter(definition.stages).items() if n > 1]
    if duplicated:
        raise InvalidConfiguration(f"Workflow '{name}': duplicated stages {duplicated}")
    if definition.initial_stage not in stages:
        raise InvalidConfiguration(f"Workflow '{name}': initial stage '{definition.initial_stage.value}' is not declared")
    unknown_terminal = [s.value for s in definition.terminal_stages if s not in stages]
    if unknown_terminal:
        raise InvalidConfiguration(f"Workflow '{name}': unknown terminal stages {unknown_terminal}")

    seen = set()
    for t in definition.transitions:
        label = f"{t.from_stage.value} --{t.action.value}--> {t.to_stage.value}"
        if t.from_stage not in stages or t.to_stage not in stages:
            raise InvalidConfiguration(f"Workflow '{name}': transition {label} references an undeclared stage")
        if definition.is_terminal(t.from_stage):
            raise InvalidConfiguration(f"Workflow '{name}': transition {label} leaves a terminal stage")
        if (t.from_stage, t.action) in seen:
            raise InvalidConfiguration(
                f"Workflow '{name}': action '{t.action.value}' is mapped twice from '{t.from_stage.value}'"
            )
        seen.add((t.from_stage, t.action))

    for stage in definition.stages:
        if definition.is_terminal(stage):
            continue
        outbound = definition.transitions_from(stage)
        if not outbound:
            raise InvalidConfiguration(f"Workflow '{name}': non-terminal stage '{stage.value}' has no outbound transition")
        if require_cancel_everywhere and not any(t.action is WorkflowAction.CANCELAR for t in outbound):
            raise InvalidConfiguration(f"Workflow '{name}': stage '{stage.value}' has no '{WorkflowAction.CANCELAR.value}' action")

    for stage, days in definition.sla_by_stage.items():
        if stage not in stages:
            raise InvalidConfiguration(f"Workflow '{name}': SLA declared for unknown stage '{stage.value}'")
        if days < 0:
            raise InvalidConfiguration(f"Workflow '{name}': SLA of '{stage.value}' must not be negative")


def default_benefit_workflow(
    definition_id: str,
    *,
    sla_by_stage: Optional[Dict[WorkflowStage, int]] = None,
    version: int = 1,
) -> WorkflowDefinition:
    """Standard benefit request workflow.

    RASCUNHO -> ABERTA -> EM_ANALISE <-> PENDENTE -> APROVADA -> LIBERADA -> CONCLUIDA,
    with ``cancelar`` leading to CANCELADA from every non-terminal stage.
    """
    S, A = WorkflowStage, WorkflowAction
    operators = [ROLE_TECNICO, ROLE_ASSISTENTE_SOCIAL, ROLE_COORDENADOR, ROLE_GESTOR, ROLE_ADMIN]
    deciders = [ROLE_COORDENADOR, ROLE_GESTOR, ROLE_ADMIN]
    managers = [ROLE_GESTOR, ROLE_ADMIN]

    flow = [
        Transition(from_stage=S.RASCUNHO, action=A.SUBMETER, to_stage=S.ABERTA, roles=operators),
        Transition(from_stage=S.ABERTA, action=A.INICIAR_ANALISE, to_stage=S.EM_ANALISE, roles=operators),
        Transition(from_stage=S.EM_ANALISE, action=A.PENDENCIAR, to_stage=S.PENDENTE, roles=operators),
        Transition(from_stage=S.PENDENTE, action=A.RESOLVER_PENDENCIA, to_stage=S.EM_ANALISE, roles=operators),
        Transition(from_stage=S.EM_ANALISE, action=A.APROVAR, to_stage=S.APROVADA, roles=deciders),
        Transition(from_stage=S.APROVADA, action=A.LIBERAR, to_stage=S.LIBERADA, roles=managers),
        Transition(from_stage=S.LIBERADA, action=A.CONCLUIR, to_stage=S.CONCLUIDA, roles=operators),
    ]
    terminal = [S.CONCLUIDA, S.CANCELADA]
    stages = [S.RASCUNHO, S.ABERTA, S.EM_ANALISE, S.PENDENTE, S.APROVADA, S.LIBERADA, S.CONCLUIDA, S.CANCELADA]
    cancels = [
        Transition(from_stage=stage, action=A.CANCELAR, to_stage=S.CANCELADA, roles=deciders)
        for stage in stages
        if stage not in terminal
    ]
    return WorkflowDefinition(
        id=definition_id,
        version=version,
        stages=stages,
        initial_stage=S.RASCUNHO,
        terminal_stages=terminal,
        transitions=flow + cancels,
        sla_by_stage=dict(DEFAULT_SLA_BY_STAGE if sla_by_stage is None else sla_by_stage),
    )


class WorkflowDefinitionStore:
    """Lookup and administrative registration of workflow definitions.

    Definitions are versioned. A request is pinned to the version it was
    started on, so registering a new version never changes the stages, SLAs
    or permissions of requests already in flight. A registered version is
    immutable: changing a definition means registering a higher version.
    """

    def __init__(self, repository: WorkflowDefinitionRepository, *, require_cancel_everywhere: bool = True) -> None:
        self._repository = repository
        self._require_cancel_everywhere = require_cancel_everywhere

    async def get(self, definition_id: str, version: Optional[int] = None) -> WorkflowDefinition:
        """Return ``version`` of a definition, or its latest version."""
        definition = await self._repository.get(definition_id, version)
        if definition is None:
            key = definition_id if version is None else f"{definition_id} v{version}"
            raise NotFound("WorkflowDefinition", key)
        return definition

    async def register(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """
        Validate and persist ``definition`` as a new version.

        Re-registering an identical version is a no-op.

        Raises:
            InvalidConfiguration: The definition is invalid, its version is
                older than the latest one, or that version is already
                registered with different content.
        """
        validate_definition(definition, require_cancel_everywhere=self._require_cancel_everywhere)
        latest = await self._repository.get(definition.id)
        if latest is not None:
            if definition.version < latest.version:
                raise InvalidConfiguration(
                    f"Workflow '{definition.id}': version {definition.version} is older than "
                    f"the registered v{latest.version}"
                )
            if definition.version == latest.version:
                if definition != latest:
                    raise InvalidConfiguration(
                        f"Workflow '{definition.id}': v{definition.version} is already registered "
                        f"with different content; register it as a new version"
                    )
                return latest
        await self._repository.upsert(definition)
        logger.info(
            f"Workflow definition registered: {definition.id} v{definition.version} "
            f"({len(definition.stages)} stages, {len(definition.transitions)} transitions)"
        )
        return definition
