from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import Field

from ..clock import utc_now
from .base import BaseSchema, FrozenSchema


class CriticalActionType(str, Enum):
    """Catalog of critical actions that may be gated by an approval case."""

    SUSPEND_BENEFIT = "SUSPENSAO_BENEFICIO"
    REACTIVATE_BENEFIT = "REATIVACAO_BENEFICIO"
    CANCEL_REQUEST = "CANCELAMENTO_SOLICITACAO"
    DELETE_BENEFICIARY = "EXCLUSAO_BENEFICIARIO"
    DELETE_DOCUMENT = "EXCLUSAO_DOCUMENTO"
    DELETE_RECORD = "EXCLUSAO_REGISTRO"
    CHANGE_CRITICAL_DATA = "ALTERACAO_DADOS_CRITICOS"
    CHANGE_BANK_DATA = "ALTERACAO_DADOS_BANCARIOS"
    CHANGE_BENEFIT_AMOUNT = "ALTERACAO_VALOR_BENEFICIO"
    CHANGE_PAYMENT_STATUS = "ALTERACAO_STATUS_PAGAMENTO"
    TRANSFER_BENEFIT = "TRANSFERENCIA_BENEFICIO"
    APPROVE_PAYMENT = "APROVACAO_PAGAMENTO"
    CHANGE_PERMISSION = "ALTERACAO_PERMISSAO"
    BLOCK_USER = "BLOQUEIO_USUARIO"
    UNBLOCK_USER = "DESBLOQUEIO_USUARIO"
    SYSTEM_CONFIGURATION = "CONFIGURACAO_SISTEMA"


class ApprovalStrategy(str, Enum):
    ANY_ONE = "ANY_ONE"
    MAJORITY = "MAJORITY"
    UNANIMOUS = "UNANIMOUS"


class CaseStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not CaseStatus.PENDING


class VoteDecision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class WorkflowStage(str, Enum):
    """Stages of a benefit request."""

    RASCUNHO = "rascunho"
    ABERTA = "aberta"
    EM_ANALISE = "em_analise"
    PENDENTE = "pendente"
    APROVADA = "aprovada"
    LIBERADA = "liberada"
    CONCLUIDA = "concluida"
    CANCELADA = "cancelada"


class WorkflowAction(str, Enum):
    """Actions an actor may apply to a benefit request."""

    SUBMETER = "submeter"
    INICIAR_ANALISE = "iniciar_analise"
    PENDENCIAR = "pendenciar"
    RESOLVER_PENDENCIA = "resolver_pendencia"
    APROVAR = "aprovar"
    LIBERAR = "liberar"
    CONCLUIR = "concluir"
    CANCELAR = "cancelar"


class NotificationEventType(str, Enum):
    case_opened = "case.opened"
    case_resolved = "case.resolved"
    case_expired = "case.expired"
    case_cancelled = "case.cancelled"
    case_due_soon = "case.due_soon"
    stage_transitioned = "stage.transitioned"
    stage_overdue = "stage.overdue"


# ---------------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------------


class ApprovalPolicy(BaseSchema):
    """
    Quorum rules configured for one critical action type.

    Range checks live in ``pgben_workflow.policy.validation`` so that a bad
    configuration surfaces as ``InvalidConfiguration`` instead of a pydantic
    validation error.
    """

    action_type: CriticalActionType
    strategy: ApprovalStrategy = ApprovalStrategy.ANY_ONE
    min_approvals: int = 1
    time_limit_hours: int = 72
    allow_self_approval: bool = False
    active: bool = True
    version: int = 1


class Vote(FrozenSchema):
    approver_id: str
    decision: VoteDecision
    cast_at: datetime = Field(default_factory=utc_now)
    comment: Optional[str] = None


class ApprovalCase(BaseSchema):
    """
    One multi-approver decision about a critical action.

    ``policy`` and ``eligible_approvers`` are snapshots taken when the case is
    opened; later configuration changes never affect an open case.
    ``version`` is the optimistic-lock counter maintained by the repositories.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    code: str
    action_type: CriticalActionType
    requester_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: CaseStatus = CaseStatus.PENDING
    opened_at: datetime = Field(default_factory=utc_now)
    deadline: datetime
    votes: List[Vote] = Field(default_factory=list)
    eligible_approvers: List[str] = Field(default_factory=list)
    policy: ApprovalPolicy
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    version: int = 1

    def vote_of(self, approver_id: str) -> Optional[Vote]:
        for vote in self.votes:
            if vote.approver_id == approver_id:
                return vote
        return None

    @property
    def approvals(self) -> int:
        return sum(1 for v in self.votes if v.decision is VoteDecision.APPROVE)

    @property
    def rejections(self) -> int:
        return sum(1 for v in self.votes if v.decision is VoteDecision.REJECT)


class ApprovalSummary(BaseSchema):
    """Case counts by status."""

    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    expired: int = 0
    cancelled: int = 0


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


class Transition(BaseSchema):
    """Edge of a workflow definition, with the roles allowed to take it."""

    from_stage: WorkflowStage
    action: WorkflowAction
    to_stage: WorkflowStage
    roles: List[str] = Field(default_factory=list)


class WorkflowDefinition(BaseSchema):
    id: str
    version: int = 1
    stages: List[WorkflowStage]
    initial_stage: WorkflowStage
    terminal_stages: List[WorkflowStage]
    transitions: List[Transition]
    sla_by_stage: Dict[WorkflowStage, int] = Field(default_factory=dict)

    def is_terminal(self, stage: WorkflowStage) -> bool:
        return stage in self.terminal_stages

    def find_transition(self, stage: WorkflowStage, action: WorkflowAction) -> Optional[Transition]:
        for transition in self.transitions:
            if transition.from_stage == stage and transition.action == action:
                return transition
        return None

    def transitions_from(self, stage: WorkflowStage) -> List[Transition]:
        return [t for t in self.transitions if t.from_stage == stage]


class HistoryEntry(FrozenSchema):
    from_stage: Optional[WorkflowStage] = None
    to_stage: WorkflowStage
    action: Optional[WorkflowAction] = None
    actor_id: str
    at: datetime = Field(default_factory=utc_now)
    note: Optional[str] = None


class RequestWorkflowState(BaseSchema):
    request_id: str
    workflow_definition_id: str
    workflow_definition_version: int = 1
    current_stage: WorkflowStage
    stage_entered_at: datetime
    stage_deadline: Optional[datetime] = None
    history: List[HistoryEntry] = Field(default_factory=list)
    version: int = 1


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationEvent(BaseSchema):
    type: NotificationEventType
    subject_id: str
    occurred_at: datetime = Field(default_factory=utc_now)
    payload: Dict[str, Any] = Field(default_factory=dict)
