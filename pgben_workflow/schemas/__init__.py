"""Domain schemas shared by the engines, the stores and the repositories."""

from .base import BaseSchema, FrozenSchema
from .domain import (
    ApprovalCase,
    ApprovalPolicy,
    ApprovalStrategy,
    ApprovalSummary,
    CaseStatus,
    CriticalActionType,
    HistoryEntry,
    NotificationEvent,
    NotificationEventType,
    RequestWorkflowState,
    Transition,
    Vote,
    VoteDecision,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowStage,
)

__all__ = [
    "ApprovalCase",
    "ApprovalPolicy",
    "ApprovalStrategy",
    "ApprovalSummary",
    "BaseSchema",
    "CaseStatus",
    "CriticalActionType",
    "FrozenSchema",
    "HistoryEntry",
    "NotificationEvent",
    "NotificationEventType",
    "RequestWorkflowState",
    "Transition",
    "Vote",
    "VoteDecision",
    "WorkflowAction",
    "WorkflowDefinition",
    "WorkflowStage",
]
