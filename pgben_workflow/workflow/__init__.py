"""Data-driven staged workflow for benefit requests."""

from .definitions import WorkflowDefinitionStore, default_benefit_workflow, validate_definition
from .engine import RequestWorkflowEngine, WorkflowDeps

__all__ = [
    "RequestWorkflowEngine",
    "WorkflowDefinitionStore",
    "WorkflowDeps",
    "default_benefit_workflow",
    "validate_definition",
]
