"""Multi-approver gate for critical actions."""

from .engine import ApprovalDeps, ApprovalEngine, generate_case_code
from .resolution import evaluate, evaluate_counts

__all__ = ["ApprovalDeps", "ApprovalEngine", "evaluate", "evaluate_counts", "generate_case_code"]
