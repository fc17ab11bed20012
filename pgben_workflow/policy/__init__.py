"""Approval policy store and validation rules."""

from .store import ApprovalPolicyStore
from .validation import validate_policy

__all__ = ["ApprovalPolicyStore", "validate_policy"]
