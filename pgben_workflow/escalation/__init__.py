"""Periodic expiry of approval cases and overdue-stage notifications."""

from .scheduler import EscalationScheduler, TickReport

__all__ = ["EscalationScheduler", "TickReport"]
