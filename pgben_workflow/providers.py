"""Collaborator protocols consumed by the engines.

The core never resolves users, roles or holidays on its own. It depends on
the small, runtime-checkable protocols below; deployments wire in providers
backed by their identity service and calendar, while tests and local wiring
use the static, mapping-backed implementations.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, Mapping, Optional, Protocol, runtime_checkable

from .schemas.domain import CriticalActionType


@runtime_checkable
class AuthorizationProvider(Protocol):
    """Resolve who may approve an action and which roles a user holds."""

    def eligible_approvers(self, action_type: CriticalActionType) -> set[str]:
        """Return the user ids allowed to vote on cases of ``action_type``."""
        ...

    def roles_of(self, user_id: str) -> set[str]:
        """Return the role ids held by ``user_id`` (empty for unknown users)."""
        ...


@runtime_checkable
class HolidayCalendar(Protocol):
    """Answer whether a calendar date is a holiday."""

    def is_holiday(self, day: date) -> bool: ...


class StaticAuthorizationProvider(AuthorizationProvider):
    """
    Authorization provider backed by in-memory mappings.

    Approvers can be granted per action type directly, or through roles: a
    user holding any role listed in ``approver_roles[action_type]`` is
    eligible as well.
    """

    def __init__(
        self,
        approvers: Optional[Mapping[CriticalActionType, Iterable[str]]] = None,
        roles: Optional[Mapping[str, Iterable[str]]] = None,
        approver_roles: Optional[Mapping[CriticalActionType, Iterable[str]]] = None,
    ) -> None:
        self._approvers = {k: set(v) for k, v in (approvers or {}).items()}
        self._roles = {k: set(v) for k, v in (roles or {}).items()}
        self._approver_roles = {k: set(v) for k, v in (approver_roles or {}).items()}

    def eligible_approvers(self, action_type: CriticalActionType) -> set[str]:
        pool = set(self._approvers.get(action_type, set()))
        wanted = self._approver_roles.get(action_type)
        if wanted:
            pool.update(user for user, held in self._roles.items() if held & wanted)
        return pool

    def roles_of(self, user_id: str) -> set[str]:
        return set(self._roles.get(user_id, set()))


class StaticHolidayCalendar(HolidayCalendar):
    """Holiday calendar backed by a fixed set of dates."""

    def __init__(self, holidays: Iterable[date] = ()) -> None:
        self._holidays = frozenset(holidays)

    def is_holiday(self, day: date) -> bool:
        return day in self._holidays
