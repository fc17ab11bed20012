"""Shared fixtures for the unit tests.

The engines take a ``clock`` callable; tests drive time with ``FakeClock``
instead of sleeping. The default start is Friday 2026-01-09 10:00 UTC.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from pgben_workflow.core.config import Settings
from pgben_workflow.factory import CoreServices, build_in_memory_core
from pgben_workflow.notifications import CollectingDispatcher
from pgben_workflow.providers import StaticAuthorizationProvider, StaticHolidayCalendar
from pgben_workflow.schemas.domain import CriticalActionType

FRIDAY = datetime(2026, 1, 9, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = FRIDAY) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> CollectingDispatcher:
    return CollectingDispatcher()


@pytest.fixture
def authorization() -> StaticAuthorizationProvider:
    return StaticAuthorizationProvider(
        approvers={
            CriticalActionType.DELETE_DOCUMENT: ["U1", "U2", "U3", "U4"],
            CriticalActionType.SUSPEND_BENEFIT: ["U1", "U2", "U3"],
            CriticalActionType.CHANGE_PERMISSION: ["U2", "U3", "U4"],
            CriticalActionType.CANCEL_REQUEST: ["U2", "U3"],
        },
        roles={
            "U1": ["TECNICO"],
            "U2": ["COORDENADOR"],
            "U3": ["GESTOR"],
            "U4": ["ADMIN"],
        },
    )


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        PGBEN_DUE_SOON_HOURS=24.0,
        PGBEN_DEFAULT_TIME_LIMIT_HOURS=72,
        PGBEN_DEFAULT_MIN_APPROVALS=1,
        PGBEN_POLICY_CACHE_TTL_SECONDS=300.0,
        PGBEN_HOLIDAYS="",
    )


@pytest.fixture
def core(
    authorization: StaticAuthorizationProvider,
    notifier: CollectingDispatcher,
    clock: FakeClock,
    test_settings: Settings,
) -> CoreServices:
    return build_in_memory_core(
        authorization=authorization,
        holidays=StaticHolidayCalendar(),
        notifier=notifier,
        config=test_settings,
        clock=clock,
    )
