from __future__ import annotations

"""Convenience factories for wiring the approval/workflow core.

``build_core`` assembles the stores, both engines and the escalation
scheduler from a repository bundle (``InMemoryRepoBundle`` or
``SqlRepoBundle``), an authorization provider and the settings model. The
intent is to keep application wiring and tests concise while still allowing
deployments to provide their own collaborators.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncEngine

from .approval.engine import ApprovalDeps, ApprovalEngine
from .calendar import BusinessCalendar
from .core.config import Settings, settings as default_settings
from .escalation.scheduler import EscalationScheduler
from .notifications import LoggingDispatcher, NotificationDispatcher
from .policy.store import ApprovalPolicyStore
from .providers import AuthorizationProvider, HolidayCalendar, StaticHolidayCalendar
from .repos.interfaces import (
    ApprovalCaseRepository,
    ApprovalPolicyRepository,
    WorkflowDefinitionRepository,
    WorkflowStateRepository,
)
from .repos.memory import build_memory_repos
from .repos.sql import build_sql_repos, create_all, create_engine, create_sessionmaker
from .workflow.definitions import WorkflowDefinitionStore
from .workflow.engine import RequestWorkflowEngine, WorkflowDeps


class RepoBundle(Protocol):
    policies: ApprovalPolicyRepository
    cases: ApprovalCaseRepository
    definitions: WorkflowDefinitionRepository
    states: WorkflowStateRepository


@dataclass(frozen=True)
class CoreServices:
    """Everything an application needs from the core, already wired together."""

    policies: ApprovalPolicyStore
    definitions: WorkflowDefinitionStore
    approvals: ApprovalEngine
    workflows: RequestWorkflowEngine
    scheduler: EscalationScheduler
    calendar: BusinessCalendar


def build_core(
    *,
    repos: RepoBundle,
    authorization: AuthorizationProvider,
    holidays: Optional[HolidayCalendar] = None,
    notifier: Optional[NotificationDispatcher] = None,
    config: Optional[Settings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> CoreServices:
    """Wire stores, engines and scheduler around ``repos``.

    Holidays default to ``PGBEN_HOLIDAYS`` and notifications to the log.
    """
    config = config or default_settings
    calendar = BusinessCalendar(holidays or StaticHolidayCalendar(config.holiday_dates))
    notifier = notifier or LoggingDispatcher()
    clock_kwargs: Dict[str, Any] = {"clock": clock} if clock is not None else {}

    policies = ApprovalPolicyStore(
        repos.policies,
        default=config.default_policy,
        cache_ttl_seconds=config.policy_cache_ttl_seconds,
    )
    definitions = WorkflowDefinitionStore(repos.definitions)
    approvals = ApprovalEngine(
        ApprovalDeps(cases=repos.cases, policies=policies, authorization=authorization, notifier=notifier),
        **clock_kwargs,
    )
    workflows = RequestWorkflowEngine(
        WorkflowDeps(states=repos.states, definitions=definitions, calendar=calendar, notifier=notifier),
        **clock_kwargs,
    )
    scheduler = EscalationScheduler(
        approvals,
        workflows,
        calendar,
        notifier=notifier,
        due_soon_hours=config.scheduler.due_soon_hours,
        **clock_kwargs,
    )
    return CoreServices(
        policies=policies,
        definitions=definitions,
        approvals=approvals,
        workflows=workflows,
        scheduler=scheduler,
        calendar=calendar,
    )


def build_in_memory_core(*, authorization: AuthorizationProvider, **kwargs: Any) -> CoreServices:
    """Core backed by in-memory repositories (tests, local experiments)."""
    return build_core(repos=build_memory_repos(), authorization=authorization, **kwargs)


async def build_sql_core(
    *,
    authorization: AuthorizationProvider,
    database_url: Optional[str] = None,
    create_tables: bool = False,
    config: Optional[Settings] = None,
    **kwargs: Any,
) -> tuple[CoreServices, AsyncEngine]:
    """Core backed by the SQL repositories.

    Returns the services and the engine; the caller owns ``engine.dispose()``.
    """
    config = config or default_settings
    engine = create_engine(database_url or config.database_url)
    if create_tables:
        await create_all(engine)
    repos = build_sql_repos(session_factory=create_sessionmaker(engine))
    return build_core(repos=repos, authorization=authorization, config=config, **kwargs), engine
