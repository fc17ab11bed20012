from __future__ import annotations

"""SQLAlchemy ORM models for approval/workflow persistence.

These ORM models define the SQL schema used by the SQL repository
implementation in ``pgben_workflow.repos.sql``.

Design
------

- Policies are small configuration rows keyed by action type. Workflow
  definitions are keyed by benefit type and version; a workflow state records
  the definition version it was started on.
- Cases and workflow states carry a ``version`` column used for
  compare-and-swap updates.
- Votes, eligible-approver pools, policy snapshots and history are stored as
  JSON documents on their owning row; they are only ever read and written
  together with it.

JSON columns use JSONB on Postgres and plain JSON elsewhere (SQLite in tests).
Table names are prefixed with ``pgb_`` to avoid collisions in shared databases.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class ApprovalPolicyRow(Base):
    """Row model for ``pgb_approval_policies``."""

    __tablename__ = "pgb_approval_policies"

    action_type: Mapped[str] = mapped_column(String(64), primary_key=True)
    strategy: Mapped[str] = mapped_column(String(16))
    min_approvals: Mapped[int] = mapped_column(Integer)
    time_limit_hours: Mapped[int] = mapped_column(Integer)
    allow_self_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class ApprovalCaseRow(Base):
    """Row model for ``pgb_approval_cases``.

    Key fields:

    - ``status``: PENDING until resolved, then one terminal status.
    - ``deadline``: indexed so the escalation scheduler can scan cheaply.
    - ``policy``: the policy snapshot taken when the case was opened.
    """

    __tablename__ = "pgb_approval_cases"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True)
    action_type: Mapped[str] = mapped_column(String(64), index=True)
    requester_id: Mapped[str] = mapped_column(String(128))
    payload: Mapped[Dict[str, Any]] = mapped_column(JsonDocument, default=dict)
    status: Mapped[str] = mapped_column(String(16), index=True)
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    votes: Mapped[List[Dict[str, Any]]] = mapped_column(JsonDocument, default=list)
    eligible_approvers: Mapped[List[str]] = mapped_column(JsonDocument, default=list)
    policy: Mapped[Dict[str, Any]] = mapped_column(JsonDocument)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    version: Mapped[int] = mapped_column(Integer)


class WorkflowDefinitionRow(Base):
    """Row model for ``pgb_workflow_definitions``.

    Keyed by (id, version): earlier versions stay stored for the requests
    still pinned to them. The definition body is a JSON document.
    """

    __tablename__ = "pgb_workflow_definitions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    definition: Mapped[Dict[str, Any]] = mapped_column(JsonDocument)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class WorkflowStateRow(Base):
    """Row model for ``pgb_workflow_states``.

    ``history`` is append-only at the engine level; the row simply stores the
    full list.
    """

    __tablename__ = "pgb_workflow_states"

    request_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workflow_definition_id: Mapped[str] = mapped_column(String(64))
    workflow_definition_version: Mapped[int] = mapped_column(Integer)
    current_stage: Mapped[str] = mapped_column(String(32))
    stage_entered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    stage_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    history: Mapped[List[Dict[str, Any]]] = mapped_column(JsonDocument, default=list)
    version: Mapped[int] = mapped_column(Integer)
