"""UTC time helpers shared by the engines, the scheduler and the SQL layer.

Every datetime the core stores or compares is timezone-aware UTC. Times
handed in from outside (an external timer, a database driver) go through
:func:`as_utc` first; a naive value is taken to be UTC already.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, overload


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@overload
def as_utc(value: datetime) -> datetime: ...


@overload
def as_utc(value: None) -> None: ...


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime; ``None`` passes through."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
