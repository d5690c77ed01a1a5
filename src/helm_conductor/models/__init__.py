"""Data models for Helm Conductor."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone


class ReleaseState(enum.Enum):
    NONE = ""
    CREATING = "creating"
    ACTIVE = "active"
    UPGRADING = "upgrading"
    FAILED = "failed"
    DELETING = "deleting"

    @classmethod
    def from_str(cls, s: str | None) -> ReleaseState:
        for member in cls:
            if member.value == (s or ""):
                return member
        return cls.NONE


class SyncState(enum.Enum):
    SUCCESSFUL = "successful"
    FAILED = "failed"

    @classmethod
    def from_str(cls, s: str) -> SyncState:
        return cls.SUCCESSFUL if s == cls.SUCCESSFUL.value else cls.FAILED


class DeployState(enum.Enum):
    SUCCESSFUL = "successful"
    FAILED = "failed"

    @classmethod
    def from_str(cls, s: str) -> DeployState:
        return cls.SUCCESSFUL if s == cls.SUCCESSFUL.value else cls.FAILED


class Lifecycle(enum.Enum):
    """Deletion lifecycle of a stored object.

    ACTIVE objects are reconciled normally. TERMINATING objects have been asked
    to go away but still need cleanup. TERMINATED objects have finished cleanup
    and may be removed from storage.
    """

    ACTIVE = "active"
    TERMINATING = "terminating"
    TERMINATED = "terminated"

    @classmethod
    def from_str(cls, s: str | None) -> Lifecycle:
        for member in cls:
            if member.value == s:
                return member
        return cls.ACTIVE


@dataclass
class ReconcileResult:
    """Outcome of a single reconcile pass.

    ``requeue_after`` is the delay in seconds before the key should be handled
    again (``None`` means wait for the next change notification); ``error`` is
    reported to the scheduler for rate-limited retry.
    """

    requeue_after: float | None = None
    error: Exception | None = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_time(dt: datetime | None) -> str:
    if dt is None:
        return ""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(raw) -> datetime | None:
    """Parse an RFC3339 timestamp, returning None on empty or bad input."""
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
