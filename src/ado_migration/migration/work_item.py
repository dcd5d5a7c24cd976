"""Work item model for repository migrations.

A WorkItem describes one repository to migrate (immutable source and target
descriptors) plus its mutable lifecycle state. Status changes go through
``WorkItem.transition`` so that an item can never skip a step or regress.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ado_migration.client.exceptions import StateError


class WorkItemStatus(Enum):
    """Lifecycle states of a work item."""

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if this is an end state."""
        return self in (WorkItemStatus.SUCCEEDED, WorkItemStatus.FAILED)


class FailureKind(Enum):
    """Which phase of a migration failed."""

    LOCK_FAILURE = "lock_failure"  # source could not be locked
    SUBMIT_FAILURE = "submit_failure"  # migration could not be queued
    REMOTE_FAILURE = "remote_failure"  # queued, then failed or timed out remotely
    MONITORING_FAULT = "monitoring_fault"  # the coordinator's task handle errored


# queued -> failed covers a dispatch that failed before the item held a slot
ALLOWED_TRANSITIONS: dict[WorkItemStatus, frozenset[WorkItemStatus]] = {
    WorkItemStatus.PENDING: frozenset({WorkItemStatus.QUEUED}),
    WorkItemStatus.QUEUED: frozenset({WorkItemStatus.RUNNING, WorkItemStatus.FAILED}),
    WorkItemStatus.RUNNING: frozenset({WorkItemStatus.SUCCEEDED, WorkItemStatus.FAILED}),
    WorkItemStatus.SUCCEEDED: frozenset(),
    WorkItemStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class SourceRepo:
    """Azure DevOps repository descriptor."""

    org: str
    project: str
    repo: str

    def __str__(self) -> str:
        return f"{self.org}/{self.project}/{self.repo}"

    def to_dict(self) -> dict[str, str]:
        return {"org": self.org, "project": self.project, "repo": self.repo}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceRepo":
        return cls(org=data["org"], project=data["project"], repo=data["repo"])


@dataclass(frozen=True)
class TargetRepo:
    """GitHub repository descriptor."""

    org: str
    repo: str

    def __str__(self) -> str:
        return f"{self.org}/{self.repo}"

    def to_dict(self) -> dict[str, str]:
        return {"org": self.org, "repo": self.repo}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TargetRepo":
        return cls(org=data["org"], repo=data["repo"])


@dataclass
class WorkItem:
    """One repository migration and its lifecycle.

    Attributes:
        index: 1-based position in the input list
        label: Human-readable job label, unique within a run
        source: Azure DevOps repository to migrate
        target: GitHub repository to create
        status: Current lifecycle state
        migration_id: Correlation identifier returned by the migration tool
        submitted_at: When the item was dispatched into a slot
        completed_at: When the item reached a terminal state
        error: Failure detail when status is FAILED
        failure_kind: Failing phase when status is FAILED
    """

    index: int
    label: str
    source: SourceRepo
    target: TargetRepo
    status: WorkItemStatus = WorkItemStatus.PENDING
    migration_id: str | None = None
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    failure_kind: FailureKind | None = None
    history: list[WorkItemStatus] = field(default_factory=list, repr=False)

    @property
    def duration_seconds(self) -> float | None:
        """Seconds between submission and completion, if both are known."""
        if self.submitted_at is None or self.completed_at is None:
            return None
        return round((self.completed_at - self.submitted_at).total_seconds(), 3)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, new_status: WorkItemStatus) -> None:
        """Move the item to ``new_status``.

        Raises:
            StateError: If the transition is not allowed from the current status
        """
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise StateError(
                f"Invalid transition for {self.label}: "
                f"{self.status.value} -> {new_status.value}"
            )
        self.history.append(self.status)
        self.status = new_status

    def mark_queued(self) -> None:
        self.transition(WorkItemStatus.QUEUED)

    def mark_running(self, submitted_at: datetime) -> None:
        self.transition(WorkItemStatus.RUNNING)
        self.submitted_at = submitted_at

    def mark_succeeded(self, completed_at: datetime, migration_id: str | None = None) -> None:
        self.transition(WorkItemStatus.SUCCEEDED)
        self.completed_at = completed_at
        if migration_id:
            self.migration_id = migration_id

    def mark_failed(
        self,
        completed_at: datetime,
        failure_kind: FailureKind,
        error: str,
        migration_id: str | None = None,
    ) -> None:
        self.transition(WorkItemStatus.FAILED)
        self.completed_at = completed_at
        self.failure_kind = failure_kind
        self.error = error
        if migration_id:
            self.migration_id = migration_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "index": self.index,
            "label": self.label,
            "source": self.source.to_dict(),
            "target": self.target.to_dict(),
            "status": self.status.value,
            "migration_id": self.migration_id,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "error": self.error,
        }


def make_label(source: SourceRepo) -> str:
    """Default job label for a source repository."""
    return f"{source.project}/{source.repo}"
