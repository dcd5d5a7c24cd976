"""Run state and result aggregation.

``RunState`` holds the per-run metadata (start/end time, ceiling, total) that
the scheduler and exporter share. ``ResultAggregator`` collects terminal work
items in arrival order; it has a single writer, the scheduler's completion
step.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ado_migration.client.exceptions import StateError
from ado_migration.migration.work_item import WorkItem, WorkItemStatus


@dataclass
class RunState:
    """Metadata of one scheduler run."""

    total: int
    concurrency_ceiling: int
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    stopped: bool = False
    stop_reason: str | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.ended_at is None:
            return None
        return round((self.ended_at - self.started_at).total_seconds(), 3)

    def start(self, now: datetime) -> None:
        if self.started_at is not None:
            raise StateError(f"Run {self.run_id} already started")
        self.started_at = now

    def finish(self, now: datetime) -> None:
        if self.started_at is None:
            raise StateError(f"Run {self.run_id} finished before it started")
        self.ended_at = now


@dataclass(frozen=True)
class AggregatorView:
    """Point-in-time view of the aggregated results."""

    total: int
    succeeded: tuple[WorkItem, ...]
    failed: tuple[WorkItem, ...]
    incomplete: tuple[WorkItem, ...] = ()
    final: bool = False

    @property
    def completed(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def remaining(self) -> int:
        return self.total - self.completed

    @property
    def is_balanced(self) -> bool:
        """Every item is accounted for exactly once."""
        return self.completed + len(self.incomplete) == self.total

    def summary(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "incomplete": len(self.incomplete),
            "remaining": self.remaining,
        }


class ResultAggregator:
    """Collects terminal outcomes in whatever order they arrive."""

    def __init__(self, total: int):
        self.total = total
        self._succeeded: list[WorkItem] = []
        self._failed: list[WorkItem] = []
        self._seen: set[str] = set()
        self._final: AggregatorView | None = None

    @property
    def succeeded_count(self) -> int:
        return len(self._succeeded)

    @property
    def failed_count(self) -> int:
        return len(self._failed)

    def record(self, item: WorkItem) -> None:
        """Add a terminal item.

        Raises:
            StateError: If the item is not terminal, was already recorded,
                or the run has been finalized
        """
        if self._final is not None:
            raise StateError("Cannot record results after the run was finalized")
        if not item.is_terminal:
            raise StateError(f"Item {item.label} is not terminal ({item.status.value})")
        if item.label in self._seen:
            raise StateError(f"Item {item.label} was already recorded")

        self._seen.add(item.label)
        if item.status is WorkItemStatus.SUCCEEDED:
            self._succeeded.append(item)
        else:
            self._failed.append(item)

    def snapshot(self) -> AggregatorView:
        """Current view, for progress reporting."""
        if self._final is not None:
            return self._final
        return AggregatorView(
            total=self.total,
            succeeded=tuple(self._succeeded),
            failed=tuple(self._failed),
        )

    def finalize(self, incomplete: list[WorkItem] | tuple[WorkItem, ...] = ()) -> AggregatorView:
        """Freeze the results once the scheduler is done.

        Args:
            incomplete: Items that never reached a terminal state (cooperative stop)

        Raises:
            StateError: If the items do not add up to the run total
        """
        if self._final is not None:
            return self._final

        for item in incomplete:
            if item.is_terminal or item.label in self._seen:
                raise StateError(f"Item {item.label} cannot be both terminal and incomplete")

        view = AggregatorView(
            total=self.total,
            succeeded=tuple(self._succeeded),
            failed=tuple(self._failed),
            incomplete=tuple(incomplete),
            final=True,
        )
        if not view.is_balanced:
            raise StateError(
                f"Result accounting mismatch: {view.completed} terminal + "
                f"{len(view.incomplete)} incomplete != {view.total} total"
            )

        self._final = view
        return view
