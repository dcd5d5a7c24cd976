"""Progress tracking for migration runs.

This module provides a tqdm progress bar over all work items of a run, fed
by the scheduler's progress callback.
"""

from tqdm import tqdm

from ado_migration.migration.aggregator import AggregatorView
from ado_migration.migration.scheduler import (
    EVENT_DISPATCHED,
    EVENT_FAILED,
    EVENT_STOP_REQUESTED,
    EVENT_SUCCEEDED,
)
from ado_migration.migration.work_item import WorkItem
from ado_migration.utils.logging import get_logger

logger = get_logger(__name__)


class ProgressTracker:
    """Displays run progress as items reach a terminal state.

    Usage:
        with ProgressTracker(total=len(items), enable=not ci) as tracker:
            scheduler = BoundedScheduler(..., progress_callback=tracker.callback)
    """

    def __init__(self, total: int, enable: bool = True, description: str = "Migrating"):
        """Initialize progress tracker.

        Args:
            total: Number of work items in the run
            enable: Whether to show the progress bar (False for CI/automation)
            description: Bar label
        """
        self.total = total
        self.enable = enable
        self.bar: tqdm | None = None

        self.stats = {
            "running": 0,
            "succeeded": 0,
            "failed": 0,
        }

        if self.enable:
            self.bar = tqdm(
                total=total,
                desc=description,
                unit="repo",
                leave=True,
                bar_format="{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}] {postfix}",
            )

    def callback(self, event: str, item: WorkItem | None, view: AggregatorView) -> None:
        """Scheduler progress callback."""
        if event == EVENT_DISPATCHED:
            self.stats["running"] += 1
        elif event in (EVENT_SUCCEEDED, EVENT_FAILED):
            # Items failed during dispatch never counted as running
            if item is not None and item.submitted_at is not None:
                self.stats["running"] = max(0, self.stats["running"] - 1)
            self.stats["succeeded"] = len(view.succeeded)
            self.stats["failed"] = len(view.failed)
            if self.bar:
                self.bar.update(1)
        elif event == EVENT_STOP_REQUESTED and self.bar:
            self.bar.set_description("Stopping (draining running items)")

        if self.bar:
            self.bar.set_postfix(**self.stats)

    def get_stats(self) -> dict[str, int]:
        return self.stats.copy()

    def close(self) -> None:
        """Close the progress bar."""
        if self.bar:
            self.bar.close()
            self.bar = None

        logger.debug("progress_tracker_closed", final_stats=self.stats)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
