"""
Migration run state management.

This module provides the MigrationState class, the durable record of scheduler
runs: which items were dispatched, how each one ended, and which runs never
finished (crash inspection). It is written only by the scheduler's
coordinator, one call at a time.
"""

import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from sqlalchemy import func, select

from ado_migration.client.exceptions import StateError
from ado_migration.config import StateConfig
from ado_migration.migration.aggregator import AggregatorView, RunState
from ado_migration.migration.database import database_url_for, get_session, init_database
from ado_migration.migration.models import MigrationRun, WorkItemRecord
from ado_migration.migration.work_item import WorkItem
from ado_migration.utils.logging import get_logger

logger = get_logger(__name__)


class MigrationState:
    """
    Records scheduler runs and work item lifecycles in a SQL database.

    Usage:
        with MigrationState(config.state) as state:
            scheduler = BoundedScheduler(items, adapter, 10, recorder=state)
            await scheduler.run()
            done = state.previously_succeeded()
    """

    def __init__(self, config: StateConfig):
        """
        Initialize the state store.

        Args:
            config: State configuration

        Raises:
            StateError: If initialization fails
        """
        self.config = config
        self.database_url = database_url_for(config.db_path)
        self._lock = threading.RLock()

        try:
            if "://" not in config.db_path:
                Path(config.db_path).parent.mkdir(parents=True, exist_ok=True)
            init_database(self.database_url)
        except Exception as e:
            logger.error("migration_state_init_failed", error=str(e))
            raise StateError(f"Failed to initialize migration state: {e}") from e

        logger.info("migration_state_initialized", database_path=config.db_path)

    def __enter__(self) -> "MigrationState":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        pass

    # ------------------------------------------------------------------
    # Writes (scheduler recorder interface)
    # ------------------------------------------------------------------

    def start_run(self, run_state: RunState, items: Sequence[WorkItem]) -> None:
        """Insert the run and one pending row per work item."""
        with self._lock:
            with get_session(self.database_url) as session:
                if session.get(MigrationRun, run_state.run_id) is not None:
                    raise StateError(f"Run {run_state.run_id} already recorded")

                run = MigrationRun(
                    run_id=run_state.run_id,
                    total=run_state.total,
                    concurrency_ceiling=run_state.concurrency_ceiling,
                    started_at=run_state.started_at,
                )
                run.items = [
                    WorkItemRecord(
                        item_index=item.index,
                        label=item.label,
                        source_org=item.source.org,
                        source_project=item.source.project,
                        source_repo=item.source.repo,
                        target_org=item.target.org,
                        target_repo=item.target.repo,
                        status=item.status.value,
                    )
                    for item in items
                ]
                session.add(run)

        logger.debug("run_recorded", run_id=run_state.run_id, items=len(items))

    def _update_item(self, run_id: str, item: WorkItem) -> None:
        with self._lock:
            with get_session(self.database_url) as session:
                record = session.scalars(
                    select(WorkItemRecord).where(
                        WorkItemRecord.run_id == run_id,
                        WorkItemRecord.label == item.label,
                    )
                ).first()
                if record is None:
                    raise StateError(f"Work item {item.label} not recorded for run {run_id}")

                record.status = item.status.value
                record.migration_id = item.migration_id
                record.submitted_at = item.submitted_at
                record.completed_at = item.completed_at
                record.failure_kind = item.failure_kind.value if item.failure_kind else None
                record.error_message = item.error

    def record_queued(self, run_id: str, item: WorkItem) -> None:
        """Mark an item as dequeued; its source is about to be locked."""
        self._update_item(run_id, item)

    def record_dispatch(self, run_id: str, item: WorkItem) -> None:
        """Mark an item as running."""
        self._update_item(run_id, item)

    def record_outcome(self, run_id: str, item: WorkItem) -> None:
        """Store an item's terminal state."""
        self._update_item(run_id, item)

    def finish_run(self, run_state: RunState, view: AggregatorView) -> None:
        """Close the run with its end time and counts."""
        with self._lock:
            with get_session(self.database_url) as session:
                run = session.get(MigrationRun, run_state.run_id)
                if run is None:
                    raise StateError(f"Run {run_state.run_id} not recorded")

                run.ended_at = run_state.ended_at
                run.duration_seconds = run_state.duration_seconds
                run.stopped = run_state.stopped
                run.succeeded = len(view.succeeded)
                run.failed = len(view.failed)
                run.incomplete = len(view.incomplete)

        logger.info(
            "run_finished_recorded",
            run_id=run_state.run_id,
            succeeded=len(view.succeeded),
            failed=len(view.failed),
            incomplete=len(view.incomplete),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def previously_succeeded(self) -> set[tuple[str, str]]:
        """Target (org, repo) pairs that any recorded run migrated successfully."""
        with self._lock:
            with get_session(self.database_url) as session:
                rows = session.execute(
                    select(WorkItemRecord.target_org, WorkItemRecord.target_repo)
                    .where(WorkItemRecord.status == "succeeded")
                    .distinct()
                ).all()
                return {(org, repo) for org, repo in rows}

    def in_flight_items(self) -> list[dict[str, Any]]:
        """Items left queued or running by runs that never finished.

        Their external state (lock, partially created target) is ambiguous and
        needs checking by hand before they are retried.
        """
        with self._lock:
            with get_session(self.database_url) as session:
                records = session.scalars(
                    select(WorkItemRecord)
                    .join(MigrationRun)
                    .where(
                        MigrationRun.ended_at.is_(None),
                        WorkItemRecord.status.in_(("queued", "running")),
                    )
                    .order_by(WorkItemRecord.run_id, WorkItemRecord.item_index)
                ).all()
                return [self._record_to_dict(record) for record in records]

    def get_run_summary(self, run_id: str | None = None) -> dict[str, Any] | None:
        """Summary of ``run_id``, or of the most recent run when omitted."""
        with self._lock:
            with get_session(self.database_url) as session:
                if run_id is None:
                    run = session.scalars(
                        select(MigrationRun).order_by(MigrationRun.started_at.desc()).limit(1)
                    ).first()
                else:
                    run = session.get(MigrationRun, run_id)

                if run is None:
                    return None

                status_counts = dict(
                    session.execute(
                        select(WorkItemRecord.status, func.count(WorkItemRecord.id))
                        .where(WorkItemRecord.run_id == run.run_id)
                        .group_by(WorkItemRecord.status)
                    ).all()
                )

                return {
                    "run_id": run.run_id,
                    "total": run.total,
                    "concurrency_ceiling": run.concurrency_ceiling,
                    "started_at": run.started_at.isoformat() if run.started_at else None,
                    "ended_at": run.ended_at.isoformat() if run.ended_at else None,
                    "duration_seconds": run.duration_seconds,
                    "stopped": run.stopped,
                    "finished": run.ended_at is not None,
                    "status_counts": status_counts,
                }

    def list_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent runs first."""
        with self._lock:
            with get_session(self.database_url) as session:
                runs = session.scalars(
                    select(MigrationRun).order_by(MigrationRun.started_at.desc()).limit(limit)
                ).all()
                return [
                    {
                        "run_id": run.run_id,
                        "started_at": run.started_at.isoformat() if run.started_at else None,
                        "finished": run.ended_at is not None,
                        "total": run.total,
                        "succeeded": run.succeeded,
                        "failed": run.failed,
                        "incomplete": run.incomplete,
                    }
                    for run in runs
                ]

    @staticmethod
    def _record_to_dict(record: WorkItemRecord) -> dict[str, Any]:
        return {
            "run_id": record.run_id,
            "index": record.item_index,
            "label": record.label,
            "source": f"{record.source_org}/{record.source_project}/{record.source_repo}",
            "target": f"{record.target_org}/{record.target_repo}",
            "status": record.status,
            "migration_id": record.migration_id,
            "submitted_at": record.submitted_at.isoformat() if record.submitted_at else None,
        }
