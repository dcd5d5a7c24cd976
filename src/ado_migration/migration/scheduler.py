"""Bounded-concurrency migration scheduler.

This module provides the coordinator that runs a batch of repository
migrations with at most N in flight. A single coroutine owns the pending
queue, the slot table and the result aggregator; lock and migration calls run
as tasks on the same event loop and the coordinator polls them for
completion, so no locking is needed around shared run state.

Lifecycle of one item:

    pending --dequeue--> queued --prepare ok--> running --outcome--> succeeded/failed
                           |
                           +--prepare raised--> failed (no migration started)

A queued item holds its slot while the source is being locked, so a slow
lock counts against the ceiling but never blocks the sweep.
"""

import asyncio
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

from ado_migration.client.exceptions import (
    ADOMigrationError,
    MonitoringFault,
    StateError,
    ValidationError,
)
from ado_migration.migration.adapter import (
    Clock,
    OperationAdapter,
    Outcome,
    failure_kind_for,
    utcnow,
)
from ado_migration.migration.aggregator import AggregatorView, ResultAggregator, RunState
from ado_migration.migration.work_item import FailureKind, WorkItem, WorkItemStatus
from ado_migration.utils.logging import (
    bind_run_context,
    clear_run_context,
    get_logger,
    log_error,
    log_migration_progress,
)

logger = get_logger(__name__)

# Progress events passed to the callback
EVENT_QUEUED = "queued"
EVENT_DISPATCHED = "dispatched"
EVENT_SUCCEEDED = "succeeded"
EVENT_FAILED = "failed"
EVENT_STOP_REQUESTED = "stop_requested"

ProgressCallback = Callable[[str, WorkItem | None, AggregatorView], None]


class RunRecorder(Protocol):
    """Durable store the scheduler reports to (see ``MigrationState``)."""

    def start_run(self, run_state: RunState, items: Sequence[WorkItem]) -> None: ...

    def record_queued(self, run_id: str, item: WorkItem) -> None: ...

    def record_dispatch(self, run_id: str, item: WorkItem) -> None: ...

    def record_outcome(self, run_id: str, item: WorkItem) -> None: ...

    def finish_run(self, run_state: RunState, view: AggregatorView) -> None: ...


class SlotPhase(Enum):
    PREPARING = "preparing"
    RUNNING = "running"


@dataclass
class ActiveSlot:
    """One occupied concurrency slot.

    ``task`` is the adapter's ``prepare`` call while the slot is preparing and
    its ``run`` call once the item is running.
    """

    index: int
    item: WorkItem
    task: asyncio.Task
    filled_at: datetime
    phase: SlotPhase = SlotPhase.PREPARING


def validate_work_items(items: Sequence[WorkItem]) -> None:
    """Check that a work list can be scheduled.

    Raises:
        ValidationError: If the list is empty or malformed
    """
    if not items:
        raise ValidationError("No work items to migrate")

    labels: set[str] = set()
    for position, item in enumerate(items, start=1):
        if not isinstance(item, WorkItem):
            raise ValidationError(
                f"Entry {position} is not a WorkItem (got {type(item).__name__})"
            )
        if item.status is not WorkItemStatus.PENDING:
            raise ValidationError(
                f"Work item {item.label} must be pending to be scheduled (is {item.status.value})"
            )
        if item.label in labels:
            raise ValidationError(f"Duplicate work item label: {item.label}")
        labels.add(item.label)


class BoundedScheduler:
    """Runs work items through an adapter with a fixed concurrency ceiling.

    Guarantees:
    - at most ``max_concurrent`` items are running at any instant
    - items are dispatched in input order, each at most once
    - every dispatched item's outcome is harvested exactly once
    - a failing item never stops the run; only ``request_stop`` does, and
      then in-flight items still run to completion

    Usage:
        scheduler = BoundedScheduler(items, adapter, max_concurrent=10)
        view = await scheduler.run()
    """

    def __init__(
        self,
        items: Sequence[WorkItem],
        adapter: OperationAdapter,
        max_concurrent: int,
        poll_interval: float = 5.0,
        run_state: RunState | None = None,
        recorder: RunRecorder | None = None,
        progress_callback: ProgressCallback | None = None,
        progress_log_every: int = 1,
        clock: Clock = utcnow,
    ):
        """Initialize the scheduler.

        Args:
            items: Work items in dispatch order, all pending
            adapter: Migration backend
            max_concurrent: Concurrency ceiling N
            poll_interval: Maximum sleep between sweeps that found nothing finished
            run_state: Run metadata to fill in (created if not given)
            recorder: Optional durable store for per-item progress
            progress_callback: Called as ``callback(event, item, view)``
            progress_log_every: Emit a progress log event every N completions
            clock: Source of timestamps

        Raises:
            ValidationError: If the work list or limits are invalid
        """
        if not isinstance(max_concurrent, int) or isinstance(max_concurrent, bool):
            raise ValidationError("max_concurrent must be an integer")
        if max_concurrent < 1:
            raise ValidationError(f"max_concurrent must be at least 1 (got {max_concurrent})")
        if poll_interval <= 0:
            raise ValidationError(f"poll_interval must be positive (got {poll_interval})")

        validate_work_items(items)

        self.items: list[WorkItem] = list(items)
        self.adapter = adapter
        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self.recorder = recorder
        self.progress_callback = progress_callback
        self.progress_log_every = max(1, progress_log_every)
        self.clock = clock

        if run_state is None:
            run_state = RunState(total=len(self.items), concurrency_ceiling=max_concurrent)
        elif run_state.total != len(self.items):
            raise ValidationError(
                f"RunState total {run_state.total} does not match {len(self.items)} work items"
            )
        self.run_state = run_state

        self.aggregator = ResultAggregator(total=len(self.items))
        self._pending: deque[WorkItem] = deque(self.items)
        self._slots: list[ActiveSlot | None] = [None] * max_concurrent
        self._stop_requested = False
        self._started = False

        # Observability for callers and tests
        self.dispatch_order: list[str] = []
        self.max_running_observed = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def running_count(self) -> int:
        """Items whose migration is in flight."""
        return sum(1 for slot in self.active_slots() if slot.phase is SlotPhase.RUNNING)

    @property
    def occupied_count(self) -> int:
        """Slots held by running items plus those still locking their source."""
        return len(self.active_slots())

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def active_slots(self) -> list[ActiveSlot]:
        return [slot for slot in self._slots if slot is not None]

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def request_stop(self, reason: str = "stop requested") -> None:
        """Stop dispatching new items; in-flight items still finish.

        Items already dequeued count as in flight: once their source is
        locked their migration is started and awaited.

        Safe to call from a signal handler or a progress callback.
        """
        if self._stop_requested:
            return
        self._stop_requested = True
        self.run_state.stop_reason = reason
        logger.warning(
            "scheduler_stop_requested",
            reason=reason,
            running=self.running_count,
            preparing=self.occupied_count - self.running_count,
            pending=self.pending_count,
        )
        self._notify(EVENT_STOP_REQUESTED, None)

    async def run(self) -> AggregatorView:
        """Run every work item to a terminal state (or until stopped).

        Returns:
            Final aggregator view: succeeded and failed items in completion
            order, plus items left pending by a stop request

        Raises:
            StateError: If the scheduler was already run
        """
        if self._started:
            raise StateError("Scheduler can only be run once")
        self._started = True

        bind_run_context(self.run_state.run_id)
        self.run_state.start(self.clock())
        self._persist("start_run", self.run_state, self.items)

        logger.info(
            "scheduler_started",
            run_id=self.run_state.run_id,
            total=len(self.items),
            max_concurrent=self.max_concurrent,
            poll_interval=self.poll_interval,
        )

        self._fill_free_slots()

        # Freed slots are refilled inside the sweep, so an empty slot table
        # means the queue is drained or a stop was requested
        while self.occupied_count > 0:
            if not self._sweep():
                await self._wait_for_completion()

        try:
            return self._finish()
        finally:
            clear_run_context()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _fill_free_slots(self) -> None:
        for index, slot in enumerate(self._slots):
            if slot is None and not self._dispatch_into(index):
                break

    def _dispatch_into(self, slot_index: int) -> bool:
        """Dequeue the next item into ``slot_index`` and start locking its source.

        Returns:
            True if the slot was filled, False if the queue is empty or a stop
            was requested
        """
        if not self._pending or self._stop_requested:
            return False

        item = self._pending.popleft()
        item.mark_queued()
        task = asyncio.create_task(self.adapter.prepare(item), name=f"lock:{item.label}")
        self._slots[slot_index] = ActiveSlot(
            index=slot_index, item=item, task=task, filled_at=self.clock()
        )

        logger.debug(
            "work_item_queued", label=item.label, slot=slot_index, pending=self.pending_count
        )
        self._persist("record_queued", self.run_state.run_id, item)
        self._notify(EVENT_QUEUED, item)
        return True

    def _start_running(self, slot: ActiveSlot) -> None:
        item = slot.item
        item.mark_running(self.clock())
        slot.task = asyncio.create_task(self.adapter.run(item), name=f"migrate:{item.label}")
        slot.phase = SlotPhase.RUNNING
        self.dispatch_order.append(item.label)
        self.max_running_observed = max(self.max_running_observed, self.running_count)

        logger.info(
            "work_item_dispatched",
            label=item.label,
            slot=slot.index,
            running=self.running_count,
            pending=self.pending_count,
        )
        self._persist("record_dispatch", self.run_state.run_id, item)
        self._notify(EVENT_DISPATCHED, item)

    def _lock_failure(self, slot: ActiveSlot) -> tuple[FailureKind, BaseException] | None:
        """Classify a finished prepare task; None means the source is locked."""
        task = slot.task
        if task.cancelled():
            return FailureKind.LOCK_FAILURE, MonitoringFault("lock was cancelled before it finished")

        error = task.exception()
        if error is None:
            return None
        if isinstance(error, ADOMigrationError):
            return failure_kind_for(error, FailureKind.LOCK_FAILURE), error

        log_error(logger, error, context="prepare", label=slot.item.label)
        return FailureKind.LOCK_FAILURE, error

    def _fail_before_running(
        self, item: WorkItem, failure_kind: FailureKind, error: BaseException
    ) -> None:
        item.mark_failed(self.clock(), failure_kind, str(error))
        logger.warning(
            "work_item_dispatch_failed",
            label=item.label,
            failure_kind=failure_kind.value,
            error=str(error),
        )
        self._record_terminal(item)

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def _sweep(self) -> int:
        """Advance finished slots in slot order.

        A finished lock starts the migration in the same slot, or fails the
        item and frees the slot. A finished migration is harvested. Freed slots
        are refilled at once.

        Returns:
            Number of slots that advanced
        """
        advanced = 0
        for index in range(self.max_concurrent):
            slot = self._slots[index]
            if slot is None or not slot.task.done():
                continue
            advanced += 1

            if slot.phase is SlotPhase.PREPARING:
                failure = self._lock_failure(slot)
                if failure is None:
                    self._start_running(slot)
                    continue
                self._slots[index] = None
                self._fail_before_running(slot.item, *failure)
            else:
                self._slots[index] = None
                self._apply_outcome(slot.item, self._collect(slot))

            self._dispatch_into(index)

        return advanced

    def _collect(self, slot: ActiveSlot) -> Outcome:
        """Read a finished task, converting handle errors into failed outcomes."""
        task = slot.task
        if task.cancelled():
            return self._monitoring_fault(
                slot, MonitoringFault("operation handle was cancelled before reporting an outcome")
            )

        error = task.exception()
        if error is not None:
            return self._monitoring_fault(
                slot,
                MonitoringFault(f"operation handle errored: {type(error).__name__}: {error}"),
            )

        outcome = task.result()
        if not isinstance(outcome, Outcome):
            return self._monitoring_fault(
                slot,
                MonitoringFault(
                    f"operation returned {type(outcome).__name__} instead of an outcome"
                ),
            )
        return outcome

    def _monitoring_fault(self, slot: ActiveSlot, fault: MonitoringFault) -> Outcome:
        logger.error("operation_handle_errored", label=slot.item.label, error=str(fault))
        return Outcome.failure(self.clock(), FailureKind.MONITORING_FAULT, str(fault))

    def _apply_outcome(self, item: WorkItem, outcome: Outcome) -> None:
        if outcome.succeeded:
            item.mark_succeeded(outcome.completed_at, outcome.migration_id)
        else:
            item.mark_failed(
                outcome.completed_at,
                outcome.failure_kind or FailureKind.REMOTE_FAILURE,
                outcome.error or "migration failed",
                outcome.migration_id,
            )
        self._record_terminal(item)

    def _record_terminal(self, item: WorkItem) -> None:
        self.aggregator.record(item)
        self._persist("record_outcome", self.run_state.run_id, item)

        logger.info(
            "work_item_completed",
            label=item.label,
            status=item.status.value,
            migration_id=item.migration_id,
            duration_seconds=item.duration_seconds,
            failure_kind=item.failure_kind.value if item.failure_kind else None,
        )

        completed = self.aggregator.succeeded_count + self.aggregator.failed_count
        if completed % self.progress_log_every == 0 or completed == len(self.items):
            log_migration_progress(
                logger,
                completed=completed,
                total=len(self.items),
                running=self.running_count,
                succeeded=self.aggregator.succeeded_count,
                failed=self.aggregator.failed_count,
            )

        event = EVENT_SUCCEEDED if item.status is WorkItemStatus.SUCCEEDED else EVENT_FAILED
        self._notify(event, item)

    async def _wait_for_completion(self) -> None:
        """Sleep up to one poll interval, waking early if any slot finishes."""
        tasks = {slot.task for slot in self._slots if slot is not None}
        await asyncio.wait(tasks, timeout=self.poll_interval, return_when=asyncio.FIRST_COMPLETED)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _finish(self) -> AggregatorView:
        incomplete = list(self._pending)
        self.run_state.stopped = self._stop_requested
        self.run_state.finish(self.clock())

        view = self.aggregator.finalize(incomplete)
        self._persist("finish_run", self.run_state, view)

        logger.info(
            "scheduler_finished",
            run_id=self.run_state.run_id,
            succeeded=len(view.succeeded),
            failed=len(view.failed),
            incomplete=len(view.incomplete),
            stopped=self.run_state.stopped,
            duration_seconds=self.run_state.duration_seconds,
        )
        return view

    def _notify(self, event: str, item: WorkItem | None) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(event, item, self.aggregator.snapshot())
        except Exception as e:
            log_error(logger, e, context="progress_callback", progress_event=event)

    def _persist(self, method: str, *args) -> None:
        """Forward to the recorder; a storage failure never aborts the run."""
        if self.recorder is None:
            return
        try:
            getattr(self.recorder, method)(*args)
        except ADOMigrationError as e:
            logger.warning("run_state_persist_failed", operation=method, error=str(e))
