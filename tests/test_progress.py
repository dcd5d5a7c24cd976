from __future__ import annotations

import pytest
from conftest import ScriptedAdapter, make_items

from ado_migration.migration.adapter import utcnow
from ado_migration.migration.aggregator import ResultAggregator
from ado_migration.migration.scheduler import (
    EVENT_DISPATCHED,
    EVENT_SUCCEEDED,
    BoundedScheduler,
)
from ado_migration.reporting.progress import ProgressTracker


@pytest.mark.asyncio
async def test_tracks_running_and_terminal_counts() -> None:
    items = make_items(6)
    adapter = ScriptedAdapter(lock_failures={items[2].label})

    with ProgressTracker(total=6, enable=False) as tracker:
        scheduler = BoundedScheduler(
            items, adapter, max_concurrent=2, poll_interval=0.01, progress_callback=tracker.callback
        )
        await scheduler.run()
        stats = tracker.get_stats()

    assert stats == {"running": 0, "succeeded": 5, "failed": 1}


def test_bar_follows_progress() -> None:
    (item,) = make_items(1)
    aggregator = ResultAggregator(total=1)
    tracker = ProgressTracker(total=1, enable=True, description="Testing")
    try:
        item.mark_queued()
        item.mark_running(utcnow())
        tracker.callback(EVENT_DISPATCHED, item, aggregator.snapshot())
        item.mark_succeeded(utcnow(), "RM_00000001")
        aggregator.record(item)
        tracker.callback(EVENT_SUCCEEDED, item, aggregator.snapshot())

        assert tracker.bar.n == 1
        assert tracker.get_stats() == {"running": 0, "succeeded": 1, "failed": 0}
    finally:
        tracker.close()

    assert tracker.bar is None
