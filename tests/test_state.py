from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from conftest import ScriptedAdapter, make_items, wait_until

from ado_migration.client.exceptions import StateError
from ado_migration.config import StateConfig
from ado_migration.migration.aggregator import ResultAggregator, RunState
from ado_migration.migration.scheduler import BoundedScheduler
from ado_migration.migration.state import MigrationState
from ado_migration.migration.work_item import FailureKind

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def labels_of(items) -> list[str]:
    return [item.label for item in items]


@pytest.mark.asyncio
class TestRecordedRun:
    async def test_scheduler_writes_every_outcome(self, migration_state: MigrationState) -> None:
        items = make_items(6)
        adapter = ScriptedAdapter(
            lock_failures={items[1].label},
            failures={items[3].label: (FailureKind.REMOTE_FAILURE, "migration failed")},
        )
        scheduler = BoundedScheduler(
            items, adapter, max_concurrent=3, poll_interval=0.01, recorder=migration_state
        )

        await scheduler.run()

        summary = migration_state.get_run_summary(scheduler.run_state.run_id)
        assert summary["total"] == 6
        assert summary["concurrency_ceiling"] == 3
        assert summary["finished"]
        assert not summary["stopped"]
        assert summary["status_counts"] == {"succeeded": 4, "failed": 2}

    async def test_previously_succeeded_targets(self, migration_state: MigrationState) -> None:
        items = make_items(3)
        adapter = ScriptedAdapter(
            failures={items[0].label: (FailureKind.SUBMIT_FAILURE, "submit failed")}
        )
        await BoundedScheduler(
            items, adapter, max_concurrent=2, poll_interval=0.01, recorder=migration_state
        ).run()

        assert migration_state.previously_succeeded() == {
            ("contoso-gh", "Payments-repo-2"),
            ("contoso-gh", "Payments-repo-3"),
        }

    async def test_latest_run_is_listed_first(self, migration_state: MigrationState) -> None:
        first = BoundedScheduler(
            make_items(2), ScriptedAdapter(), 2, poll_interval=0.01, recorder=migration_state
        )
        await first.run()
        second = BoundedScheduler(
            make_items(3), ScriptedAdapter(), 2, poll_interval=0.01, recorder=migration_state
        )
        await second.run()

        runs = migration_state.list_runs()

        assert [run["run_id"] for run in runs] == [
            second.run_state.run_id,
            first.run_state.run_id,
        ]
        assert runs[0]["succeeded"] == 3
        assert migration_state.get_run_summary()["run_id"] == second.run_state.run_id
        assert len(migration_state.list_runs(limit=1)) == 1

    async def test_summary_counts_only_its_own_run(self, migration_state: MigrationState) -> None:
        first_items = make_items(2)
        first = BoundedScheduler(
            first_items,
            ScriptedAdapter(lock_failures={first_items[0].label}),
            2,
            poll_interval=0.01,
            recorder=migration_state,
        )
        await first.run()
        second = BoundedScheduler(
            make_items(3), ScriptedAdapter(), 2, poll_interval=0.01, recorder=migration_state
        )
        await second.run()

        first_summary = migration_state.get_run_summary(first.run_state.run_id)
        second_summary = migration_state.get_run_summary(second.run_state.run_id)

        assert first_summary["status_counts"] == {"succeeded": 1, "failed": 1}
        assert second_summary["status_counts"] == {"succeeded": 3}

    async def test_item_being_locked_is_in_flight(self, migration_state: MigrationState) -> None:
        items = make_items(3)
        adapter = ScriptedAdapter(lock_gated={items[1].label}, gated={items[0].label})
        scheduler = BoundedScheduler(
            items, adapter, max_concurrent=2, poll_interval=0.01, recorder=migration_state
        )

        task = asyncio.create_task(scheduler.run())
        await wait_until(
            lambda: adapter.started == [items[0].label]
            and adapter.prepared == labels_of(items[:2])
        )

        in_flight = migration_state.in_flight_items()
        assert [(entry["label"], entry["status"]) for entry in in_flight] == [
            (items[0].label, "running"),
            (items[1].label, "queued"),
        ]
        summary = migration_state.get_run_summary(scheduler.run_state.run_id)
        assert summary["status_counts"] == {"running": 1, "queued": 1, "pending": 1}

        adapter.release_lock(items[1].label)
        adapter.release(items[0].label)
        await task

        assert migration_state.in_flight_items() == []


class TestInFlight:
    def test_unfinished_run_reports_in_flight_items(self, migration_state: MigrationState) -> None:
        items = make_items(3)
        run_state = RunState(total=3, concurrency_ceiling=2, run_id="crashed")
        run_state.start(T0)
        migration_state.start_run(run_state, items)

        items[0].mark_queued()
        items[0].mark_running(T0)
        migration_state.record_dispatch("crashed", items[0])
        items[0].mark_succeeded(T0 + timedelta(minutes=5), "RM_00000001")
        migration_state.record_outcome("crashed", items[0])

        items[1].mark_queued()
        items[1].mark_running(T0 + timedelta(seconds=1))
        items[1].migration_id = "RM_00000002"
        migration_state.record_dispatch("crashed", items[1])

        in_flight = migration_state.in_flight_items()

        assert in_flight == [
            {
                "run_id": "crashed",
                "index": 2,
                "label": "Payments/repo-2",
                "source": "contoso/Payments/repo-2",
                "target": "contoso-gh/Payments-repo-2",
                "status": "running",
                "migration_id": "RM_00000002",
                "submitted_at": (T0 + timedelta(seconds=1)).replace(tzinfo=None).isoformat(),
            }
        ]
        summary = migration_state.get_run_summary("crashed")
        assert not summary["finished"]
        assert summary["status_counts"] == {"succeeded": 1, "running": 1, "pending": 1}

    def test_finished_runs_have_nothing_in_flight(self, migration_state: MigrationState) -> None:
        items = make_items(1)
        run_state = RunState(total=1, concurrency_ceiling=1)
        run_state.start(T0)
        migration_state.start_run(run_state, items)
        run_state.finish(T0)

        migration_state.finish_run(run_state, ResultAggregator(total=1).finalize(items))

        assert migration_state.in_flight_items() == []


class TestErrors:
    def test_duplicate_run_id(self, migration_state: MigrationState) -> None:
        run_state = RunState(total=1, concurrency_ceiling=1, run_id="dup")
        run_state.start(T0)
        migration_state.start_run(run_state, make_items(1))

        with pytest.raises(StateError, match="already recorded"):
            migration_state.start_run(run_state, make_items(1))

    def test_unknown_item(self, migration_state: MigrationState) -> None:
        (item,) = make_items(1)

        with pytest.raises(StateError, match="not recorded"):
            migration_state.record_outcome("missing-run", item)

    def test_unknown_run_summary(self, migration_state: MigrationState) -> None:
        assert migration_state.get_run_summary("missing-run") is None
        assert migration_state.get_run_summary() is None

    def test_unusable_database_path(self, tmp_path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        config = StateConfig(db_path=str(blocker / "state.db"))

        with pytest.raises(StateError, match="Failed to initialize"):
            MigrationState(config)
