from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from ado_migration.client.exceptions import LockFailure
from ado_migration.config import StateConfig
from ado_migration.migration.adapter import Outcome, utcnow
from ado_migration.migration.database import dispose_engine
from ado_migration.migration.state import MigrationState
from ado_migration.migration.work_item import FailureKind, SourceRepo, TargetRepo, WorkItem

INVENTORY_HEADER = "ado_org,ado_team_project,ado_repo,github_org,github_repo\n"


def make_item(index: int, org: str = "contoso", project: str = "Payments") -> WorkItem:
    source = SourceRepo(org=org, project=project, repo=f"repo-{index}")
    target = TargetRepo(org="contoso-gh", repo=f"{project}-repo-{index}")
    return WorkItem(index=index, label=f"{project}/repo-{index}", source=source, target=target)


def make_items(count: int) -> list[WorkItem]:
    return [make_item(i) for i in range(1, count + 1)]


def write_inventory(path: Path, rows: list[tuple[str, ...]], header: str = INVENTORY_HEADER) -> Path:
    path.write_text(header + "".join(",".join(row) + "\n" for row in rows), encoding="utf-8")
    return path


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class ScriptedAdapter:
    """Operation adapter double with per-label behavior.

    Records how many operations were running at once so tests can check the
    concurrency ceiling from the adapter's side too.
    """

    def __init__(
        self,
        delays: dict[str, float] | None = None,
        lock_failures: set[str] | None = None,
        failures: dict[str, tuple[FailureKind, str]] | None = None,
        raises: dict[str, BaseException] | None = None,
        gated: set[str] | None = None,
        lock_gated: set[str] | None = None,
        default_delay: float = 0.01,
    ):
        self.delays = delays or {}
        self.lock_failures = lock_failures or set()
        self.failures = failures or {}
        self.raises = raises or {}
        self.gates = {label: asyncio.Event() for label in (gated or set())}
        self.lock_gates = {label: asyncio.Event() for label in (lock_gated or set())}
        self.default_delay = default_delay

        self.prepared: list[str] = []
        self.started: list[str] = []
        self.finished: list[str] = []
        self.running = 0
        self.max_running = 0

    def release(self, label: str) -> None:
        self.gates[label].set()

    def release_lock(self, label: str) -> None:
        self.lock_gates[label].set()

    async def prepare(self, item: WorkItem) -> None:
        self.prepared.append(item.label)
        lock_gate = self.lock_gates.get(item.label)
        if lock_gate is not None:
            await lock_gate.wait()
        if item.label in self.lock_failures:
            raise LockFailure("lock failed", returncode=1, output="TF401019: repository not found")

    async def run(self, item: WorkItem) -> Outcome:
        self.started.append(item.label)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            gate = self.gates.get(item.label)
            if gate is not None:
                await gate.wait()
            else:
                await asyncio.sleep(self.delays.get(item.label, self.default_delay))

            if item.label in self.raises:
                raise self.raises[item.label]
            if item.label in self.failures:
                kind, message = self.failures[item.label]
                return Outcome.failure(utcnow(), kind, message)
            return Outcome.success(utcnow(), migration_id=f"RM_{item.index:08d}")
        finally:
            self.running -= 1
            self.finished.append(item.label)


class RecordingRecorder:
    """In-memory run recorder."""

    def __init__(self):
        self.calls: list[tuple[str, str | None]] = []

    def start_run(self, run_state, items) -> None:
        self.calls.append(("start_run", None))

    def record_queued(self, run_id, item) -> None:
        self.calls.append(("record_queued", item.label))

    def record_dispatch(self, run_id, item) -> None:
        self.calls.append(("record_dispatch", item.label))

    def record_outcome(self, run_id, item) -> None:
        self.calls.append(("record_outcome", item.label))

    def finish_run(self, run_state, view) -> None:
        self.calls.append(("finish_run", None))


@pytest.fixture
def items() -> list[WorkItem]:
    return make_items(10)


@pytest.fixture
def state_config(tmp_path: Path) -> StateConfig:
    return StateConfig(db_path=str(tmp_path / "state.db"))


@pytest.fixture
def migration_state(state_config: StateConfig) -> MigrationState:
    state = MigrationState(state_config)
    yield state  # type: ignore[misc]
    dispose_engine(state.database_url)
