"""Operation adapter: lock, queue and await one repository migration.

The scheduler drives every migration through two calls:

1. ``prepare(item)`` - lock the source repository. Awaited by the scheduler
   before the item takes a slot; a ``LockFailure`` here fails the item without
   it ever occupying a slot.
2. ``run(item)`` - queue the migration, extract its migration ID from the tool
   output and wait for it to finish. Runs as a task in a slot and always
   returns an ``Outcome``; failures are data, not exceptions.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from ado_migration.client.correlation import CorrelationExtractor, extract_migration_id
from ado_migration.client.exceptions import (
    LockFailure,
    RemoteFailure,
    SubmitFailure,
    ToolError,
)
from ado_migration.client.github_client import GitHubClient
from ado_migration.client.migration_tool import MigrationToolClient
from ado_migration.config import ToolConfig
from ado_migration.migration.work_item import FailureKind, WorkItem
from ado_migration.utils.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Outcome:
    """Terminal result of one migration operation."""

    succeeded: bool
    completed_at: datetime
    migration_id: str | None = None
    failure_kind: FailureKind | None = None
    error: str | None = None

    @classmethod
    def success(cls, completed_at: datetime, migration_id: str | None = None) -> "Outcome":
        return cls(succeeded=True, completed_at=completed_at, migration_id=migration_id)

    @classmethod
    def failure(
        cls,
        completed_at: datetime,
        failure_kind: FailureKind,
        error: str,
        migration_id: str | None = None,
    ) -> "Outcome":
        return cls(
            succeeded=False,
            completed_at=completed_at,
            migration_id=migration_id,
            failure_kind=failure_kind,
            error=error,
        )


class OperationAdapter(Protocol):
    """What the scheduler needs from a migration backend."""

    async def prepare(self, item: WorkItem) -> None:
        """Put the source into its pre-migration state. Raises ``LockFailure``."""
        ...

    async def run(self, item: WorkItem) -> Outcome:
        """Migrate the item and return its terminal outcome. Never raises."""
        ...


def failure_kind_for(error: BaseException, default: FailureKind) -> FailureKind:
    """Map an exception raised by a migration phase to a failure kind."""
    if isinstance(error, LockFailure):
        return FailureKind.LOCK_FAILURE
    if isinstance(error, SubmitFailure):
        return FailureKind.SUBMIT_FAILURE
    if isinstance(error, RemoteFailure):
        return FailureKind.REMOTE_FAILURE
    return default


class MigrationAdapter:
    """Drives the ``gh ado2gh`` lock/migrate/wait commands for one work item.

    When the tool output yields no migration ID the adapter waits by polling
    GitHub for the newest migration into the target repository instead.
    """

    def __init__(
        self,
        tool: MigrationToolClient,
        config: ToolConfig,
        github: GitHubClient | None = None,
        extractor: CorrelationExtractor = extract_migration_id,
        poll_interval: float | None = None,
        clock: Clock = utcnow,
    ):
        """Initialize the adapter.

        Args:
            tool: Client that runs the migration tool
            config: Tool configuration (lock toggle, wait timeout)
            github: GitHub client for polling by repository name (optional)
            extractor: Function that pulls a migration ID out of tool output
            poll_interval: Override for the GitHub polling interval
            clock: Source of completion timestamps
        """
        self.tool = tool
        self.config = config
        self.github = github
        self.extractor = extractor
        self.poll_interval = poll_interval
        self.clock = clock

    async def prepare(self, item: WorkItem) -> None:
        """Lock the source repository.

        Raises:
            LockFailure: If the repository could not be locked
        """
        if not self.config.lock_source:
            logger.debug("source_lock_skipped", label=item.label)
            return

        try:
            await self.tool.lock_repo(item.source)
        except LockFailure:
            raise
        except Exception as e:
            raise LockFailure(f"lock failed unexpectedly: {type(e).__name__}: {e}") from e

        logger.info("source_locked", label=item.label, source=str(item.source))

    async def run(self, item: WorkItem) -> Outcome:
        """Queue the migration and wait for it to reach a terminal state."""
        migration_id: str | None = None
        phase = FailureKind.SUBMIT_FAILURE

        try:
            result = await self.tool.queue_migration(item.source, item.target)
            migration_id = self.extractor(result.output)
            logger.info(
                "migration_queued",
                label=item.label,
                target=str(item.target),
                migration_id=migration_id,
            )

            phase = FailureKind.REMOTE_FAILURE
            migration_id = await self._await_completion(item, migration_id)

        except ToolError as e:
            kind = failure_kind_for(e, phase)
            logger.warning(
                "migration_failed",
                label=item.label,
                failure_kind=kind.value,
                migration_id=migration_id,
                error=str(e),
            )
            return Outcome.failure(self.clock(), kind, str(e), migration_id)

        except Exception as e:
            logger.error(
                "migration_failed_unexpectedly",
                label=item.label,
                failure_kind=phase.value,
                error=str(e),
                exc_info=True,
            )
            return Outcome.failure(
                self.clock(),
                phase,
                f"unexpected {type(e).__name__} during {phase.value}: {e}",
                migration_id,
            )

        logger.info("migration_succeeded", label=item.label, migration_id=migration_id)
        return Outcome.success(self.clock(), migration_id)

    async def _await_completion(self, item: WorkItem, migration_id: str | None) -> str | None:
        """Wait for the queued migration; returns the migration ID if one became known."""
        timeout = float(self.config.wait_timeout)

        if self.tool.dry_run:
            return migration_id

        if migration_id:
            await self.tool.wait_for_migration(migration_id, timeout)
            return migration_id

        if self.github is None:
            raise RemoteFailure(
                "wait impossible: no migration ID in tool output and no GitHub client configured"
            )

        logger.info(
            "migration_id_missing_polling_by_target",
            label=item.label,
            target=str(item.target),
        )
        migration = await self.github.wait_for_repository_migration(
            item.target.org,
            item.target.repo,
            timeout=timeout,
            poll_interval=self.poll_interval,
        )
        return migration.get("id")
