"""Async wrapper around the ``gh ado2gh`` migration command-line tool.

Each call spawns one tool process with ``asyncio.create_subprocess_exec`` so
that many migrations can wait concurrently on the same event loop.
"""

import asyncio
import os
import shlex
import time
from dataclasses import dataclass

from ado_migration.client.exceptions import LockFailure, RemoteFailure, SubmitFailure, ToolError
from ado_migration.config import ToolConfig
from ado_migration.migration.work_item import SourceRepo, TargetRepo
from ado_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ToolResult:
    """Result of one tool invocation."""

    args: list[str]
    returncode: int
    output: str
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return shlex.join(self.args)


class MigrationToolClient:
    """Runs the lock, migrate and wait commands of the migration tool.

    Usage:
        client = MigrationToolClient(config.tool, github_token=token)
        await client.lock_repo(source)
        result = await client.queue_migration(source, target)
        await client.wait_for_migration(migration_id, timeout=3600)
    """

    def __init__(
        self,
        config: ToolConfig,
        github_token: str | None = None,
        dry_run: bool = False,
    ):
        """Initialize the tool client.

        Args:
            config: Tool configuration
            github_token: Token exported to the tool as GH_PAT (None keeps the environment's)
            dry_run: Log commands instead of running them
        """
        self.config = config
        self.dry_run = dry_run
        self._env = dict(os.environ)
        if github_token:
            self._env["GH_PAT"] = github_token

        logger.info(
            "migration_tool_client_initialized",
            executable=config.executable,
            extension=config.extension,
            dry_run=dry_run,
        )

    def _build_args(self, command: str, *options: str) -> list[str]:
        return [self.config.executable, self.config.extension, command, *options]

    async def run(self, args: list[str], timeout: float) -> ToolResult:
        """Run one tool command and capture its combined output.

        Args:
            args: Full argument vector, executable first
            timeout: Seconds before the process is killed

        Returns:
            ToolResult with exit code and output

        Raises:
            TimeoutError: If the process did not exit within ``timeout``
            OSError: If the executable could not be started
        """
        if self.dry_run:
            result = ToolResult(args=args, returncode=0, output="")
            result.output = f"[dry-run] {result.command_line}"
            logger.info("tool_command_dry_run", command=result.command_line)
            return result

        start_time = time.monotonic()
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=self._env,
        )

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        result = ToolResult(
            args=args,
            returncode=process.returncode if process.returncode is not None else -1,
            output=stdout.decode(errors="replace") if stdout else "",
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )

        logger.debug(
            "tool_command_finished",
            command=result.command_line,
            returncode=result.returncode,
            duration_ms=result.duration_ms,
        )

        return result

    async def _run_phase(
        self,
        error_class: type[ToolError],
        phase: str,
        args: list[str],
        timeout: float,
    ) -> ToolResult:
        try:
            result = await self.run(args, timeout)
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise error_class(f"{phase} timed out after {timeout:g}s") from e
        except OSError as e:
            raise error_class(f"{phase} could not start {args[0]!r}: {e}") from e

        if not result.ok:
            raise error_class(f"{phase} failed", returncode=result.returncode, output=result.output)

        return result

    async def lock_repo(self, source: SourceRepo) -> ToolResult:
        """Lock the Azure DevOps repository so it cannot change during migration.

        Raises:
            LockFailure: If the lock command failed
        """
        args = self._build_args(
            "lock-ado-repo",
            "--ado-org",
            source.org,
            "--ado-team-project",
            source.project,
            "--ado-repo",
            source.repo,
        )
        return await self._run_phase(LockFailure, "lock", args, self.config.queue_timeout)

    async def queue_migration(self, source: SourceRepo, target: TargetRepo) -> ToolResult:
        """Queue a repository migration without waiting for it.

        Raises:
            SubmitFailure: If the migration could not be queued
        """
        args = self._build_args(
            "migrate-repo",
            "--ado-org",
            source.org,
            "--ado-team-project",
            source.project,
            "--ado-repo",
            source.repo,
            "--github-org",
            target.org,
            "--github-repo",
            target.repo,
            "--target-repo-visibility",
            self.config.target_repo_visibility,
            "--queue-only",
            *self.config.extra_args,
        )
        return await self._run_phase(SubmitFailure, "submit", args, self.config.queue_timeout)

    async def wait_for_migration(self, migration_id: str, timeout: float) -> ToolResult:
        """Block (asynchronously) until the migration finishes.

        Raises:
            RemoteFailure: If the migration failed or did not finish within ``timeout``
        """
        args = self._build_args("wait-for-migration", "--migration-id", migration_id)
        return await self._run_phase(RemoteFailure, "wait", args, timeout)
