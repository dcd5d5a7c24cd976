"""
Migration execution commands.

This module provides commands for running a batch of repository migrations
from Azure DevOps to GitHub and for inspecting the resulting snapshot.
"""

import asyncio
import signal
from pathlib import Path

import click

from ado_migration.cli.context import MigrationContext
from ado_migration.cli.decorators import handle_errors, pass_context
from ado_migration.cli.utils import (
    echo_error,
    echo_info,
    echo_success,
    echo_warning,
    print_snapshot,
)
from ado_migration.client.github_client import GitHubClient
from ado_migration.client.migration_tool import MigrationToolClient
from ado_migration.config import MigrationConfig
from ado_migration.migration.adapter import MigrationAdapter, OperationAdapter
from ado_migration.migration.aggregator import AggregatorView, RunState
from ado_migration.migration.inputs import exclude_targets, load_work_items
from ado_migration.migration.scheduler import BoundedScheduler, RunRecorder
from ado_migration.migration.state import MigrationState
from ado_migration.migration.work_item import WorkItem
from ado_migration.reporting.progress import ProgressTracker
from ado_migration.reporting.snapshot import SnapshotExporter, load_snapshot, render_markdown
from ado_migration.utils.logging import get_logger

logger = get_logger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def build_adapter(config: MigrationConfig, dry_run: bool) -> tuple[MigrationAdapter, GitHubClient | None]:
    """Create the gh ado2gh adapter, with GitHub polling when a token is available."""
    tool = MigrationToolClient(config.tool, github_token=config.github.token, dry_run=dry_run)

    github = None
    if config.github.token and not dry_run:
        github = GitHubClient(config.github)
    else:
        logger.debug("github_polling_disabled", dry_run=dry_run)

    return MigrationAdapter(tool, config.tool, github=github), github


async def execute_run(
    items: list[WorkItem],
    adapter: OperationAdapter,
    max_concurrent: int,
    poll_interval: float,
    recorder: RunRecorder | None = None,
    enable_progress: bool = True,
    progress_log_every: int = 1,
) -> tuple[RunState, AggregatorView]:
    """Run the scheduler with SIGINT/SIGTERM mapped to a cooperative stop."""
    with ProgressTracker(total=len(items), enable=enable_progress) as tracker:
        scheduler = BoundedScheduler(
            items,
            adapter,
            max_concurrent=max_concurrent,
            poll_interval=poll_interval,
            recorder=recorder,
            progress_callback=tracker.callback,
            progress_log_every=progress_log_every,
        )

        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in STOP_SIGNALS:
            try:
                loop.add_signal_handler(
                    sig, scheduler.request_stop, f"received {sig.name}, draining running items"
                )
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                logger.debug("signal_handler_unavailable", signal=sig.name)

        try:
            view = await scheduler.run()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

    return scheduler.run_state, view


@click.group(name="migrate")
def migrate() -> None:
    """Run repository migrations and inspect their results."""


@migrate.command(name="run")
@click.option(
    "--input",
    "-i",
    "input_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Repository inventory CSV (ado_org, ado_team_project, ado_repo, github_org, github_repo)",
)
@click.option(
    "--max-concurrent",
    "-n",
    type=click.IntRange(min=1),
    help="Maximum migrations in flight (default: scheduler.max_concurrent)",
)
@click.option(
    "--poll-interval",
    type=click.FloatRange(min=0.001),
    help="Seconds between completion checks (default: scheduler.poll_interval)",
)
@click.option(
    "--resume",
    is_flag=True,
    default=False,
    help="Skip repositories a previous run already migrated",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Log the migration commands without running them",
)
@click.option(
    "--no-progress",
    is_flag=True,
    default=False,
    help="Disable the progress bar (CI/automation)",
)
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for the run snapshot and reports (default: paths.report_dir)",
)
@pass_context
@handle_errors
def run(
    ctx: MigrationContext,
    input_file: Path,
    max_concurrent: int | None,
    poll_interval: float | None,
    resume: bool,
    dry_run: bool,
    no_progress: bool,
    output_dir: Path | None,
) -> None:
    """Migrate every repository listed in an inventory CSV.

    Repositories are locked, queued and awaited with at most N migrations in
    flight. Ctrl+C stops dispatching new repositories; the ones already
    running are waited for before the snapshot is written.

    Exits with status 1 when any repository failed or was not started.

    Examples:

        \b
        # Migrate with the configured concurrency
        ado-bridge migrate run --input repos.csv

        \b
        # Rerun after a partial run, skipping migrated repositories
        ado-bridge migrate run --input repos.csv --resume -n 5
    """
    config = ctx.config
    dry_run = dry_run or config.dry_run
    max_concurrent = max_concurrent or config.scheduler.max_concurrent
    poll_interval = poll_interval or config.scheduler.poll_interval
    enable_progress = not (no_progress or config.logging.disable_progress)
    output_dir = output_dir or Path(config.paths.report_dir)

    items = load_work_items(input_file, default_github_org=config.github.default_org)

    state: MigrationState | None = ctx.migration_state if config.state.enabled else None

    if resume:
        if state is None:
            echo_warning("--resume ignored: state persistence is disabled")
        else:
            items, skipped = exclude_targets(items, state.previously_succeeded())
            if skipped:
                echo_info(f"Skipping {len(skipped)} repositories migrated by a previous run")
            if not items:
                echo_success("All repositories in the inventory are already migrated")
                return

    echo_info(
        f"Migrating {len(items)} repositories "
        f"(max {max_concurrent} concurrent{', dry run' if dry_run else ''})"
    )

    async def run_migrations() -> tuple[RunState, AggregatorView]:
        adapter, github = build_adapter(config, dry_run)
        try:
            return await execute_run(
                items,
                adapter,
                max_concurrent=max_concurrent,
                poll_interval=poll_interval,
                recorder=state,
                enable_progress=enable_progress,
                progress_log_every=config.scheduler.progress_log_every,
            )
        finally:
            if github is not None:
                await github.close()

    run_state, view = asyncio.run(run_migrations())

    exporter = SnapshotExporter(output_dir, config.paths)
    snapshot, files = exporter.export_run(run_state, view)

    click.echo()
    print_snapshot(snapshot)
    click.echo()
    echo_info(f"Snapshot: {files['snapshot']}")
    echo_info(f"Succeeded repositories: {files['succeeded_csv']}")
    echo_info(f"Failed repositories: {files['failed_csv']}")

    if snapshot.stopped:
        echo_warning(f"Run stopped: {snapshot.stop_reason}")

    if snapshot.has_failures:
        echo_error(
            f"{len(snapshot.failed)} failed, {len(snapshot.incomplete)} not started "
            f"(of {snapshot.total})"
        )
        raise click.exceptions.Exit(1)

    echo_success(f"All {snapshot.total} repositories migrated")


@migrate.command(name="report")
@click.argument(
    "snapshot_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--markdown", is_flag=True, help="Print the Markdown summary instead of tables")
@click.option("--show-succeeded", is_flag=True, help="Also list migrated repositories")
@pass_context
@handle_errors
def report(
    ctx: MigrationContext, snapshot_file: Path, markdown: bool, show_succeeded: bool
) -> None:
    """Show the results recorded in a run snapshot.

    Examples:

        ado-bridge migrate report reports/migration-snapshot.json
    """
    snapshot = load_snapshot(snapshot_file)

    if markdown:
        click.echo(render_markdown(snapshot))
        return

    print_snapshot(snapshot, show_succeeded=show_succeeded)
