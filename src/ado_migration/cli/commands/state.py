"""
State management commands.

This module provides commands for inspecting recorded runs, finding items a
crashed run left in flight, and resetting the state database.
"""

import click

from ado_migration.cli.context import MigrationContext
from ado_migration.cli.decorators import confirm_action, handle_errors, pass_context
from ado_migration.cli.utils import (
    echo_info,
    echo_success,
    echo_warning,
    print_stats,
    print_table,
)
from ado_migration.migration.database import dispose_engine, reset_database
from ado_migration.reporting.snapshot import format_duration
from ado_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="state")
def state() -> None:
    """Migration state management commands.

    Inspect recorded runs and the per-repository progress stored in the
    state database.
    """
    pass


@state.command(name="show")
@click.option("--run-id", help="Run to show (default: most recent)")
@click.option("--limit", default=10, show_default=True, help="Number of runs to list")
@pass_context
@handle_errors
def show_state(ctx: MigrationContext, run_id: str | None, limit: int) -> None:
    """Show recorded runs and the summary of one of them.

    Examples:

        \b
        ado-bridge state show
        ado-bridge state show --run-id 3f2c...
    """
    migration_state = ctx.migration_state

    runs = migration_state.list_runs(limit=limit)
    if not runs:
        echo_info(f"No runs recorded in {ctx.config.state.db_path}")
        return

    print_table(
        "Recorded Runs",
        ["Run ID", "Started", "Finished", "Total", "Succeeded", "Failed", "Incomplete"],
        [
            [
                run["run_id"],
                run["started_at"],
                "yes" if run["finished"] else "no",
                run["total"],
                run["succeeded"],
                run["failed"],
                run["incomplete"],
            ]
            for run in runs
        ],
    )

    summary = migration_state.get_run_summary(run_id)
    if summary is None:
        echo_warning(f"Run not found: {run_id}")
        return

    click.echo()
    stats = {
        "total": summary["total"],
        "concurrency_ceiling": summary["concurrency_ceiling"],
        "started_at": summary["started_at"],
        "ended_at": summary["ended_at"] or "never (crashed or still running)",
        "duration": format_duration(summary["duration_seconds"]),
        "stopped": "yes" if summary["stopped"] else "no",
        **{f"items_{status}": count for status, count in sorted(summary["status_counts"].items())},
    }
    print_stats(stats, title=f"Run {summary['run_id']}")


@state.command(name="in-flight")
@pass_context
@handle_errors
def in_flight(ctx: MigrationContext) -> None:
    """List repositories left queued or running by unfinished runs.

    These repositories may be locked in Azure DevOps or have a partially
    created GitHub repository; check them before migrating them again.
    """
    items = ctx.migration_state.in_flight_items()
    if not items:
        echo_success("No repositories left in flight")
        return

    print_table(
        "In-Flight Repositories",
        ["Run ID", "#", "Repository", "Target", "Status", "Migration ID", "Submitted"],
        [
            [
                item["run_id"],
                item["index"],
                item["label"],
                item["target"],
                item["status"],
                item["migration_id"],
                item["submitted_at"],
            ]
            for item in items
        ],
    )
    echo_warning(f"{len(items)} repositories need manual checking")


@state.command(name="reset")
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Skip confirmation prompt",
)
@pass_context
@handle_errors
@confirm_action(
    message="This will delete all recorded runs. Are you sure?",
    abort_message="Reset cancelled",
)
def reset_state(ctx: MigrationContext, yes: bool) -> None:
    """Delete all recorded runs.

    --resume will no longer know which repositories were migrated.
    """
    database_url = ctx.migration_state.database_url

    echo_warning("Resetting ALL migration state")
    reset_database(database_url)
    dispose_engine(database_url)

    echo_success("Migration state has been reset")
