"""
Terminal output for the CLI: status lines through click, tables through rich.

Status lines go to stdout except errors, so ``migrate run > run.txt`` still
shows failures on the terminal.
"""

from typing import Any

import click
from rich.console import Console
from rich.table import Table

from ado_migration.reporting.snapshot import RunSnapshot, format_duration

console = Console()


def echo_success(message: str) -> None:
    click.secho(f"✓ {message}", fg="green")


def echo_error(message: str) -> None:
    click.secho(f"✗ {message}", fg="red", err=True)


def echo_warning(message: str) -> None:
    click.secho(f"⚠ {message}", fg="yellow")


def echo_info(message: str) -> None:
    click.secho(f"ℹ {message}", fg="blue")


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[Any]],
    show_header: bool = True,
) -> None:
    """Render ``rows`` as a rich table; None cells print as blanks."""
    table = Table(title=title, show_header=show_header)

    for col in columns:
        table.add_column(col)

    for row in rows:
        table.add_row(*["" if cell is None else str(cell) for cell in row])

    console.print(table)


def print_stats(stats: dict[str, Any], title: str = "Statistics") -> None:
    """Two-column Metric/Value table; keys are shown title-cased."""
    rows = [[key.replace("_", " ").title(), str(value)] for key, value in stats.items()]
    print_table(title, ["Metric", "Value"], rows)


def print_snapshot(snapshot: RunSnapshot, show_succeeded: bool = False) -> None:
    """Print a run snapshot as summary, failure and (optionally) success tables."""
    stats = {
        **snapshot.summary(),
        "concurrency_ceiling": snapshot.concurrency_ceiling,
        "duration": format_duration(snapshot.duration_seconds),
        "stopped": "yes" if snapshot.stopped else "no",
    }
    print_stats(stats, title=f"Run {snapshot.run_id}")

    if snapshot.failed:
        print_table(
            "Failed",
            ["#", "Repository", "Target", "Phase", "Error"],
            [
                [
                    entry.index,
                    entry.label,
                    f"{entry.target['org']}/{entry.target['repo']}",
                    entry.failure_kind,
                    entry.error,
                ]
                for entry in snapshot.failed
            ],
        )

    if snapshot.incomplete:
        print_table(
            "Not Started",
            ["#", "Repository", "Target"],
            [
                [entry.index, entry.label, f"{entry.target['org']}/{entry.target['repo']}"]
                for entry in snapshot.incomplete
            ],
        )

    if show_succeeded and snapshot.succeeded:
        print_table(
            "Succeeded",
            ["#", "Repository", "Target", "Migration ID", "Duration"],
            [
                [
                    entry.index,
                    entry.label,
                    f"{entry.target['org']}/{entry.target['repo']}",
                    entry.migration_id,
                    format_duration(entry.duration_seconds),
                ]
                for entry in snapshot.succeeded
            ],
        )
