"""Reporting and progress tracking for repository migration runs."""

from ado_migration.reporting.progress import ProgressTracker
from ado_migration.reporting.snapshot import (
    FailedEntry,
    FollowUpEntry,
    IncompleteEntry,
    RunSnapshot,
    SnapshotExporter,
    SucceededEntry,
    build_snapshot,
    load_snapshot,
    render_markdown,
)

__all__ = [
    "ProgressTracker",
    "RunSnapshot",
    "SucceededEntry",
    "FailedEntry",
    "IncompleteEntry",
    "FollowUpEntry",
    "SnapshotExporter",
    "build_snapshot",
    "load_snapshot",
    "render_markdown",
]
