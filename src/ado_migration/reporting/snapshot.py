"""Run snapshot export.

A ``RunSnapshot`` is the immutable record of one finished scheduler run and
the only artifact later phases (validation, pipeline rewiring, disabling the
source repositories) read. Everything they need is in the JSON file itself:
``load_snapshot`` rebuilds the snapshot without any scheduler state.

Exporting the same final state twice produces identical bytes apart from the
``exported_at`` field.
"""

import csv
import json
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ado_migration.client.exceptions import StateError, ValidationError
from ado_migration.config import PathConfig
from ado_migration.migration.aggregator import AggregatorView, RunState
from ado_migration.migration.work_item import WorkItem, WorkItemStatus
from ado_migration.utils.logging import get_logger, redact_tokens

logger = get_logger(__name__)

SNAPSHOT_VERSION = "1.0"

# Same columns as the input inventory, so a follow-up CSV can be fed back in
INVENTORY_COLUMNS = ["ado_org", "ado_team_project", "ado_repo", "github_org", "github_repo"]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def format_duration(seconds: float | None) -> str:
    """Format a duration as ``1h 2m 3s``."""
    if seconds is None:
        return "N/A"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    elif minutes > 0:
        return f"{minutes}m {secs}s"
    else:
        return f"{seconds:.1f}s"


@dataclass(frozen=True)
class SucceededEntry:
    """A repository that was migrated."""

    index: int
    label: str
    source: dict[str, str]
    target: dict[str, str]
    migration_id: str | None
    submitted_at: str | None
    completed_at: str | None
    duration_seconds: float | None

    @classmethod
    def from_item(cls, item: WorkItem) -> "SucceededEntry":
        return cls(
            index=item.index,
            label=item.label,
            source=item.source.to_dict(),
            target=item.target.to_dict(),
            migration_id=item.migration_id,
            submitted_at=_iso(item.submitted_at),
            completed_at=_iso(item.completed_at),
            duration_seconds=item.duration_seconds,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "label": self.label,
            "source": dict(self.source),
            "target": dict(self.target),
            "migration_id": self.migration_id,
            "submitted_at": self.submitted_at,
            "completed_at": self.completed_at,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SucceededEntry":
        return cls(
            index=data["index"],
            label=data["label"],
            source=dict(data["source"]),
            target=dict(data["target"]),
            migration_id=data.get("migration_id"),
            submitted_at=data.get("submitted_at"),
            completed_at=data.get("completed_at"),
            duration_seconds=data.get("duration_seconds"),
        )


@dataclass(frozen=True)
class FailedEntry:
    """A repository whose migration failed, with the failing phase."""

    index: int
    label: str
    source: dict[str, str]
    target: dict[str, str]
    failure_kind: str | None
    error: str | None
    migration_id: str | None
    submitted_at: str | None
    failed_at: str | None
    duration_seconds: float | None

    @classmethod
    def from_item(cls, item: WorkItem) -> "FailedEntry":
        return cls(
            index=item.index,
            label=item.label,
            source=item.source.to_dict(),
            target=item.target.to_dict(),
            failure_kind=item.failure_kind.value if item.failure_kind else None,
            error=redact_tokens(item.error) if item.error else item.error,
            migration_id=item.migration_id,
            submitted_at=_iso(item.submitted_at),
            failed_at=_iso(item.completed_at),
            duration_seconds=item.duration_seconds,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "label": self.label,
            "source": dict(self.source),
            "target": dict(self.target),
            "failure_kind": self.failure_kind,
            "error": self.error,
            "migration_id": self.migration_id,
            "submitted_at": self.submitted_at,
            "failed_at": self.failed_at,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FailedEntry":
        return cls(
            index=data["index"],
            label=data["label"],
            source=dict(data["source"]),
            target=dict(data["target"]),
            failure_kind=data.get("failure_kind"),
            error=data.get("error"),
            migration_id=data.get("migration_id"),
            submitted_at=data.get("submitted_at"),
            failed_at=data.get("failed_at"),
            duration_seconds=data.get("duration_seconds"),
        )


@dataclass(frozen=True)
class IncompleteEntry:
    """A repository never dispatched because the run was stopped."""

    index: int
    label: str
    source: dict[str, str]
    target: dict[str, str]
    status: str

    @classmethod
    def from_item(cls, item: WorkItem) -> "IncompleteEntry":
        return cls(
            index=item.index,
            label=item.label,
            source=item.source.to_dict(),
            target=item.target.to_dict(),
            status=item.status.value,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "label": self.label,
            "source": dict(self.source),
            "target": dict(self.target),
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IncompleteEntry":
        return cls(
            index=data["index"],
            label=data["label"],
            source=dict(data["source"]),
            target=dict(data["target"]),
            status=data.get("status", WorkItemStatus.PENDING.value),
        )


@dataclass(frozen=True)
class FollowUpEntry:
    """A migrated repository that later phases should process."""

    ado_org: str
    ado_team_project: str
    ado_repo: str
    github_org: str
    github_repo: str
    migration_id: str | None

    @classmethod
    def from_succeeded(cls, entry: SucceededEntry) -> "FollowUpEntry":
        return cls(
            ado_org=entry.source["org"],
            ado_team_project=entry.source["project"],
            ado_repo=entry.source["repo"],
            github_org=entry.target["org"],
            github_repo=entry.target["repo"],
            migration_id=entry.migration_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "ado_org": self.ado_org,
            "ado_team_project": self.ado_team_project,
            "ado_repo": self.ado_repo,
            "github_org": self.github_org,
            "github_repo": self.github_repo,
            "migration_id": self.migration_id,
        }


@dataclass(frozen=True)
class RunSnapshot:
    """Immutable, self-contained record of one scheduler run."""

    run_id: str
    total: int
    concurrency_ceiling: int
    started_at: str | None
    ended_at: str | None
    duration_seconds: float | None
    stopped: bool
    stop_reason: str | None
    exported_at: str
    succeeded: tuple[SucceededEntry, ...] = ()
    failed: tuple[FailedEntry, ...] = ()
    incomplete: tuple[IncompleteEntry, ...] = ()
    snapshot_version: str = SNAPSHOT_VERSION
    follow_up: tuple[FollowUpEntry, ...] = field(init=False)

    def __post_init__(self) -> None:
        # Succeeded items are the inputs of every later phase
        object.__setattr__(
            self, "follow_up", tuple(FollowUpEntry.from_succeeded(e) for e in self.succeeded)
        )

    @property
    def is_balanced(self) -> bool:
        return len(self.succeeded) + len(self.failed) + len(self.incomplete) == self.total

    @property
    def has_failures(self) -> bool:
        return bool(self.failed or self.incomplete)

    def summary(self) -> dict[str, Any]:
        completed = len(self.succeeded) + len(self.failed)
        return {
            "total": self.total,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "incomplete": len(self.incomplete),
            "success_rate": round(len(self.succeeded) / completed * 100, 1) if completed else 0.0,
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize with a fixed key order."""
        return {
            "snapshot_version": self.snapshot_version,
            "run_id": self.run_id,
            "exported_at": self.exported_at,
            "total": self.total,
            "concurrency_ceiling": self.concurrency_ceiling,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_seconds": self.duration_seconds,
            "stopped": self.stopped,
            "stop_reason": self.stop_reason,
            "summary": self.summary(),
            "succeeded": [entry.to_dict() for entry in self.succeeded],
            "failed": [entry.to_dict() for entry in self.failed],
            "incomplete": [entry.to_dict() for entry in self.incomplete],
            "follow_up": [entry.to_dict() for entry in self.follow_up],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False) + "\n"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunSnapshot":
        """Rebuild a snapshot from its serialized form.

        Raises:
            ValidationError: If required fields are missing or the item
                counts do not add up to ``total``
        """
        try:
            snapshot = cls(
                run_id=data["run_id"],
                total=data["total"],
                concurrency_ceiling=data["concurrency_ceiling"],
                started_at=data.get("started_at"),
                ended_at=data.get("ended_at"),
                duration_seconds=data.get("duration_seconds"),
                stopped=bool(data.get("stopped", False)),
                stop_reason=data.get("stop_reason"),
                exported_at=data["exported_at"],
                succeeded=tuple(SucceededEntry.from_dict(e) for e in data.get("succeeded", [])),
                failed=tuple(FailedEntry.from_dict(e) for e in data.get("failed", [])),
                incomplete=tuple(IncompleteEntry.from_dict(e) for e in data.get("incomplete", [])),
                snapshot_version=data.get("snapshot_version", SNAPSHOT_VERSION),
            )
        except (KeyError, TypeError) as e:
            raise ValidationError(f"Invalid snapshot: missing or malformed field {e}") from e

        if not snapshot.is_balanced:
            raise ValidationError(
                f"Invalid snapshot: {len(snapshot.succeeded)} succeeded + "
                f"{len(snapshot.failed)} failed + {len(snapshot.incomplete)} incomplete "
                f"!= {snapshot.total} total"
            )
        return snapshot


def build_snapshot(
    run_state: RunState, view: AggregatorView, exported_at: datetime | None = None
) -> RunSnapshot:
    """Create the snapshot of a finished run.

    Raises:
        StateError: If the run has not finished or its results do not balance
    """
    if not view.final:
        raise StateError("Cannot export a run that has not been finalized")
    if not view.is_balanced:
        raise StateError(
            f"Cannot export unbalanced results: {view.completed} terminal + "
            f"{len(view.incomplete)} incomplete != {view.total} total"
        )
    if run_state.ended_at is None:
        raise StateError(f"Run {run_state.run_id} has not finished")

    exported_at = exported_at or datetime.now(UTC)

    return RunSnapshot(
        run_id=run_state.run_id,
        total=run_state.total,
        concurrency_ceiling=run_state.concurrency_ceiling,
        started_at=_iso(run_state.started_at),
        ended_at=_iso(run_state.ended_at),
        duration_seconds=run_state.duration_seconds,
        stopped=run_state.stopped,
        stop_reason=run_state.stop_reason,
        exported_at=exported_at.isoformat(),
        succeeded=tuple(SucceededEntry.from_item(item) for item in view.succeeded),
        failed=tuple(FailedEntry.from_item(item) for item in view.failed),
        incomplete=tuple(IncompleteEntry.from_item(item) for item in view.incomplete),
    )


def load_snapshot(path: str | Path) -> RunSnapshot:
    """Read a snapshot JSON file.

    Raises:
        ValidationError: If the file is missing or is not a valid snapshot
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ValidationError(f"Snapshot not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ValidationError(f"Snapshot {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError(f"Snapshot {path} must contain a JSON object")
    return RunSnapshot.from_dict(data)


def render_markdown(snapshot: RunSnapshot) -> str:
    """Human-readable run summary."""
    summary = snapshot.summary()
    lines = [
        "# Repository Migration Summary",
        "",
        f"**Run ID:** `{snapshot.run_id}`  ",
        f"**Exported:** {snapshot.exported_at}  ",
        f"**Status:** {'stopped' if snapshot.stopped else 'completed'}  ",
        "",
        "## Run",
        "",
        f"- **Start Time:** {snapshot.started_at or 'N/A'}",
        f"- **End Time:** {snapshot.ended_at or 'N/A'}",
        f"- **Duration:** {format_duration(snapshot.duration_seconds)}",
        f"- **Concurrency Ceiling:** {snapshot.concurrency_ceiling}",
    ]
    if snapshot.stop_reason:
        lines.append(f"- **Stop Reason:** {snapshot.stop_reason}")

    lines.extend(
        [
            "",
            "## Results",
            "",
            "| Metric | Count |",
            "|--------|------:|",
            f"| Total | {summary['total']:,} |",
            f"| Succeeded | {summary['succeeded']:,} |",
            f"| Failed | {summary['failed']:,} |",
            f"| Incomplete | {summary['incomplete']:,} |",
            f"| Success Rate | {summary['success_rate']:.1f}% |",
            "",
        ]
    )

    if snapshot.failed:
        lines.extend(
            [
                "## Failed",
                "",
                "| Repository | Target | Phase | Error |",
                "|------------|--------|-------|-------|",
            ]
        )
        for entry in snapshot.failed:
            error = (entry.error or "").replace("|", "\\|").replace("\n", " ")
            lines.append(
                f"| {entry.label} | {entry.target['org']}/{entry.target['repo']} "
                f"| {entry.failure_kind or 'unknown'} | {error} |"
            )
        lines.append("")

    if snapshot.incomplete:
        lines.extend(["## Not Started", ""])
        lines.extend(f"- {entry.label}" for entry in snapshot.incomplete)
        lines.append("")

    if snapshot.succeeded:
        lines.extend(
            [
                "## Succeeded",
                "",
                "| Repository | Target | Migration ID | Duration |",
                "|------------|--------|--------------|---------:|",
            ]
        )
        for entry in snapshot.succeeded:
            lines.append(
                f"| {entry.label} | {entry.target['org']}/{entry.target['repo']} "
                f"| {entry.migration_id or '-'} | {format_duration(entry.duration_seconds)} |"
            )
        lines.append("")

    return "\n".join(lines)


def _write_atomic(path: Path, content: str) -> None:
    """Write via a temporary file so a crash never leaves a partial file."""
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(content, encoding="utf-8")
    os.replace(tmp_path, path)


class SnapshotExporter:
    """Writes a run snapshot and its companion files to a report directory.

    Files written (names from ``PathConfig``):
    - snapshot JSON, the hand-off artifact for later phases
    - succeeded CSV in inventory format, the input of later phases
    - failed CSV with the failing phase and error, for a retry run
    - Markdown summary for humans
    """

    def __init__(self, output_dir: str | Path, paths: PathConfig | None = None):
        self.output_dir = Path(output_dir)
        self.paths = paths or PathConfig()

    def build(
        self, run_state: RunState, view: AggregatorView, exported_at: datetime | None = None
    ) -> RunSnapshot:
        return build_snapshot(run_state, view, exported_at)

    def export(self, snapshot: RunSnapshot) -> dict[str, Path]:
        """Write all report files; returns their paths by kind."""
        self.output_dir.mkdir(parents=True, exist_ok=True)

        files = {
            "snapshot": self.output_dir / self.paths.snapshot_name,
            "succeeded_csv": self.output_dir / self.paths.succeeded_csv,
            "failed_csv": self.output_dir / self.paths.failed_csv,
            "summary": self.output_dir / self.paths.summary_md,
        }

        _write_atomic(files["snapshot"], snapshot.to_json())
        self._write_succeeded_csv(files["succeeded_csv"], snapshot)
        self._write_failed_csv(files["failed_csv"], snapshot)
        _write_atomic(files["summary"], render_markdown(snapshot))

        logger.info(
            "snapshot_exported",
            run_id=snapshot.run_id,
            path=str(files["snapshot"]),
            **snapshot.summary(),
        )
        return files

    def export_run(
        self, run_state: RunState, view: AggregatorView, exported_at: datetime | None = None
    ) -> tuple[RunSnapshot, dict[str, Path]]:
        snapshot = self.build(run_state, view, exported_at)
        return snapshot, self.export(snapshot)

    @staticmethod
    def _write_succeeded_csv(path: Path, snapshot: RunSnapshot) -> None:
        tmp_path = path.with_name(f".{path.name}.tmp")
        with tmp_path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=[*INVENTORY_COLUMNS, "migration_id"])
            writer.writeheader()
            for entry in snapshot.follow_up:
                writer.writerow(entry.to_dict())
        os.replace(tmp_path, path)

    @staticmethod
    def _write_failed_csv(path: Path, snapshot: RunSnapshot) -> None:
        tmp_path = path.with_name(f".{path.name}.tmp")
        with tmp_path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(
                f, fieldnames=[*INVENTORY_COLUMNS, "status", "failure_kind", "error"]
            )
            writer.writeheader()
            for entry in snapshot.failed:
                writer.writerow(
                    {
                        "ado_org": entry.source["org"],
                        "ado_team_project": entry.source["project"],
                        "ado_repo": entry.source["repo"],
                        "github_org": entry.target["org"],
                        "github_repo": entry.target["repo"],
                        "status": "failed",
                        "failure_kind": entry.failure_kind or "",
                        "error": entry.error or "",
                    }
                )
            for entry in snapshot.incomplete:
                writer.writerow(
                    {
                        "ado_org": entry.source["org"],
                        "ado_team_project": entry.source["project"],
                        "ado_repo": entry.source["repo"],
                        "github_org": entry.target["org"],
                        "github_repo": entry.target["repo"],
                        "status": "incomplete",
                        "failure_kind": "",
                        "error": "",
                    }
                )
        os.replace(tmp_path, path)
