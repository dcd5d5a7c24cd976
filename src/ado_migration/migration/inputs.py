"""Load migration work items from a repository inventory CSV.

Expected columns (header names are case-insensitive, extra columns ignored)::

    ado_org, ado_team_project, ado_repo, github_org, github_repo

``org``, ``teamproject`` and ``repo`` are accepted for the source columns, as
written by the inventory export. ``github_org`` may be omitted when a default
organization is configured; ``github_repo`` defaults to
``{team_project}-{repo}``.
"""

import csv
import re
from collections.abc import Iterable
from pathlib import Path

from ado_migration.client.exceptions import ValidationError
from ado_migration.migration.work_item import SourceRepo, TargetRepo, WorkItem, make_label
from ado_migration.utils.logging import get_logger

logger = get_logger(__name__)

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "ado_org": ("ado_org", "org", "organization"),
    "ado_team_project": ("ado_team_project", "teamproject", "team_project", "project"),
    "ado_repo": ("ado_repo", "repo", "repository"),
    "github_org": ("github_org", "gh_org"),
    "github_repo": ("github_repo", "gh_repo"),
}

REQUIRED_COLUMNS = ("ado_org", "ado_team_project", "ado_repo")

# GitHub repository names: letters, digits, '-', '_', '.'
_INVALID_REPO_CHARS = re.compile(r"[^A-Za-z0-9_.\-]+")


def default_github_repo(project: str, repo: str) -> str:
    """Target repository name used when the inventory leaves it blank."""
    name = _INVALID_REPO_CHARS.sub("-", f"{project}-{repo}")
    return name.strip("-") or "repo"


def _resolve_columns(fieldnames: Iterable[str]) -> dict[str, str]:
    """Map canonical column names to the header names actually present."""
    present = {name.strip().lower(): name for name in fieldnames if name}
    resolved: dict[str, str] = {}
    for canonical, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in present:
                resolved[canonical] = present[alias]
                break
    return resolved


def load_work_items(
    path: str | Path,
    default_github_org: str | None = None,
) -> list[WorkItem]:
    """Read an inventory CSV into pending work items, in file order.

    Args:
        path: CSV file to read
        default_github_org: Target organization for rows without ``github_org``

    Returns:
        Work items with 1-based indexes

    Raises:
        ValidationError: If the file is missing, empty, lacks required columns,
            has incomplete rows, or names the same target twice
    """
    path = Path(path)
    if not path.is_file():
        raise ValidationError(f"Input file not found: {path}")

    with path.open(newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames:
            raise ValidationError(f"Input file has no header row: {path}")

        columns = _resolve_columns(reader.fieldnames)
        missing = [name for name in REQUIRED_COLUMNS if name not in columns]
        if missing:
            raise ValidationError(
                f"Input file {path} is missing required column(s): {', '.join(missing)}"
            )

        items: list[WorkItem] = []
        labels: set[str] = set()
        sources: dict[tuple[str, str, str], int] = {}
        targets: dict[tuple[str, str], int] = {}

        # Header is line 1
        for line_number, row in enumerate(reader, start=2):
            values = {
                canonical: (row.get(header) or "").strip()
                for canonical, header in columns.items()
            }
            if not any(values.values()):
                continue

            for name in REQUIRED_COLUMNS:
                if not values.get(name):
                    raise ValidationError(f"{path}:{line_number}: column '{name}' is empty")

            source = SourceRepo(
                org=values["ado_org"],
                project=values["ado_team_project"],
                repo=values["ado_repo"],
            )

            github_org = values.get("github_org") or default_github_org
            if not github_org:
                raise ValidationError(
                    f"{path}:{line_number}: no github_org column value and no default "
                    "GitHub organization configured"
                )
            github_repo = values.get("github_repo") or default_github_repo(
                source.project, source.repo
            )
            target = TargetRepo(org=github_org, repo=github_repo)

            key = (target.org.lower(), target.repo.lower())
            if key in targets:
                raise ValidationError(
                    f"{path}:{line_number}: target {target} already used on line {targets[key]}"
                )
            targets[key] = line_number

            source_key = (source.org.lower(), source.project.lower(), source.repo.lower())
            if source_key in sources:
                raise ValidationError(
                    f"{path}:{line_number}: source {source} already listed on line "
                    f"{sources[source_key]}"
                )
            sources[source_key] = line_number

            label = make_label(source)
            if label in labels:
                label = f"{source.org}/{label}"
            labels.add(label)

            items.append(
                WorkItem(index=len(items) + 1, label=label, source=source, target=target)
            )

    logger.info("work_items_loaded", path=str(path), count=len(items))
    return items


def exclude_targets(
    items: list[WorkItem], completed: set[tuple[str, str]]
) -> tuple[list[WorkItem], list[WorkItem]]:
    """Split off items whose target was already migrated.

    Remaining items are renumbered from 1 so the scheduler sees a contiguous
    work list.

    Returns:
        (items to run, items skipped)
    """
    completed_keys = {(org.lower(), repo.lower()) for org, repo in completed}
    remaining: list[WorkItem] = []
    skipped: list[WorkItem] = []

    for item in items:
        key = (item.target.org.lower(), item.target.repo.lower())
        if key in completed_keys:
            skipped.append(item)
        else:
            remaining.append(item)

    for index, item in enumerate(remaining, start=1):
        item.index = index

    if skipped:
        logger.info("work_items_skipped_already_migrated", skipped=len(skipped))
    return remaining, skipped
