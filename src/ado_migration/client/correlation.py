"""Extraction of migration IDs from migration tool output.

The tool reports the ID of a queued migration in free text whose wording has
changed between releases. Patterns are tried in order and the first match
wins; no match is a supported outcome (the adapter then polls by target
repository name instead).
"""

import re
from collections.abc import Callable, Iterable

CorrelationExtractor = Callable[[str], str | None]

MIGRATION_ID_PATTERNS: tuple[re.Pattern[str], ...] = (
    # A repository migration (ID: RM_kgDaACQ...) was successfully queued.
    re.compile(r"\(ID:\s*(?P<id>RM_[A-Za-z0-9_\-]+)\)"),
    # Migration ID: RM_kgDaACQ...
    re.compile(r"Migration ID:\s*(?P<id>RM_[A-Za-z0-9_\-]+)", re.IGNORECASE),
    # {"migrationId": "RM_kgDaACQ..."}
    re.compile(r'"migrationId"\s*:\s*"(?P<id>[^"\s]+)"'),
    # bare token anywhere in the output
    re.compile(r"\b(?P<id>RM_[A-Za-z0-9_\-]{6,})\b"),
)


def extract_migration_id(
    output: str | None,
    patterns: Iterable[re.Pattern[str]] = MIGRATION_ID_PATTERNS,
) -> str | None:
    """Return the first migration ID found in ``output``, or None."""
    if not output:
        return None

    for pattern in patterns:
        match = pattern.search(output)
        if match:
            return match.group("id")

    return None


def pattern_extractor(*expressions: str) -> CorrelationExtractor:
    """Build an extractor from custom regular expressions.

    Each expression must define a named group ``id``.
    """
    compiled = tuple(re.compile(expr) for expr in expressions)
    for pattern in compiled:
        if "id" not in pattern.groupindex:
            raise ValueError(f"Pattern {pattern.pattern!r} has no named group 'id'")

    def extract(output: str) -> str | None:
        return extract_migration_id(output, compiled)

    return extract
