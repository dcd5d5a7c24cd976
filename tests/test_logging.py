from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from ado_migration.utils.logging import (
    bind_run_context,
    clear_run_context,
    configure_logging,
    get_logger,
    redact_tokens,
)

TOKEN = "ghp_" + "a1B2c3D4e5" * 4


@pytest.fixture
def log_file(tmp_path: Path):
    path = tmp_path / "logs" / "migration.log"
    configure_logging(level="ERROR", log_file=str(path), file_level="DEBUG")
    yield path
    configure_logging(level="WARNING")


def read_events(path: Path) -> list[dict]:
    for handler in logging.getLogger().handlers:
        handler.flush()
    return [json.loads(line) for line in path.read_text().splitlines()]


def test_file_receives_json_lines_with_run_id(log_file: Path) -> None:
    logger = get_logger("ado_migration.tests")
    bind_run_context("run-42")
    try:
        logger.info("work_item_dispatched", label="Payments/api", slot=0)
    finally:
        clear_run_context()
    logger.info("after_run")

    first, second = read_events(log_file)

    assert first["level"] == "info"
    assert first["logger"] == "ado_migration.tests"
    assert "work_item_dispatched" in first["event"]
    assert "run_id=run-42" in first["event"]
    assert "run_id" not in second["event"]


def test_credentials_are_masked(log_file: Path) -> None:
    get_logger("ado_migration.tests").warning(
        "tool_failed", token="ghp_short", output=f"auth failed for {TOKEN}"
    )

    (event,) = read_events(log_file)

    assert "ghp_short" not in event["event"]
    assert TOKEN not in event["event"]
    assert event["event"].count("[REDACTED]") == 2


def test_redact_tokens_leaves_other_text() -> None:
    assert redact_tokens(f"GH_PAT={TOKEN} queued RM_abc123") == (
        "GH_PAT=[REDACTED] queued RM_abc123"
    )
