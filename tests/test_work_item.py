from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import make_item

from ado_migration.client.exceptions import StateError
from ado_migration.migration.work_item import (
    FailureKind,
    SourceRepo,
    TargetRepo,
    WorkItemStatus,
    make_label,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class TestWorkItemLifecycle:
    def test_success_path(self) -> None:
        item = make_item(1)
        item.mark_queued()
        item.mark_running(T0)
        item.mark_succeeded(T0 + timedelta(seconds=90), migration_id="RM_abc12345")

        assert item.status is WorkItemStatus.SUCCEEDED
        assert item.is_terminal
        assert item.duration_seconds == 90.0
        assert item.migration_id == "RM_abc12345"
        assert item.history == [
            WorkItemStatus.PENDING,
            WorkItemStatus.QUEUED,
            WorkItemStatus.RUNNING,
        ]

    def test_failure_keeps_kind_and_error(self) -> None:
        item = make_item(1)
        item.mark_queued()
        item.mark_running(T0)
        item.mark_failed(T0, FailureKind.SUBMIT_FAILURE, "[exit 1] submit failed")

        assert item.status is WorkItemStatus.FAILED
        assert item.failure_kind is FailureKind.SUBMIT_FAILURE
        assert item.error == "[exit 1] submit failed"

    def test_queued_item_can_fail_without_running(self) -> None:
        item = make_item(1)
        item.mark_queued()
        item.mark_failed(T0, FailureKind.LOCK_FAILURE, "lock failed")

        assert item.status is WorkItemStatus.FAILED
        assert item.submitted_at is None
        assert item.duration_seconds is None

    @pytest.mark.parametrize(
        "steps",
        [
            ["running"],
            ["succeeded"],
            ["queued", "succeeded"],
            ["queued", "queued"],
        ],
    )
    def test_invalid_transitions(self, steps: list[str]) -> None:
        item = make_item(1)
        *allowed, invalid = [WorkItemStatus(step) for step in steps]
        for status in allowed:
            item.transition(status)

        with pytest.raises(StateError, match="Invalid transition"):
            item.transition(invalid)

    def test_terminal_items_never_change(self) -> None:
        item = make_item(1)
        item.mark_queued()
        item.mark_running(T0)
        item.mark_succeeded(T0)

        for status in WorkItemStatus:
            with pytest.raises(StateError):
                item.transition(status)

    def test_migration_id_survives_failure_without_id(self) -> None:
        item = make_item(1)
        item.migration_id = "RM_known0001"
        item.mark_queued()
        item.mark_running(T0)
        item.mark_failed(T0, FailureKind.REMOTE_FAILURE, "timed out")

        assert item.migration_id == "RM_known0001"


class TestDescriptors:
    def test_source_round_trip(self) -> None:
        source = SourceRepo(org="contoso", project="Payments", repo="api")
        assert str(source) == "contoso/Payments/api"
        assert SourceRepo.from_dict(source.to_dict()) == source

    def test_target_round_trip(self) -> None:
        target = TargetRepo(org="contoso-gh", repo="Payments-api")
        assert str(target) == "contoso-gh/Payments-api"
        assert TargetRepo.from_dict(target.to_dict()) == target

    def test_default_label(self) -> None:
        assert make_label(SourceRepo("contoso", "Payments", "api")) == "Payments/api"

    def test_to_dict(self) -> None:
        item = make_item(3)
        item.mark_queued()
        item.mark_running(T0)
        item.mark_failed(T0 + timedelta(seconds=5), FailureKind.REMOTE_FAILURE, "boom")

        data = item.to_dict()

        assert data["index"] == 3
        assert data["status"] == "failed"
        assert data["failure_kind"] == "remote_failure"
        assert data["submitted_at"] == T0.isoformat()
        assert data["duration_seconds"] == 5.0
        assert data["source"] == {"org": "contoso", "project": "Payments", "repo": "repo-3"}
