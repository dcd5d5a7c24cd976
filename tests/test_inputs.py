from __future__ import annotations

from pathlib import Path

import pytest
from conftest import make_items, write_inventory

from ado_migration.client.exceptions import ValidationError
from ado_migration.migration.inputs import default_github_repo, exclude_targets, load_work_items
from ado_migration.migration.work_item import WorkItemStatus


class TestLoadWorkItems:
    def test_reads_rows_in_file_order(self, tmp_path: Path) -> None:
        path = write_inventory(
            tmp_path / "repos.csv",
            [
                ("contoso", "Payments", "api", "contoso-gh", "payments-api"),
                ("contoso", "Payments", "web", "contoso-gh", "payments-web"),
                ("contoso", "Identity", "api", "contoso-gh", "identity-api"),
            ],
        )

        items = load_work_items(path)

        assert [item.index for item in items] == [1, 2, 3]
        assert [item.label for item in items] == ["Payments/api", "Payments/web", "Identity/api"]
        assert str(items[0].source) == "contoso/Payments/api"
        assert str(items[2].target) == "contoso-gh/identity-api"
        assert all(item.status is WorkItemStatus.PENDING for item in items)

    def test_inventory_export_column_names(self, tmp_path: Path) -> None:
        path = write_inventory(
            tmp_path / "repos.csv",
            [("contoso", "Payments", "api", "", "")],
            header="Org,TeamProject,Repo,github_org,github_repo\n",
        )

        (item,) = load_work_items(path, default_github_org="contoso-gh")

        assert str(item.source) == "contoso/Payments/api"
        assert str(item.target) == "contoso-gh/Payments-api"

    def test_github_columns_are_optional(self, tmp_path: Path) -> None:
        path = write_inventory(
            tmp_path / "repos.csv",
            [("contoso", "Team Alpha", "core lib")],
            header="ado_org,ado_team_project,ado_repo\n",
        )

        (item,) = load_work_items(path, default_github_org="contoso-gh")

        assert item.target.repo == "Team-Alpha-core-lib"

    def test_byte_order_mark_is_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "repos.csv"
        path.write_text(
            "\ufeffado_org,ado_team_project,ado_repo,github_org\ncontoso,Payments,api,gh\n",
            encoding="utf-8",
        )

        (item,) = load_work_items(path)

        assert item.source.org == "contoso"

    def test_blank_rows_are_skipped(self, tmp_path: Path) -> None:
        path = write_inventory(
            tmp_path / "repos.csv",
            [
                ("contoso", "Payments", "api", "contoso-gh", "payments-api"),
                ("", "", "", "", ""),
                ("contoso", "Payments", "web", "contoso-gh", "payments-web"),
            ],
        )

        assert [item.index for item in load_work_items(path)] == [1, 2]

    def test_same_repo_name_in_two_orgs_gets_qualified_label(self, tmp_path: Path) -> None:
        path = write_inventory(
            tmp_path / "repos.csv",
            [
                ("contoso", "Payments", "api", "contoso-gh", "payments-api"),
                ("fabrikam", "Payments", "api", "contoso-gh", "fabrikam-payments-api"),
            ],
        )

        labels = [item.label for item in load_work_items(path)]

        assert labels == ["Payments/api", "fabrikam/Payments/api"]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="not found"):
            load_work_items(tmp_path / "missing.csv")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "repos.csv"
        path.write_text("")

        with pytest.raises(ValidationError, match="no header"):
            load_work_items(path)

    def test_missing_required_column(self, tmp_path: Path) -> None:
        path = write_inventory(
            tmp_path / "repos.csv", [("contoso", "api")], header="ado_org,ado_repo\n"
        )

        with pytest.raises(ValidationError, match="ado_team_project"):
            load_work_items(path)

    def test_empty_required_value(self, tmp_path: Path) -> None:
        path = write_inventory(tmp_path / "repos.csv", [("contoso", "", "api", "gh", "api")])

        with pytest.raises(ValidationError, match=r":2: column 'ado_team_project' is empty"):
            load_work_items(path)

    def test_missing_github_org_without_default(self, tmp_path: Path) -> None:
        path = write_inventory(tmp_path / "repos.csv", [("contoso", "Payments", "api", "", "")])

        with pytest.raises(ValidationError, match="no github_org"):
            load_work_items(path)

    def test_duplicate_target_is_rejected(self, tmp_path: Path) -> None:
        path = write_inventory(
            tmp_path / "repos.csv",
            [
                ("contoso", "Payments", "api", "contoso-gh", "shared"),
                ("contoso", "Payments", "web", "Contoso-GH", "Shared"),
            ],
        )

        with pytest.raises(ValidationError, match="already used on line 2"):
            load_work_items(path)

    def test_duplicate_source_is_rejected(self, tmp_path: Path) -> None:
        path = write_inventory(
            tmp_path / "repos.csv",
            [
                ("contoso", "Payments", "api", "contoso-gh", "one"),
                ("contoso", "Payments", "api", "contoso-gh", "two"),
            ],
        )

        with pytest.raises(ValidationError, match="already listed on line 2"):
            load_work_items(path)


class TestDefaultGithubRepo:
    @pytest.mark.parametrize(
        ("project", "repo", "expected"),
        [
            ("Payments", "api", "Payments-api"),
            ("Team Alpha", "core lib", "Team-Alpha-core-lib"),
            ("Data", "etl.v2", "Data-etl.v2"),
            ("!!", "??", "repo"),
        ],
    )
    def test_names(self, project: str, repo: str, expected: str) -> None:
        assert default_github_repo(project, repo) == expected


class TestExcludeTargets:
    def test_skips_completed_and_renumbers(self) -> None:
        items = make_items(5)

        remaining, skipped = exclude_targets(
            items, {("contoso-gh", "payments-repo-2"), ("CONTOSO-GH", "Payments-repo-4")}
        )

        assert [item.label for item in skipped] == ["Payments/repo-2", "Payments/repo-4"]
        assert [item.label for item in remaining] == [
            "Payments/repo-1",
            "Payments/repo-3",
            "Payments/repo-5",
        ]
        assert [item.index for item in remaining] == [1, 2, 3]

    def test_nothing_completed(self) -> None:
        items = make_items(3)

        remaining, skipped = exclude_targets(items, set())

        assert remaining == items
        assert skipped == []
