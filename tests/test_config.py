from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError as PydanticValidationError

from ado_migration.config import (
    GitHubConfig,
    LoggingConfig,
    MigrationConfig,
    ToolConfig,
    load_config_from_yaml,
    save_config_to_yaml,
)
from ado_migration.utils.logging import sanitize_payload


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for name in ("GH_PAT", "GH_TOKEN", "ADO_BRIDGE_SCHEDULER__MAX_CONCURRENT", "ADO_BRIDGE_DRY_RUN"):
        monkeypatch.delenv(name, raising=False)


def write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    def test_defaults(self) -> None:
        config = MigrationConfig()

        assert config.tool.executable == "gh"
        assert config.tool.extension == "ado2gh"
        assert config.tool.target_repo_visibility == "private"
        assert config.scheduler.max_concurrent == 10
        assert config.scheduler.poll_interval == 5.0
        assert config.paths.snapshot_name == "migration-snapshot.json"
        assert config.github.token is None
        assert not config.dry_run

    def test_token_falls_back_to_gh_pat(self, monkeypatch) -> None:
        monkeypatch.setenv("GH_PAT", "ghp_from_env")

        assert MigrationConfig().github.token == "ghp_from_env"

    def test_explicit_token_wins(self, monkeypatch) -> None:
        monkeypatch.setenv("GH_PAT", "ghp_from_env")

        config = MigrationConfig(github=GitHubConfig(token="ghp_explicit"))

        assert config.github.token == "ghp_explicit"

    def test_nested_environment_variables(self, monkeypatch) -> None:
        monkeypatch.setenv("ADO_BRIDGE_SCHEDULER__MAX_CONCURRENT", "7")
        monkeypatch.setenv("ADO_BRIDGE_DRY_RUN", "true")

        config = MigrationConfig()

        assert config.scheduler.max_concurrent == 7
        assert config.dry_run


class TestValidation:
    def test_visibility_is_normalized(self) -> None:
        assert ToolConfig(target_repo_visibility="Internal").target_repo_visibility == "internal"

    def test_invalid_visibility(self) -> None:
        with pytest.raises(PydanticValidationError, match="Visibility must be one of"):
            ToolConfig(target_repo_visibility="secret")

    def test_concurrency_ceiling_bounds(self) -> None:
        with pytest.raises(PydanticValidationError):
            MigrationConfig(scheduler={"max_concurrent": 0})
        with pytest.raises(PydanticValidationError):
            MigrationConfig(scheduler={"max_concurrent": 21})

    def test_graphql_url(self) -> None:
        assert GitHubConfig(graphql_url="https://ghe.example.com/api/graphql/").graphql_url == (
            "https://ghe.example.com/api/graphql"
        )
        with pytest.raises(PydanticValidationError, match="http"):
            GitHubConfig(graphql_url="ghe.example.com/api/graphql")

    def test_log_level(self) -> None:
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(PydanticValidationError):
            LoggingConfig(level="verbose")

    def test_poll_interval_must_fit_in_wait_timeout(self) -> None:
        with pytest.raises(PydanticValidationError, match="poll_interval"):
            MigrationConfig(tool={"wait_timeout": 60}, github={"poll_interval": 120.0})


class TestYaml:
    def test_load_with_environment_expansion(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("MIGRATION_TOKEN", "ghp_yaml")
        path = write_yaml(
            tmp_path / "config.yaml",
            {
                "tool": {"target_repo_visibility": "internal", "extra_args": ["--verbose"]},
                "github": {"token": "${MIGRATION_TOKEN}", "default_org": "contoso-gh"},
                "scheduler": {"max_concurrent": 4},
            },
        )

        config = load_config_from_yaml(path)

        assert config.github.token == "ghp_yaml"
        assert config.github.default_org == "contoso-gh"
        assert config.tool.extra_args == ["--verbose"]
        assert config.scheduler.max_concurrent == 4

    def test_missing_environment_variable(self, tmp_path: Path) -> None:
        path = write_yaml(tmp_path / "config.yaml", {"github": {"token": "${NOT_SET_ANYWHERE}"}})

        with pytest.raises(ValueError, match="NOT_SET_ANYWHERE"):
            load_config_from_yaml(path)

    def test_embedded_reference_and_default(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("MIGRATION_ROOT", "/srv/migration")
        monkeypatch.delenv("TARGET_ORG", raising=False)
        path = write_yaml(
            tmp_path / "config.yaml",
            {
                "paths": {"report_dir": "${MIGRATION_ROOT}/reports"},
                "github": {"default_org": "${TARGET_ORG:-contoso-gh}"},
            },
        )

        config = load_config_from_yaml(path)

        assert config.paths.report_dir == "/srv/migration/reports"
        assert config.github.default_org == "contoso-gh"

    def test_top_level_must_be_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ValueError, match="mapping"):
            load_config_from_yaml(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config_from_yaml(tmp_path / "missing.yaml")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("")

        with pytest.raises(ValueError, match="Empty configuration"):
            load_config_from_yaml(path)

    def test_save_redacts_token(self, tmp_path: Path) -> None:
        config = MigrationConfig(github=GitHubConfig(token="ghp_secret"))
        output = tmp_path / "out" / "config.yaml"

        save_config_to_yaml(config, output)

        saved = yaml.safe_load(output.read_text())
        assert saved["github"]["token"] == "[REDACTED]"
        assert saved["scheduler"]["max_concurrent"] == 10
        assert "ghp_secret" not in output.read_text()


def test_sanitize_payload() -> None:
    payload = {
        "Authorization": "Bearer abc",
        "nested": [{"access_token": "xyz", "repo": "api"}],
        "token": None,
    }

    assert sanitize_payload(payload) == {
        "Authorization": "[REDACTED]",
        "nested": [{"access_token": "[REDACTED]", "repo": "api"}],
        "token": None,
    }
