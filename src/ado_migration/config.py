"""Configuration management for ADO Bridge using Pydantic.

This module provides type-safe configuration models for the migration tool,
the GitHub API, the scheduler, state persistence, paths and logging.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ToolConfig(BaseModel):
    """Configuration for the external migration command-line tool."""

    executable: str = Field(default="gh", description="Migration CLI executable")
    extension: str = Field(
        default="ado2gh", description="CLI extension providing the migration commands"
    )
    lock_source: bool = Field(
        default=True, description="Lock the Azure DevOps repository before queuing its migration"
    )
    queue_timeout: int = Field(
        default=600,
        ge=10,
        le=3600,
        description="Timeout (seconds) for the lock and queue commands",
    )
    wait_timeout: int = Field(
        default=21600,
        ge=60,
        le=172800,
        description="Upper bound (seconds) on waiting for one migration to finish",
    )
    target_repo_visibility: str = Field(
        default="private", description="Visibility of repositories created on GitHub"
    )
    extra_args: list[str] = Field(
        default_factory=list, description="Extra arguments appended to migrate-repo"
    )

    @field_validator("target_repo_visibility")
    @classmethod
    def validate_visibility(cls, v: str) -> str:
        """Validate target repository visibility."""
        valid = ["private", "internal", "public"]
        v_lower = v.lower()
        if v_lower not in valid:
            raise ValueError(f"Visibility must be one of: {', '.join(valid)}")
        return v_lower


class GitHubConfig(BaseModel):
    """Configuration for the GitHub API used to poll migrations by repository name."""

    graphql_url: str = Field(
        default="https://api.github.com/graphql", description="GitHub GraphQL endpoint"
    )
    token: str | None = Field(default=None, description="GitHub token (GH_PAT)")
    default_org: str | None = Field(
        default=None, description="Target organization for inventory rows without github_org"
    )
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    timeout: int = Field(default=30, ge=1, le=300, description="API request timeout in seconds")
    poll_interval: float = Field(
        default=30.0,
        ge=0.01,
        le=600.0,
        description="Interval (seconds) between migration status checks by repository name",
    )

    @field_validator("graphql_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate and normalize URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")


class SchedulerConfig(BaseModel):
    """Bounded scheduler configuration."""

    max_concurrent: int = Field(
        default=10,
        ge=1,
        le=20,
        description="Maximum migrations in flight at once (platform-imposed ceiling)",
    )
    poll_interval: float = Field(
        default=5.0,
        ge=0.001,
        le=300.0,
        description="Seconds the coordinator sleeps when a sweep finds no finished slot",
    )
    progress_log_every: int = Field(
        default=1,
        ge=1,
        le=1000,
        description="Log a progress event every N completed items",
    )


class PathConfig(BaseModel):
    """Configuration for file paths."""

    report_dir: str = Field(default="reports", description="Directory for run snapshots")
    snapshot_name: str = Field(
        default="migration-snapshot.json", description="File name of the run snapshot"
    )
    succeeded_csv: str = Field(
        default="repos_succeeded.csv", description="Follow-up CSV of migrated repositories"
    )
    failed_csv: str = Field(
        default="repos_failed.csv", description="CSV of repositories that failed to migrate"
    )
    summary_md: str = Field(default="migration-summary.md", description="Markdown summary")


class StateConfig(BaseModel):
    """State management configuration."""

    db_path: str = Field(default="./migration_state.db", description="Path to state database file")
    enabled: bool = Field(default=True, description="Persist run progress to the state database")


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class LoggingConfig(BaseModel):
    """Logging configuration.

    ``--log-level`` and ``--log-file`` on the command line take precedence.
    """

    level: str = Field(default="WARNING", description="Console log level")
    file: str | None = Field(default="logs/migration.log", description="Log file, None disables it")
    file_level: str = Field(default="DEBUG", description="Log file level")
    format: str = Field(default="json", description="Log file format: json or console")
    disable_progress: bool = Field(
        default=False, description="Hide the progress bar (CI, redirected output)"
    )

    @field_validator("level", "file_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of: {', '.join(LOG_LEVELS)}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in ("json", "console"):
            raise ValueError("Log format must be json or console")
        return v.lower()


class MigrationConfig(BaseSettings):
    """Main migration configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ADO_BRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    tool: ToolConfig = Field(default_factory=ToolConfig, description="Migration tool configuration")
    github: GitHubConfig = Field(default_factory=GitHubConfig, description="GitHub API configuration")
    scheduler: SchedulerConfig = Field(
        default_factory=SchedulerConfig, description="Scheduler configuration"
    )
    paths: PathConfig = Field(default_factory=PathConfig, description="Path configuration")
    state: StateConfig = Field(default_factory=StateConfig, description="State configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    dry_run: bool = Field(default=False, description="Dry run mode (no tool invocations)")

    @model_validator(mode="after")
    def load_github_token_from_env(self) -> "MigrationConfig":
        """Fall back to the token variable the migration CLI itself reads."""
        if not self.github.token:
            self.github.token = os.environ.get("GH_PAT") or os.environ.get("GH_TOKEN")
        return self

    @model_validator(mode="after")
    def validate_timeouts(self) -> "MigrationConfig":
        """Ensure status polling can happen at least once inside the wait window."""
        if self.github.poll_interval > self.tool.wait_timeout:
            raise ValueError("github.poll_interval must not exceed tool.wait_timeout")
        return self




# ${VAR} or ${VAR:-default}, anywhere inside a string value
_ENV_REFERENCE = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


def _expand_env_vars(data: Any) -> Any:
    """Substitute environment variable references in YAML values.

    Raises:
        ValueError: If a referenced variable is unset and has no default
    """
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(value) for value in data]
    if not isinstance(data, str):
        return data

    def substitute(match: re.Match[str]) -> str:
        name = match.group("name")
        value = os.environ.get(name, match.group("default"))
        if value is None:
            raise ValueError(
                f"Environment variable '{name}' is not set (export it or add it to .env)"
            )
        return value

    return _ENV_REFERENCE.sub(substitute, data)


def load_config_from_yaml(config_path: str | Path) -> MigrationConfig:
    """Build the configuration from a YAML file.

    Values may reference environment variables as ``${GH_PAT}`` or
    ``${ADO_ORG:-contoso}``. ``ADO_BRIDGE_*`` variables still apply to
    settings the file leaves out.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is empty, is not a mapping, or fails validation
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_path.open(encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

    if not raw:
        raise ValueError(f"Empty configuration file: {config_path}")
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")

    return MigrationConfig(**_expand_env_vars(raw))


def save_config_to_yaml(config: MigrationConfig, output_path: str | Path) -> None:
    """Write the effective configuration with credentials masked."""
    from ado_migration.utils.logging import sanitize_payload

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(sanitize_payload(config.model_dump()), f, sort_keys=False)
