"""
Configuration management commands.

This module provides commands for validating and displaying the migration
configuration.
"""

import shutil
from pathlib import Path

import click
import yaml

from ado_migration.cli.context import MigrationContext
from ado_migration.cli.decorators import handle_errors, pass_context
from ado_migration.cli.utils import echo_error, echo_info, echo_success, echo_warning, print_table
from ado_migration.client.exceptions import ConfigurationError
from ado_migration.config import MigrationConfig
from ado_migration.utils.logging import get_logger, sanitize_payload

logger = get_logger(__name__)


@click.group(name="config")
def config() -> None:
    """Configuration management commands."""
    pass


def _display_config_summary(config: MigrationConfig) -> None:
    rows = [
        ["Migration Tool", f"{config.tool.executable} {config.tool.extension}"],
        ["Lock Source Repositories", config.tool.lock_source],
        ["Wait Timeout (s)", config.tool.wait_timeout],
        ["Max Concurrent Migrations", config.scheduler.max_concurrent],
        ["Poll Interval (s)", config.scheduler.poll_interval],
        ["GitHub Token", "set" if config.github.token else "not set"],
        ["Default GitHub Org", config.github.default_org or "-"],
        ["Report Directory", config.paths.report_dir],
        ["State DB Path", config.state.db_path if config.state.enabled else "disabled"],
        ["Dry Run", config.dry_run],
    ]

    print_table("Configuration Summary", ["Setting", "Value"], rows)


@config.command(name="validate")
@pass_context
@handle_errors
def validate(ctx: MigrationContext) -> None:
    """Validate the migration configuration.

    Checks that the configuration loads, that the migration tool is on the
    PATH, that a GitHub token is available and that the state database
    directory can be created.

    Examples:

        ado-bridge --config config.yaml config validate
    """
    source = ctx.config_path or "defaults and environment"
    echo_info(f"Validating configuration: {source}")

    config = ctx.config
    click.echo()
    _display_config_summary(config)
    click.echo()

    if shutil.which(config.tool.executable) is None:
        if config.dry_run:
            echo_warning(f"'{config.tool.executable}' not found on PATH (dry run only)")
        else:
            echo_error(f"'{config.tool.executable}' not found on PATH")
            raise ConfigurationError(f"Migration tool executable not found: {config.tool.executable}")
    else:
        echo_success(f"Migration tool found: {shutil.which(config.tool.executable)}")

    if not config.github.token:
        echo_warning(
            "No GitHub token (github.token, GH_PAT or GH_TOKEN); "
            "migrations without a migration ID in the tool output cannot be awaited"
        )

    if config.state.enabled and "://" not in config.state.db_path:
        db_dir = Path(config.state.db_path).parent
        try:
            db_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Cannot create database directory {db_dir}: {e}") from e
        echo_success(f"Database directory usable: {db_dir}")

    click.echo()
    echo_success("Configuration is valid!")


@config.command(name="show")
@pass_context
@handle_errors
def show(ctx: MigrationContext) -> None:
    """Display the effective configuration with secrets masked."""
    data = sanitize_payload(ctx.config.model_dump())
    click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
