"""
Main CLI entry point for ADO Bridge.

This module provides the command-line interface for migrating Azure DevOps
repositories to GitHub with a bounded number of migrations in flight.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from ado_migration import __version__
from ado_migration.cli.commands import config as config_commands
from ado_migration.cli.commands import migrate as migrate_commands
from ado_migration.cli.commands import state as state_commands
from ado_migration.cli.context import MigrationContext
from ado_migration.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="ado-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (defaults and ADO_BRIDGE_* variables apply without one)",
    envvar="ADO_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Console logging level (default: logging.level, WARNING)",
    envvar="ADO_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Log file (default: logging.file, logs/migration.log)",
    envvar="ADO_BRIDGE_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str | None,
    log_file: Path | None,
) -> None:
    """ADO Bridge - Migrate Azure DevOps repositories to GitHub.

    Runs the gh ado2gh lock/migrate/wait commands for every repository in an
    inventory, at most N at a time, and writes a snapshot of the results for
    the follow-up phases.

    Examples:

        \b
        # Validate configuration
        ado-bridge --config config.yaml config validate

        \b
        # Migrate an inventory
        ado-bridge migrate run --input repos.csv --max-concurrent 10

        \b
        # Inspect a finished run
        ado-bridge migrate report reports/migration-snapshot.json
    """
    # Provisional until the configuration is loaded, see MigrationContext.config
    configure_logging(
        level=log_level or "WARNING",
        log_file=str(log_file) if log_file else "logs/migration.log",
    )

    ctx.obj = MigrationContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
    )

    logger.debug(
        "cli_initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


# Register command groups
cli.add_command(config_commands.config)
cli.add_command(migrate_commands.migrate)
cli.add_command(state_commands.state)


def main() -> int:
    """Main entry point for CLI."""
    try:
        # Without standalone mode click returns the exit code of a raised Exit
        result = cli(standalone_mode=False)
        return result if isinstance(result, int) else 0
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except Exception as e:
        logger.error("unexpected_error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
