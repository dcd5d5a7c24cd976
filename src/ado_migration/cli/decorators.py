"""
Decorators shared by the CLI commands.

``handle_errors`` turns the package's exceptions into exit codes so wrapper
scripts can tell a bad inventory from an unreachable API:

    0  success
    1  unexpected error, or a run with failed / not-started repositories
    2  configuration error
    4  GitHub API error
    5  state database error
    6  invalid input (inventory CSV, snapshot file)
"""

import functools
from collections.abc import Callable

import click

from ado_migration.client.exceptions import (
    ADOMigrationError,
    APIError,
    ConfigurationError,
    NetworkError,
    StateError,
    ValidationError,
)
from ado_migration.utils.logging import get_logger

logger = get_logger(__name__)

# (exception, exit code, label, hint); first match wins
ERROR_EXIT_CODES: list[tuple[type[ADOMigrationError], int, str, str | None]] = [
    (
        ConfigurationError,
        2,
        "Configuration Error",
        "Check the --config file, ADO_BRIDGE_* variables and GH_PAT.",
    ),
    (APIError, 4, "GitHub API Error", None),
    (
        StateError,
        5,
        "State Error",
        "The state database may be locked or corrupted; see `ado-bridge state show`.",
    ),
    (
        NetworkError,
        4,
        "Network Error",
        "GitHub could not be reached; check connectivity and proxy settings.",
    ),
    (ValidationError, 6, "Input Error", None),
]


def pass_context(f: Callable) -> Callable:
    """Call the command with the ``MigrationContext`` instead of click's context."""

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        return f(click_ctx.obj, *args, **kwargs)

    return wrapper


def _exit_for(error: ADOMigrationError) -> click.exceptions.Exit:
    for error_type, code, label, hint in ERROR_EXIT_CODES:
        if isinstance(error, error_type):
            break
    else:
        code, label, hint = 1, "Error", None

    logger.error("command_failed", error_type=type(error).__name__, error=str(error), exit_code=code)
    click.echo(f"{label}: {error}", err=True)
    status_code = getattr(error, "status_code", None)
    if status_code:
        click.echo(f"HTTP status: {status_code}", err=True)
    if hint:
        click.echo(hint, err=True)
    return click.exceptions.Exit(code)


def handle_errors(f: Callable) -> Callable:
    """Map package exceptions to exit codes (see module docstring)."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except click.exceptions.Exit:
            raise
        except ADOMigrationError as e:
            raise _exit_for(e) from e
        except Exception as e:
            logger.error("unexpected_error", error=str(e), exc_info=True)
            click.echo(f"Unexpected Error: {e}", err=True)
            click.echo("See the log file for the traceback.", err=True)
            raise click.exceptions.Exit(1) from e

    return wrapper


def confirm_action(
    message: str = "Do you want to continue?",
    abort_message: str = "Cancelled.",
) -> Callable:
    """Ask before running a destructive command unless ``--yes`` was given."""

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            if not click.get_current_context().params.get("yes", False) and not click.confirm(
                message
            ):
                click.echo(abort_message)
                raise click.exceptions.Exit(0)
            return f(*args, **kwargs)

        return wrapper

    return decorator
