"""Structured logging for ADO Bridge.

structlog renders every event once; the stdlib root logger then fans it out
to a Rich console handler (human readable, stderr, so it never fights the
progress bar) and optionally to a JSON-lines log file.

Events logged while a scheduler run is active carry its ``run_id`` through
``bind_run_context``. Values under credential-looking keys and GitHub tokens
embedded in tool output are masked before anything is rendered.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.logging import RichHandler
from structlog.typing import EventDict, WrappedLogger

from ado_migration import __version__

APP_NAME = "ado-bridge"

REDACTED = "[REDACTED]"

# Matched as substrings of lower-cased keys
SENSITIVE_FIELDS = (
    "token",
    "password",
    "secret",
    "authorization",
    "api_key",
    "gh_pat",
)

# Classic and fine-grained GitHub tokens as printed by gh or echoed in errors
_GITHUB_TOKEN = re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{30,}|github_pat_[A-Za-z0-9_]{40,})\b")

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*m")


def redact_tokens(text: str) -> str:
    """Mask GitHub tokens that appear inside free text."""
    return _GITHUB_TOKEN.sub(REDACTED, text)


def sanitize_payload(payload: Any, max_depth: int = 10) -> Any:
    """Return a copy of ``payload`` with credential values masked.

    Dict values whose key looks like a credential are replaced (empty values
    are kept so "not set" stays visible); strings anywhere are scrubbed of
    GitHub tokens.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(payload, dict):
        return {
            key: (
                (REDACTED if value else value)
                if any(field in str(key).lower() for field in SENSITIVE_FIELDS)
                else sanitize_payload(value, max_depth - 1)
            )
            for key, value in payload.items()
        }
    if isinstance(payload, (list, tuple)):
        return [sanitize_payload(item, max_depth - 1) for item in payload]
    if isinstance(payload, str):
        return redact_tokens(payload)
    return payload


def _add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("app", APP_NAME)
    event_dict.setdefault("version", __version__)
    return event_dict


def _redact_event(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    return sanitize_payload(event_dict)


class JSONLinesFormatter(logging.Formatter):
    """One JSON object per line for the log file.

    The message is the line structlog already rendered; colour codes are
    removed so the file stays grep-able.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": _ANSI_ESCAPE.sub("", record.getMessage()),
        }
        if record.exc_info:
            entry["exception"] = redact_tokens(self.formatException(record.exc_info))
        return json.dumps(entry, ensure_ascii=False)


def _level(name: str | None, default: int) -> int:
    return getattr(logging, (name or "").upper(), default)


def configure_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    file_level: str | None = "DEBUG",
    log_format: str = "json",
) -> None:
    """Route structlog output to the console and, optionally, a log file.

    Args:
        level: Console level; the default keeps the console quiet during runs
        log_file: Log file path, parent directories are created
        file_level: Level for the log file
        log_format: ``json`` for JSON lines, ``console`` for plain rendered lines
    """
    console_level = _level(level, logging.WARNING)
    file_log_level = _level(file_level, logging.DEBUG)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    # Handlers filter; the root passes everything through
    root_logger.setLevel(logging.DEBUG)

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    console_handler.setLevel(console_level)
    root_logger.addHandler(console_handler)

    threshold = console_level
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(file_log_level)
        file_handler.setFormatter(
            JSONLinesFormatter() if log_format == "json" else logging.Formatter("%(message)s")
        )
        root_logger.addHandler(file_handler)
        threshold = min(console_level, file_log_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_app_context,
            _redact_event,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            # Rich colours the console; the file must stay plain
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_run_context(run_id: str, **extra: Any) -> None:
    """Tag every following event in this context with the run ID."""
    structlog.contextvars.bind_contextvars(run_id=run_id, **extra)


def clear_run_context() -> None:
    structlog.contextvars.unbind_contextvars("run_id")


def log_migration_progress(
    logger: structlog.stdlib.BoundLogger,
    completed: int,
    total: int,
    running: int,
    succeeded: int,
    failed: int,
) -> None:
    """Emit a ``migration_progress`` event for dashboards and tail -f."""
    logger.info(
        "migration_progress",
        completed=completed,
        total=total,
        running=running,
        succeeded=succeeded,
        failed=failed,
        percentage=round(completed / total * 100, 2) if total else 0.0,
    )


def log_error(
    logger: structlog.stdlib.BoundLogger,
    error: BaseException,
    context: str,
    **extra: Any,
) -> None:
    """Log an unexpected exception with its traceback.

    Args:
        logger: Logger of the calling module
        error: The exception being handled
        context: Where it happened (``prepare``, ``progress_callback`` ...)
        **extra: Identifying fields such as the item label
    """
    logger.error(
        "unexpected_error",
        error_type=type(error).__name__,
        error_message=str(error),
        context=context,
        exc_info=error,
        **extra,
    )
