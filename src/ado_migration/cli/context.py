"""
CLI context for ADO Bridge.

One ``MigrationContext`` is created per invocation and handed to every
command. Configuration and the state store are loaded on first use so that
``--help`` and commands that do not need them never touch the filesystem.
"""

from dataclasses import dataclass, field
from pathlib import Path

from ado_migration.client.exceptions import ConfigurationError
from ado_migration.config import MigrationConfig, load_config_from_yaml
from ado_migration.migration.state import MigrationState
from ado_migration.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """
    Per-invocation state shared by the CLI commands.

    Attributes:
        config_path: YAML configuration file; without one, defaults and
            ``ADO_BRIDGE_*`` environment variables apply
        log_level: ``--log-level`` if given, overrides ``logging.level``
        log_file: ``--log-file`` if given, overrides ``logging.file``
    """

    config_path: Path | None = None
    log_level: str | None = None
    log_file: Path | None = None

    _config: MigrationConfig | None = field(default=None, init=False, repr=False)
    _migration_state: MigrationState | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        """The loaded configuration.

        Raises:
            ConfigurationError: If the file is missing or a value is invalid
        """
        if self._config is None:
            try:
                if self.config_path is None:
                    config = MigrationConfig()
                else:
                    config = load_config_from_yaml(self.config_path)
            except (FileNotFoundError, ValueError) as e:
                raise ConfigurationError(str(e)) from e

            self._config = config
            self._apply_logging(config)
            logger.debug(
                "config_loaded",
                source=str(self.config_path) if self.config_path else "environment",
            )

        return self._config

    def _apply_logging(self, config: MigrationConfig) -> None:
        log_file = str(self.log_file) if self.log_file else config.logging.file
        configure_logging(
            level=self.log_level or config.logging.level,
            log_file=log_file,
            file_level=config.logging.file_level,
            log_format=config.logging.format,
        )

    @property
    def migration_state(self) -> MigrationState:
        """State store at ``state.db_path``, created on first use."""
        if self._migration_state is None:
            self._migration_state = MigrationState(config=self.config.state)
        return self._migration_state
