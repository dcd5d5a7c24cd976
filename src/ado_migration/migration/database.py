"""
State database engines and sessions.

Engines are created once per database URL and cached; ``MigrationState`` and
the ``state reset`` command go through the helpers here rather than creating
their own engines.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event, pool
from sqlalchemy.orm import Session, sessionmaker

from ado_migration.client.exceptions import ConfigurationError, StateError
from ado_migration.migration.models import Base
from ado_migration.utils.logging import get_logger

logger = get_logger(__name__)

_engines: dict[str, Engine] = {}
_session_factories: dict[str, sessionmaker] = {}


def _sqlite_pragmas(dbapi_conn, connection_record):
    # Work item rows reference their run; SQLite only enforces that when asked
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def database_url_for(db_path: str) -> str:
    """Turn a configured path into a SQLAlchemy URL (full URLs pass through)."""
    if db_path.startswith(("postgresql://", "sqlite://", "mysql://")):
        return db_path
    return f"sqlite:///{db_path}"


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Build an engine for the state database.

    SQLite files get a ``NullPool`` so the CLI never keeps a file handle open
    between commands; server databases get pre-ping so a dropped connection
    during a long run is replaced instead of failing the next write.

    Raises:
        ConfigurationError: If the URL is empty or not understood by SQLAlchemy
    """
    if not database_url:
        raise ConfigurationError("State database URL is empty")

    try:
        if database_url.startswith("sqlite"):
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=pool.NullPool,
                connect_args={"check_same_thread": False},
            )
            event.listen(engine, "connect", _sqlite_pragmas)
        else:
            engine = create_engine(database_url, echo=echo, pool_pre_ping=True)
    except Exception as e:
        logger.error("database_engine_failed", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Cannot create state database engine: {e}") from e

    logger.debug("database_engine_created", database_url=database_url)
    return engine


def init_database(database_url: str, echo: bool = False) -> Engine:
    """
    Return the cached engine for ``database_url``, creating tables on first use.

    Raises:
        ConfigurationError: If the tables cannot be created
    """
    engine = _engines.get(database_url)
    if engine is not None:
        return engine

    engine = create_database_engine(database_url, echo=echo)
    try:
        Base.metadata.create_all(engine)
    except Exception as e:
        engine.dispose()
        logger.error("database_init_failed", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Cannot create state tables: {e}") from e

    _engines[database_url] = engine
    _session_factories[database_url] = sessionmaker(bind=engine, expire_on_commit=False)
    logger.info("database_initialized", database_url=database_url, tables=len(Base.metadata.tables))
    return engine


@contextmanager
def get_session(database_url: str) -> Generator[Session, None, None]:
    """
    One unit of work: committed when the block exits normally.

    Raises:
        StateError: If the block or the commit fails; the session is rolled
            back first
    """
    init_database(database_url)
    session = _session_factories[database_url]()

    try:
        yield session
        session.commit()
    except StateError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.error("database_session_rolled_back", error=str(e))
        raise StateError(f"State database operation failed: {e}") from e
    finally:
        session.close()


def reset_database(database_url: str) -> None:
    """
    Drop and recreate every table, forgetting all recorded runs.

    Raises:
        ConfigurationError: If the tables cannot be dropped or recreated
    """
    try:
        engine = init_database(database_url)
        Base.metadata.drop_all(engine)
        Base.metadata.create_all(engine)
    except ConfigurationError:
        raise
    except Exception as e:
        logger.error("database_reset_failed", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Cannot reset state database: {e}") from e

    logger.warning("database_reset", database_url=database_url)


def dispose_engine(database_url: str) -> None:
    """Close pooled connections for ``database_url`` and forget the engine."""
    engine = _engines.pop(database_url, None)
    _session_factories.pop(database_url, None)
    if engine is not None:
        engine.dispose()
