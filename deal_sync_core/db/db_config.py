from typing import Any, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from ..config import DatabaseConfig, get_config
from ..exceptions import ErrorCode, ServiceError
from ..utils import get_logger

# Base class for all SQLAlchemy models
Base: Any = declarative_base()


class DatabaseManager:
    """
    Database connection manager built from the application DatabaseConfig.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine = self._create_engine()
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def _create_engine(self):
        url = make_url(self.config.connection_string)
        if url.get_backend_name() == "sqlite":
            # Worker threads (refresh followers, last-used bumps) share the engine
            connect_args = {"check_same_thread": False, "timeout": 30}
            return create_engine(url, echo=self.config.echo, connect_args=connect_args)
        return create_engine(
            url,
            echo=self.config.echo,
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
            pool_timeout=self.config.pool_timeout,
            pool_pre_ping=True,
        )

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        if get_config().environment in ("development", "test"):
            Base.metadata.drop_all(self.engine)
        else:
            raise ServiceError(
                "Cannot drop tables outside development",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="drop_tables",
                environment=get_config().environment,
            )

    def close(self) -> None:
        self.engine.dispose()


def import_all_models():
    """Import all models to ensure they're registered with SQLAlchemy metadata."""
    from sqlalchemy.orm import configure_mappers

    from .db_project_mapping_models import DealProjectMapping, ProjectMapping  # noqa
    from .db_sequence_models import SequenceCounter  # noqa
    from .db_token_models import AuthToken  # noqa

    configure_mappers()


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Get the global database manager instance.

    Raises:
        ServiceError: If no database manager has been initialized
    """
    if _db_manager is None:
        raise ServiceError(
            "Database manager not initialized. Call initialize_db() first.",
            error_code=ErrorCode.CONFIGURATION_ERROR,
            operation="get_db_manager",
        )
    return _db_manager


def set_db_manager(manager: Optional[DatabaseManager]) -> None:
    """Set the global database manager instance (used by tests)."""
    global _db_manager
    _db_manager = manager


def initialize_db(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """
    Initialize the global database manager and create missing tables.

    Args:
        config: Optional DatabaseConfig. If None, uses the application config.

    Returns:
        DatabaseManager: The initialized database manager
    """
    global _db_manager

    if config is None:
        config = get_config().database

    _db_manager = DatabaseManager(config)
    get_logger().info(
        "Initializing database", extra={"dialect": _db_manager.dialect_name}
    )

    import_all_models()
    _db_manager.create_tables()

    return _db_manager


def close_db() -> None:
    """
    Close the database connections and dispose of the engine.
    """
    global _db_manager
    if _db_manager:
        _db_manager.close()
        _db_manager = None
