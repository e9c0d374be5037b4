"""
Base repository implementation with common functionality for all repositories.

Repositories here own a session factory rather than a session: every public
operation runs in its own short transaction, so they are safe to call from
the worker threads used by the credential service.
"""

from contextlib import contextmanager
from typing import Any, Callable, Generator, NoReturn, Optional

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..context.account_context import AccountContext
from ..exceptions import ErrorCode, RepositoryError
from ..utils.logger import get_logger


class BaseRepository:
    """Base repository with session handling and error mapping."""

    entity_name = "Entity"

    def __init__(self, session_factory: Callable[[], Session]):
        """
        Initialize the base repository.

        Args:
            session_factory: Callable returning a new SQLAlchemy session
        """
        self.session_factory = session_factory
        self.logger = get_logger()

    def _handle_db_error(
        self,
        e: Exception,
        operation_name: str,
        **context: Any,
    ) -> NoReturn:
        """
        Map database errors to RepositoryError with an appropriate error code.

        Args:
            e: The original exception
            operation_name: Name of the operation that failed
            **context: Additional context for the error

        Raises:
            RepositoryError: With appropriate error code and context
        """
        if isinstance(e, RepositoryError):
            raise e

        error_context = {
            "operation_name": operation_name,
            "entity_type": self.entity_name,
            **context,
        }
        account_id = AccountContext.get_current_account_id()
        if account_id and "account_id" not in error_context:
            error_context["account_id"] = account_id

        if isinstance(e, IntegrityError):
            error_message = str(e.orig).lower() if getattr(e, "orig", None) else str(e).lower()
            if "unique" in error_message or "duplicate" in error_message:
                raise RepositoryError(
                    f"Duplicate {self.entity_name} in {operation_name}",
                    error_code=ErrorCode.DUPLICATE,
                    status_code=409,
                    cause=e,
                    **error_context,
                )
            raise RepositoryError(
                f"Database constraint violation for {self.entity_name}",
                error_code=ErrorCode.CONFLICT,
                status_code=409,
                cause=e,
                **error_context,
            )

        if isinstance(e, OperationalError):
            raise RepositoryError(
                f"Database unavailable during {operation_name}",
                error_code=ErrorCode.CONNECTION_ERROR,
                cause=e,
                **error_context,
            )

        if isinstance(e, SQLAlchemyError):
            raise RepositoryError(
                f"Database error for {self.entity_name}: {str(e)}",
                error_code=ErrorCode.DATABASE_ERROR,
                cause=e,
                **error_context,
            )

        raise RepositoryError(
            f"Unexpected error for {self.entity_name}: {str(e)}",
            error_code=ErrorCode.INTERNAL_ERROR,
            cause=e,
            **error_context,
        )

    @contextmanager
    def _session_scope(
        self, operation_name: str, read_only: bool = False, **context: Any
    ) -> Generator[Session, None, None]:
        """
        Run a unit of work in its own session.

        Commits on success (unless read_only), rolls back and maps the error
        otherwise. The session is always closed.
        """
        session = self.session_factory()
        try:
            yield session
            if not read_only:
                session.commit()
        except Exception as e:
            session.rollback()
            self._handle_db_error(e, operation_name, **context)
        finally:
            session.close()

    @staticmethod
    def _dialect_name(session: Session) -> Optional[str]:
        bind = session.get_bind()
        return bind.dialect.name if bind is not None else None
