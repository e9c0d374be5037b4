"""
Account context management.

Credential operations run inside an account context so that every log record
emitted on the way (including the ones raised by BaseError) carries the
account identifier without threading it through every call.
"""

import threading
from contextlib import contextmanager
from typing import Generator, Optional

from ..exceptions import ErrorCode, ValidationError


class AccountContext:
    """
    Holds the current account for the executing thread.
    """

    _thread_local = threading.local()

    @classmethod
    def set_current_account(cls, account_id: str) -> None:
        """
        Set the current account ID for the execution context.

        Raises:
            ValidationError: If account_id is empty or not a string
        """
        if not account_id or not isinstance(account_id, str) or not account_id.strip():
            raise ValidationError(
                "account_id must be a non-empty string",
                error_code=ErrorCode.MISSING_REQUIRED,
                field="account_id",
                value=repr(account_id),
            )

        cls._thread_local.account_id = account_id.strip()

    @classmethod
    def get_current_account_id(cls) -> Optional[str]:
        """Get the current account ID, or None if not set."""
        return getattr(cls._thread_local, "account_id", None)

    @classmethod
    def clear_current_account(cls) -> None:
        """Clear the current account ID from the execution context."""
        if hasattr(cls._thread_local, "account_id"):
            delattr(cls._thread_local, "account_id")


@contextmanager
def account_context(account_id: str) -> Generator[None, None, None]:
    """
    Context manager for account-scoped operations.

    Sets the current account for the duration of the block and restores the
    previous one afterwards.
    """
    previous_account = AccountContext.get_current_account_id()
    AccountContext.set_current_account(account_id)
    try:
        yield
    finally:
        if previous_account:
            AccountContext.set_current_account(previous_account)
        else:
            AccountContext.clear_current_account()
