"""Context management for account-scoped operations."""

from .account_context import AccountContext, account_context

__all__ = [
    "AccountContext",
    "account_context",
]
