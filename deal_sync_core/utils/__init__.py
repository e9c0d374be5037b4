"""Utility modules for the deal sync core."""

# Encryption utilities
from .cipher import EncryptedValue, TokenCipher

# Logging utilities
from .logger import (
    AccountContextFilter,
    ContextAwareLogger,
    configure_logging,
    get_logger,
)

__all__ = [
    "EncryptedValue",
    "TokenCipher",
    "AccountContextFilter",
    "ContextAwareLogger",
    "configure_logging",
    "get_logger",
]
