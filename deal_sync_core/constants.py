"""
Constants and enums for the deal sync core.

This module centralizes all magic strings and constants used throughout
the package to ensure consistency and maintainability.
"""

from enum import Enum


class ServiceName(str, Enum):
    """External integrations a stored credential can belong to."""

    CRM = "crm"
    ACCOUNTING = "accounting"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    DATABASE_URL = "DATABASE_URL"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    TOKEN_ENCRYPTION_KEY = "TOKEN_ENCRYPTION_KEY"
    CRM_CLIENT_ID = "CRM_CLIENT_ID"
    CRM_CLIENT_SECRET = "CRM_CLIENT_SECRET"
    CRM_TOKEN_URL = "CRM_TOKEN_URL"
    ACCOUNTING_CLIENT_ID = "ACCOUNTING_CLIENT_ID"
    ACCOUNTING_CLIENT_SECRET = "ACCOUNTING_CLIENT_SECRET"
    ACCOUNTING_TOKEN_URL = "ACCOUNTING_TOKEN_URL"


class OAuthEndpoints:
    """Default token endpoints for the supported providers."""

    CRM_TOKEN_URL = "https://oauth.pipedrive.com/oauth/token"
    ACCOUNTING_TOKEN_URL = "https://identity.xero.com/connect/token"


# Department names used in the CRM that carry a fixed project number prefix.
DEFAULT_DEPARTMENT_CODES = {
    "Navy": "NY",
    "Electrical": "EL",
    "Machining": "MC",
    "Afloat": "AF",
    "Engine Recon": "ED",
    "Laser Cladding": "LC",
}


# Time-related constants (in seconds unless noted)
class TokenLifecycle:
    """Token cache, refresh and retention windows."""

    CACHE_TTL_SECONDS = 300
    MIN_REFRESH_INTERVAL_SECONDS = 5
    EXPIRY_BUFFER_SECONDS = 300
    INACTIVE_AFTER_DAYS = 30
    DELETE_AFTER_DAYS = 90
    RECENT_ACTIVITY_HOURS = 24


class Limits:
    """System limits and thresholds."""

    DEPARTMENT_CODE_LENGTH = 3
    SEQUENCE_PADDING = 3
    SEQUENCE_CAS_MAX_ATTEMPTS = 10
    PROJECT_ASSIGN_MAX_ATTEMPTS = 5
    TERMINAL_REFRESH_STATUS_CODES = (400, 401)


class Timeouts:
    """Timeout values in seconds."""

    OAUTH_REFRESH = 30
