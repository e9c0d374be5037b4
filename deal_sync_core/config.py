"""
Centralized configuration management for the deal sync core.

This module provides a unified configuration system with support for:
- Environment variables
- Runtime configuration
- Validation using Pydantic
"""

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import (
    DEFAULT_DEPARTMENT_CODES,
    EnvironmentVariable,
    Limits,
    LogLevel,
    OAuthEndpoints,
    ServiceName,
    Timeouts,
    TokenLifecycle,
)


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.DATABASE_URL.value, "sqlite:///./deal_sync.db"
        ),
        description="Database connection string",
    )
    pool_size: int = Field(default=5, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum overflow connections")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Echo SQL statements")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class SecurityConfig(BaseModel):
    """Security-related configuration."""

    encryption_key: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.TOKEN_ENCRYPTION_KEY.value),
        description="AES-256 token encryption key (64 hex characters)",
    )


class TokenConfig(BaseModel):
    """Token cache, refresh and retention settings."""

    cache_ttl_seconds: float = Field(
        default=TokenLifecycle.CACHE_TTL_SECONDS, gt=0, description="Token cache TTL"
    )
    min_refresh_interval_seconds: float = Field(
        default=TokenLifecycle.MIN_REFRESH_INTERVAL_SECONDS,
        ge=0,
        description="Minimum time between refreshes of the same token",
    )
    expiry_buffer_seconds: int = Field(
        default=TokenLifecycle.EXPIRY_BUFFER_SECONDS,
        ge=0,
        description="Subtracted from provider expires_in when computing expires_at",
    )
    inactive_after_days: int = Field(
        default=TokenLifecycle.INACTIVE_AFTER_DAYS,
        gt=0,
        description="Deactivate tokens unused for this many days",
    )
    delete_after_days: int = Field(
        default=TokenLifecycle.DELETE_AFTER_DAYS,
        gt=0,
        description="Delete inactive tokens unused for this many days",
    )
    recent_activity_hours: int = Field(
        default=TokenLifecycle.RECENT_ACTIVITY_HOURS,
        gt=0,
        description="Window used for the recent activity statistic",
    )


class SequenceConfig(BaseModel):
    """Project number settings."""

    padding: int = Field(default=Limits.SEQUENCE_PADDING, ge=1, description="Minimum digits")
    department_codes: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_DEPARTMENT_CODES),
        description="Explicit department name to code mappings",
    )

    @field_validator("department_codes")
    def validate_department_codes(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Codes must be 1-3 uppercase ASCII letters."""
        for name, code in v.items():
            if not (
                code.isascii()
                and code.isalpha()
                and code.isupper()
                and len(code) <= Limits.DEPARTMENT_CODE_LENGTH
            ):
                raise ValueError(f"Invalid department code {code!r} for {name!r}")
        return v


class OAuthClientConfig(BaseModel):
    """OAuth client credentials for one external service."""

    client_id: str = Field(default="", description="OAuth client ID")
    client_secret: str = Field(default="", description="OAuth client secret")
    token_url: str = Field(description="OAuth token endpoint")
    timeout_seconds: float = Field(default=Timeouts.OAUTH_REFRESH, gt=0)

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def __repr__(self) -> str:
        """String representation with masked secret."""
        return (
            f"OAuthClientConfig(client_id='{self.client_id}', "
            f"client_secret='***', token_url='{self.token_url}')"
        )


def _crm_client_config() -> OAuthClientConfig:
    return OAuthClientConfig(
        client_id=os.getenv(EnvironmentVariable.CRM_CLIENT_ID.value, ""),
        client_secret=os.getenv(EnvironmentVariable.CRM_CLIENT_SECRET.value, ""),
        token_url=os.getenv(
            EnvironmentVariable.CRM_TOKEN_URL.value, OAuthEndpoints.CRM_TOKEN_URL
        ),
    )


def _accounting_client_config() -> OAuthClientConfig:
    return OAuthClientConfig(
        client_id=os.getenv(EnvironmentVariable.ACCOUNTING_CLIENT_ID.value, ""),
        client_secret=os.getenv(EnvironmentVariable.ACCOUNTING_CLIENT_SECRET.value, ""),
        token_url=os.getenv(
            EnvironmentVariable.ACCOUNTING_TOKEN_URL.value, OAuthEndpoints.ACCOUNTING_TOKEN_URL
        ),
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )

    # Sub-configurations
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    tokens: TokenConfig = Field(default_factory=TokenConfig)
    sequences: SequenceConfig = Field(default_factory=SequenceConfig)
    crm_oauth: OAuthClientConfig = Field(default_factory=_crm_client_config)
    accounting_oauth: OAuthClientConfig = Field(default_factory=_accounting_client_config)

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()

    def oauth_client(self, service_name: ServiceName) -> OAuthClientConfig:
        """Get the OAuth client configuration for a service."""
        if ServiceName(service_name) == ServiceName.CRM:
            return self.crm_oauth
        return self.accounting_oauth


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
