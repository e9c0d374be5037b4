"""
Pydantic schemas for stored OAuth tokens.

``TokenData`` is what callers and refresh functions hand to the credential
service; ``AuthTokenRecord`` is the encrypted row as the repository returns
it; ``StoredToken`` is the decrypted view the service hands back.
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..constants import ServiceName
from ..db.db_base import ensure_utc, utc_now


class TokenData(BaseModel):
    """Token material obtained from an OAuth provider."""

    model_config = ConfigDict(str_strip_whitespace=True)

    access_token: str = Field(..., repr=False, description="OAuth access token")
    refresh_token: Optional[str] = Field(None, repr=False, description="OAuth refresh token")
    expires_at: datetime = Field(..., description="Absolute expiry (UTC)")
    external_api_domain: Optional[str] = Field(None, description="Account API domain (crm)")
    external_tenant_id: Optional[str] = Field(None, description="Tenant identifier (accounting)")

    @field_validator("expires_at")
    @classmethod
    def normalize_expires_at(cls, v):
        return ensure_utc(v)


class AuthTokenRecord(BaseModel):
    """Encrypted token row."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    service_name: ServiceName
    encrypted_access_token: str = Field(repr=False)
    encrypted_refresh_token: Optional[str] = Field(None, repr=False)
    external_api_domain: Optional[str] = None
    external_tenant_id: Optional[str] = None
    expires_at: datetime
    is_active: bool = True
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("expires_at", "last_used_at", "created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v):
        return ensure_utc(v)


class StoredToken(BaseModel):
    """Decrypted token as served to callers. Never log the token fields."""

    id: str
    account_id: str
    service_name: ServiceName
    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(None, repr=False)
    expires_at: datetime
    external_api_domain: Optional[str] = None
    external_tenant_id: Optional[str] = None
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Expired at ``now >= expires_at``."""
        return (now or utc_now()) >= self.expires_at


class CleanupResult(BaseModel):
    """Outcome of a retention sweep."""

    deactivated_count: int = 0
    deleted_count: int = 0
    timestamp: datetime = Field(default_factory=utc_now)


class TokenStatistics(BaseModel):
    """Operational counters for stored tokens."""

    active_tokens: int = 0
    total_tokens: int = 0
    recent_activity: int = Field(0, description="Active tokens used in the recent window")
    by_service: Dict[str, int] = Field(default_factory=dict)
    cache_size: int = 0
