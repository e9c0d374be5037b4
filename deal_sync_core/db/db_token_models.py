"""
Stored OAuth token model.

Just the data structure; encryption and lifecycle rules live in the
credential service.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text

from .db_base import TimestampMixin, UUIDMixin, utc_now
from .db_config import Base


class AuthToken(Base, UUIDMixin, TimestampMixin):
    """One encrypted credential per account and external service."""

    __tablename__ = "auth_tokens"

    account_id = Column(String(100), nullable=False)
    service_name = Column(String(50), nullable=False)

    # JSON envelopes produced by TokenCipher, never plaintext
    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=True)

    # Provider specific routing data
    external_api_domain = Column(String(255), nullable=True)
    external_tenant_id = Column(String(100), nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_auth_token_lookup", "account_id", "service_name", unique=True),
        Index("ix_auth_token_last_used", "is_active", "last_used_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuthToken(id='{self.id}', account_id='{self.account_id}', "
            f"service_name='{self.service_name}', is_active={self.is_active})>"
        )
