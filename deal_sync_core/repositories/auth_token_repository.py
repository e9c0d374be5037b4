"""
Repository for encrypted OAuth token rows.

Only ciphertext passes through here; encryption and decryption belong to the
credential service.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..constants import ServiceName
from ..db.db_base import ensure_utc, utc_now
from ..db.db_token_models import AuthToken
from ..exceptions import BaseError
from ..schemas.token_schemas import AuthTokenRecord
from .base_repository import BaseRepository

# Columns a caller may set through upsert
UPSERT_FIELDS = (
    "encrypted_access_token",
    "encrypted_refresh_token",
    "external_api_domain",
    "external_tenant_id",
    "expires_at",
)


class AuthTokenRepository(BaseRepository):
    """Persistence for AuthToken, keyed by (account_id, service_name)."""

    entity_name = "AuthToken"

    def upsert(self, account_id: str, service_name: ServiceName, record: Dict[str, Any]) -> str:
        """
        Insert or replace the token for an account and service in one statement.

        Replacing keeps ``created_at`` and reactivates a soft-deleted row.

        Args:
            account_id: Owning account
            service_name: External service the token belongs to
            record: Encrypted token fields (see UPSERT_FIELDS)

        Returns:
            The row id
        """
        service = ServiceName(service_name).value
        now = utc_now()
        fields = {key: record.get(key) for key in UPSERT_FIELDS}
        fields["expires_at"] = ensure_utc(fields["expires_at"])

        with self._session_scope(
            "upsert", account_id=account_id, service_name=service
        ) as session:
            dialect = self._dialect_name(session)
            if dialect in ("postgresql", "sqlite"):
                token_id = self._upsert_on_conflict(
                    session, dialect, account_id, service, fields, now
                )
            else:
                token_id = self._upsert_portable(session, account_id, service, fields, now)

        self.logger.debug(
            "Stored auth token",
            extra={"account_id": account_id, "service_name": service, "token_id": token_id},
        )
        return token_id

    def _upsert_on_conflict(
        self,
        session: Session,
        dialect: str,
        account_id: str,
        service: str,
        fields: Dict[str, Any],
        now: datetime,
    ) -> str:
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = insert(AuthToken).values(
            id=str(uuid.uuid4()),
            account_id=account_id,
            service_name=service,
            is_active=True,
            last_used_at=now,
            created_at=now,
            updated_at=now,
            **fields,
        )
        replace = {key: getattr(stmt.excluded, key) for key in UPSERT_FIELDS}
        replace.update(is_active=True, last_used_at=now, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id", "service_name"], set_=replace
        ).returning(AuthToken.id)
        return session.execute(stmt).scalar_one()

    def _upsert_portable(
        self,
        session: Session,
        account_id: str,
        service: str,
        fields: Dict[str, Any],
        now: datetime,
    ) -> str:
        for _ in range(2):
            existing = session.execute(
                select(AuthToken).where(
                    AuthToken.account_id == account_id, AuthToken.service_name == service
                )
            ).scalar_one_or_none()
            if existing is not None:
                for key, value in fields.items():
                    setattr(existing, key, value)
                existing.is_active = True
                existing.last_used_at = now
                session.flush()
                return existing.id

            token = AuthToken(
                account_id=account_id,
                service_name=service,
                is_active=True,
                last_used_at=now,
                **fields,
            )
            session.add(token)
            try:
                session.flush()
                return token.id
            except IntegrityError:
                # A concurrent writer inserted the row first; update it instead
                session.rollback()
        raise IntegrityError("auth token upsert lost the insert race twice", None, None)

    def find(self, account_id: str, service_name: ServiceName) -> Optional[AuthTokenRecord]:
        """Return the active token row for an account and service, or None."""
        service = ServiceName(service_name).value
        with self._session_scope(
            "find", read_only=True, account_id=account_id, service_name=service
        ) as session:
            entity = session.execute(
                select(AuthToken).where(
                    AuthToken.account_id == account_id,
                    AuthToken.service_name == service,
                    AuthToken.is_active.is_(True),
                )
            ).scalar_one_or_none()
            if entity is None:
                return None
            return AuthTokenRecord.model_validate(entity)

    def touch_last_used(self, token_id: str) -> bool:
        """
        Bump ``last_used_at`` for a token. Best-effort: failures are logged, never raised.
        """
        try:
            with self._session_scope("touch_last_used", token_id=token_id) as session:
                result = session.execute(
                    update(AuthToken)
                    .where(AuthToken.id == token_id)
                    .values(last_used_at=utc_now())
                )
                return result.rowcount > 0
        except BaseError as e:
            self.logger.warning(
                "Failed to update token last used time",
                extra={"token_id": token_id, "error_code": e.error_code.value},
            )
            return False

    def deactivate(self, account_id: str, service_name: ServiceName) -> bool:
        """Soft-delete the active token. Returns False when there was none."""
        service = ServiceName(service_name).value
        with self._session_scope(
            "deactivate", account_id=account_id, service_name=service
        ) as session:
            result = session.execute(
                update(AuthToken)
                .where(
                    AuthToken.account_id == account_id,
                    AuthToken.service_name == service,
                    AuthToken.is_active.is_(True),
                )
                .values(is_active=False, updated_at=utc_now())
            )
            return result.rowcount > 0

    def deactivate_unused_since(self, cutoff: datetime) -> int:
        """Soft-delete active tokens whose last use is older than cutoff."""
        with self._session_scope("deactivate_unused_since") as session:
            result = session.execute(
                update(AuthToken)
                .where(AuthToken.is_active.is_(True), AuthToken.last_used_at < ensure_utc(cutoff))
                .values(is_active=False, updated_at=utc_now())
            )
            return result.rowcount

    def delete_inactive_older_than(self, cutoff: datetime) -> int:
        """Hard-delete inactive tokens whose last use is older than cutoff."""
        with self._session_scope("delete_inactive_older_than") as session:
            result = session.execute(
                delete(AuthToken).where(
                    AuthToken.is_active.is_(False), AuthToken.last_used_at < ensure_utc(cutoff)
                )
            )
            return result.rowcount

    # ==================== STATISTICS ====================

    def count_active(self) -> int:
        with self._session_scope("count_active", read_only=True) as session:
            return session.execute(
                select(func.count(AuthToken.id)).where(AuthToken.is_active.is_(True))
            ).scalar_one()

    def count_total(self) -> int:
        with self._session_scope("count_total", read_only=True) as session:
            return session.execute(select(func.count(AuthToken.id))).scalar_one()

    def count_used_since(self, cutoff: datetime) -> int:
        """Active tokens used at or after cutoff."""
        with self._session_scope("count_used_since", read_only=True) as session:
            return session.execute(
                select(func.count(AuthToken.id)).where(
                    AuthToken.is_active.is_(True), AuthToken.last_used_at >= ensure_utc(cutoff)
                )
            ).scalar_one()

    def count_by_service(self) -> Dict[str, int]:
        """Active tokens per service name."""
        with self._session_scope("count_by_service", read_only=True) as session:
            rows = session.execute(
                select(AuthToken.service_name, func.count(AuthToken.id))
                .where(AuthToken.is_active.is_(True))
                .group_by(AuthToken.service_name)
            ).all()
            return {service: count for service, count in rows}
