"""
Service for storing and serving OAuth tokens for external integrations.

This service provides:
- Encrypted persistence of access and refresh tokens per account and service
- A short-lived in-process cache in front of the database
- Expiry-aware refresh through the single-flight RefreshCoordinator
- Soft deactivation, retention cleanup and usage statistics

Token values are never logged.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Any, Callable, Dict, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..config import AppConfig, TokenConfig, get_config
from ..constants import ServiceName
from ..context.account_context import account_context
from ..db.db_base import utc_now
from ..db.db_config import DatabaseManager, get_db_manager
from ..exceptions import (
    AuthenticationExpiredError,
    ConfigurationError,
    CredentialNotFoundError,
    DecryptionError,
    ErrorCode,
    ValidationError,
)
from ..repositories.auth_token_repository import AuthTokenRepository
from ..schemas.token_schemas import (
    AuthTokenRecord,
    CleanupResult,
    StoredToken,
    TokenData,
    TokenStatistics,
)
from ..utils.cipher import TokenCipher
from ..utils.logger import get_logger
from .oauth_refreshers import build_refresh_function
from .refresh_coordinator import RefreshCoordinator
from .token_cache import TokenCache

# Receives the current refresh token, returns the provider's new token material
RefreshFunction = Callable[[str], Union[TokenData, Mapping[str, Any]]]


def _service(service_name: Union[ServiceName, str]) -> ServiceName:
    try:
        return ServiceName(service_name)
    except ValueError as e:
        raise ValidationError(
            f"Unknown service: {service_name}",
            field="service_name",
            error_code=ErrorCode.INVALID_FORMAT,
            cause=e,
            value=str(service_name),
        ) from e


def _token_data(data: Union[TokenData, Mapping[str, Any]]) -> TokenData:
    if isinstance(data, TokenData):
        return data
    try:
        return TokenData.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError("Invalid token data", field="token_data", cause=e) from e


class CredentialService:
    """
    Owns every mutation of stored tokens.

    Reads go cache, then database. An expired token is refreshed through the
    coordinator, so concurrent callers share one provider round trip.
    """

    def __init__(
        self,
        repository: AuthTokenRepository,
        cipher: TokenCipher,
        refresh_functions: Optional[Dict[ServiceName, RefreshFunction]] = None,
        token_config: Optional[TokenConfig] = None,
        cache: Optional[TokenCache] = None,
        coordinator: Optional[RefreshCoordinator] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.repository = repository
        self.cipher = cipher
        self.refresh_functions = {
            ServiceName(name): fn for name, fn in (refresh_functions or {}).items()
        }
        self.token_config = token_config or get_config().tokens
        self.cache = cache or TokenCache(ttl_seconds=self.token_config.cache_ttl_seconds)
        self.coordinator = coordinator or RefreshCoordinator(
            min_interval_seconds=self.token_config.min_refresh_interval_seconds
        )
        if self.coordinator.on_terminal_failure is None:
            self.coordinator.on_terminal_failure = self._deactivate_key
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="token-last-used"
        )
        self.logger = get_logger()

    # ==================== WRITES ====================

    def store(
        self,
        account_id: str,
        service_name: Union[ServiceName, str],
        token_data: Union[TokenData, Mapping[str, Any]],
    ) -> StoredToken:
        """
        Encrypt and persist a token, replacing any previous one for the pair.

        Raises:
            ValidationError: If the access token is empty or the service unknown
            RepositoryError: If the database write fails
        """
        service = _service(service_name)
        data = _token_data(token_data)
        if not data.access_token:
            raise ValidationError(
                "Access token is required", field="access_token", service_name=service.value
            )

        with account_context(account_id):
            record = {
                "encrypted_access_token": self.cipher.encrypt_to_json(data.access_token),
                "encrypted_refresh_token": self.cipher.encrypt_to_json(data.refresh_token or None),
                "external_api_domain": data.external_api_domain,
                "external_tenant_id": data.external_tenant_id,
                "expires_at": data.expires_at,
            }
            token_id = self.repository.upsert(account_id, service, record)

            now = utc_now()
            stored = StoredToken(
                id=token_id,
                account_id=account_id,
                service_name=service,
                access_token=data.access_token,
                refresh_token=data.refresh_token or None,
                expires_at=data.expires_at,
                external_api_domain=data.external_api_domain,
                external_tenant_id=data.external_tenant_id,
                last_used_at=now,
            )
            self.cache.put(TokenCache.make_key(account_id, service.value), stored)

            self.logger.info(
                "Stored token",
                extra={
                    "service_name": service.value,
                    "token_id": token_id,
                    "expires_at": data.expires_at.isoformat(),
                },
            )
            return stored

    def deactivate(self, account_id: str, service_name: Union[ServiceName, str]) -> bool:
        """Soft-delete the active token and drop it from the cache."""
        service = _service(service_name)
        with account_context(account_id):
            deactivated = self.repository.deactivate(account_id, service)
            self.cache.invalidate(TokenCache.make_key(account_id, service.value))
            self.logger.info(
                "Deactivated token",
                extra={"service_name": service.value, "deactivated": deactivated},
            )
            return deactivated

    def _deactivate_key(self, key: str) -> None:
        account_id, service_name = key.rsplit(":", 1)
        self.deactivate(account_id, service_name)

    # ==================== READS ====================

    def get_token(
        self, account_id: str, service_name: Union[ServiceName, str]
    ) -> Optional[StoredToken]:
        """
        Return the decrypted active token record without refreshing it.

        Raises:
            DecryptionError: If the stored ciphertext cannot be read
        """
        service = _service(service_name)
        with account_context(account_id):
            return self._load(account_id, service)

    def get_valid_access_token(
        self, account_id: str, service_name: Union[ServiceName, str]
    ) -> Optional[str]:
        """
        Return a usable access token, refreshing it first when it has expired.

        Returns None when no active token is stored or it cannot be decrypted.

        Raises:
            AuthenticationExpiredError: Refresh was rejected; the token is now inactive
            RefreshFailedError: Refresh failed transiently; the token stays active
            RefreshThrottledError: Refresh was attempted too soon after the previous one
        """
        service = _service(service_name)
        key = TokenCache.make_key(account_id, service.value)

        with account_context(account_id):
            try:
                token = self._load(account_id, service)
            except DecryptionError:
                self.cache.invalidate(key)
                self.logger.warning(
                    "Stored token could not be decrypted; treating as absent",
                    extra={"service_name": service.value},
                )
                return None

            if token is None:
                self.logger.debug("No stored token", extra={"service_name": service.value})
                return None

            if token.is_expired():
                refreshed = self.coordinator.refresh_once(
                    key, lambda: self._refresh(account_id, service, token)
                )
                return refreshed.access_token

            self._touch_in_background(token.id)
            return token.access_token

    def require_valid_access_token(
        self, account_id: str, service_name: Union[ServiceName, str]
    ) -> str:
        """
        Like get_valid_access_token but raises instead of returning None.

        Raises:
            CredentialNotFoundError: If there is no usable token
        """
        access_token = self.get_valid_access_token(account_id, service_name)
        if access_token is None:
            service = _service(service_name)
            raise CredentialNotFoundError(
                f"No valid {service.value} token for account",
                account_id=account_id,
                service_name=service.value,
            )
        return access_token

    def _load(self, account_id: str, service: ServiceName) -> Optional[StoredToken]:
        key = TokenCache.make_key(account_id, service.value)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        record = self.repository.find(account_id, service)
        if record is None:
            return None

        token = self._decrypt_record(record)
        self.cache.put(key, token)
        return token

    def _decrypt_record(self, record: AuthTokenRecord) -> StoredToken:
        return StoredToken(
            id=record.id,
            account_id=record.account_id,
            service_name=record.service_name,
            access_token=self.cipher.decrypt_from_json(record.encrypted_access_token),
            refresh_token=self.cipher.decrypt_from_json(record.encrypted_refresh_token),
            expires_at=record.expires_at,
            external_api_domain=record.external_api_domain,
            external_tenant_id=record.external_tenant_id,
            last_used_at=record.last_used_at,
            created_at=record.created_at,
        )

    def _refresh(self, account_id: str, service: ServiceName, current: StoredToken) -> StoredToken:
        """Runs on the coordinator's leader thread only."""
        if not current.refresh_token:
            raise AuthenticationExpiredError(
                f"No refresh token stored for {service.value}; re-authorization required",
                account_id=account_id,
                service_name=service.value,
            )

        refresh_fn = self.refresh_functions.get(service)
        if refresh_fn is None:
            raise ConfigurationError(
                f"No refresh function registered for {service.value}",
                setting=f"{service.value}_oauth",
            )

        with account_context(account_id):
            fresh = _token_data(refresh_fn(current.refresh_token))
            merged = TokenData(
                access_token=fresh.access_token,
                refresh_token=fresh.refresh_token or current.refresh_token,
                expires_at=fresh.expires_at,
                external_api_domain=fresh.external_api_domain or current.external_api_domain,
                external_tenant_id=fresh.external_tenant_id or current.external_tenant_id,
            )
            return self.store(account_id, service, merged)

    def _touch_in_background(self, token_id: str) -> None:
        try:
            self._executor.submit(self.repository.touch_last_used, token_id)
        except RuntimeError:
            # Executor already shut down
            self.logger.debug("Skipped last used update", extra={"token_id": token_id})

    # ==================== MAINTENANCE ====================

    def cleanup_expired(self, now=None) -> CleanupResult:
        """
        Deactivate long-unused tokens and delete long-inactive ones, then clear the cache.
        """
        now = now or utc_now()
        deactivated = self.repository.deactivate_unused_since(
            now - timedelta(days=self.token_config.inactive_after_days)
        )
        deleted = self.repository.delete_inactive_older_than(
            now - timedelta(days=self.token_config.delete_after_days)
        )
        self.cache.clear()

        result = CleanupResult(deactivated_count=deactivated, deleted_count=deleted, timestamp=now)
        self.logger.info(
            "Token cleanup completed",
            extra={"deactivated_count": deactivated, "deleted_count": deleted},
        )
        return result

    def statistics(self, now=None) -> TokenStatistics:
        """Counts of stored tokens and cache occupancy."""
        now = now or utc_now()
        return TokenStatistics(
            active_tokens=self.repository.count_active(),
            total_tokens=self.repository.count_total(),
            recent_activity=self.repository.count_used_since(
                now - timedelta(hours=self.token_config.recent_activity_hours)
            ),
            by_service=self.repository.count_by_service(),
            cache_size=self.cache.size(),
        )

    def close(self) -> None:
        """Wait for pending background work, stop the executor and close HTTP clients."""
        self._executor.shutdown(wait=True)
        for refresh_fn in self.refresh_functions.values():
            close = getattr(refresh_fn, "close", None)
            if callable(close):
                close()


def create_credential_service(
    db_manager: Optional[DatabaseManager] = None,
    config: Optional[AppConfig] = None,
    http_client=None,
) -> CredentialService:
    """
    Build a CredentialService from configuration.

    Refresh functions are registered for every service whose OAuth client
    credentials are configured.

    Raises:
        ConfigurationError: If the token encryption key is missing or malformed
    """
    config = config or get_config()
    db_manager = db_manager or get_db_manager()

    refresh_functions = {}
    for service in ServiceName:
        client_config = config.oauth_client(service)
        if client_config.is_configured:
            refresh_functions[service] = build_refresh_function(
                service, client_config, http_client=http_client
            )

    return CredentialService(
        repository=AuthTokenRepository(db_manager.session_factory),
        cipher=TokenCipher.from_config(config.security),
        refresh_functions=refresh_functions,
        token_config=config.tokens,
    )
