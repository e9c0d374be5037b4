"""
OAuth refresh-token grants for the supported providers.

Each refresher is a callable taking the current refresh token and returning
the provider's new TokenData. Failures are raised as OAuthRefreshError with
the provider's HTTP status so the refresh coordinator can tell a rejected
grant (re-authorization needed) from a transient outage.
"""

from datetime import timedelta
from typing import Optional, Union

import httpx

from ..config import OAuthClientConfig, get_config
from ..constants import ServiceName
from ..db.db_base import utc_now
from ..exceptions import OAuthRefreshError
from ..schemas.token_schemas import TokenData
from ..utils.logger import get_logger


class OAuthRefresher:
    """Refresh-token grant against one provider's token endpoint."""

    def __init__(
        self,
        service_name: ServiceName,
        client_config: OAuthClientConfig,
        http_client: Optional[httpx.Client] = None,
        expiry_buffer_seconds: Optional[int] = None,
    ):
        self.service_name = ServiceName(service_name)
        self.client_config = client_config
        self._http_client = http_client
        self._owns_client = http_client is None
        if expiry_buffer_seconds is None:
            expiry_buffer_seconds = get_config().tokens.expiry_buffer_seconds
        self.expiry_buffer_seconds = expiry_buffer_seconds
        self.logger = get_logger()

    @property
    def http_client(self) -> httpx.Client:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=self.client_config.timeout_seconds)
        return self._http_client

    def __call__(self, refresh_token: str) -> TokenData:
        """
        Exchange a refresh token for a new access token.

        Raises:
            OAuthRefreshError: On a non-2xx response, malformed body or transport failure
        """
        try:
            response = self.http_client.post(
                self.client_config.token_url,
                data={"grant_type": "refresh_token", "refresh_token": refresh_token},
                auth=(self.client_config.client_id, self.client_config.client_secret),
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            self.logger.warning(
                "OAuth refresh rejected",
                extra={"service_name": self.service_name.value, "provider_status": status},
            )
            raise OAuthRefreshError(
                f"{self.service_name.value} token endpoint returned {status}",
                service_name=self.service_name.value,
                provider_status=status,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise OAuthRefreshError(
                f"{self.service_name.value} token endpoint unreachable",
                service_name=self.service_name.value,
                cause=e,
            ) from e
        except ValueError as e:
            raise OAuthRefreshError(
                f"{self.service_name.value} token endpoint returned invalid JSON",
                service_name=self.service_name.value,
                provider_status=response.status_code,
                cause=e,
            ) from e

        return self._parse(payload)

    def _parse(self, payload: dict) -> TokenData:
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise OAuthRefreshError(
                f"{self.service_name.value} refresh response has no access_token",
                service_name=self.service_name.value,
            )

        try:
            expires_in = int(payload["expires_in"])
        except (KeyError, TypeError, ValueError) as e:
            raise OAuthRefreshError(
                f"{self.service_name.value} refresh response has no usable expires_in",
                service_name=self.service_name.value,
                cause=e,
            ) from e
        expires_at = utc_now() + timedelta(seconds=expires_in - self.expiry_buffer_seconds)

        return TokenData(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
            external_api_domain=payload.get("api_domain"),
        )

    def close(self) -> None:
        """Close the HTTP client if this refresher created it."""
        if self._owns_client and self._http_client is not None:
            self._http_client.close()


def build_refresh_function(
    service_name: Union[ServiceName, str],
    client_config: Optional[OAuthClientConfig] = None,
    http_client: Optional[httpx.Client] = None,
) -> OAuthRefresher:
    """Build the refresh callable for a service, defaulting to its configured client."""
    service = ServiceName(service_name)
    if client_config is None:
        client_config = get_config().oauth_client(service)
    return OAuthRefresher(service, client_config, http_client=http_client)
