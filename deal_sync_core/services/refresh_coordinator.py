"""
Single-flight coordination of OAuth token refreshes.

Concurrent callers that find the same token expired must trigger exactly one
refresh against the provider: the first caller for a key becomes the leader
and runs the refresh, later callers wait on the leader's future and receive
its outcome. A completed refresh also opens a short rate-limit window during
which no new refresh of that key may start.

Coordination is in-process only. Several processes sharing one database can
still refresh the same token concurrently; the last write wins.
"""

import threading
import time
from concurrent.futures import Future
from typing import Callable, Dict, Optional

from ..constants import Limits, TokenLifecycle
from ..exceptions import (
    AuthenticationExpiredError,
    BaseError,
    OAuthRefreshError,
    RefreshFailedError,
    RefreshThrottledError,
)
from ..schemas.token_schemas import StoredToken
from ..utils.logger import get_logger


class RefreshCoordinator:
    """Deduplicates and rate-limits refreshes per ``account_id:service_name`` key."""

    def __init__(
        self,
        min_interval_seconds: float = TokenLifecycle.MIN_REFRESH_INTERVAL_SECONDS,
        on_terminal_failure: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            min_interval_seconds: Minimum time between the end of one refresh of
                a key and the start of the next
            on_terminal_failure: Called with the key when the provider rejects
                the refresh outright, before waiters are released
            clock: Monotonic clock, injectable for tests
        """
        self.min_interval_seconds = min_interval_seconds
        self.on_terminal_failure = on_terminal_failure
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight: Dict[str, Future] = {}
        self._last_refresh_at: Dict[str, float] = {}
        self._last_result: Dict[str, StoredToken] = {}
        self.logger = get_logger()

    def refresh_once(self, key: str, refresh_fn: Callable[[], StoredToken]) -> StoredToken:
        """
        Refresh the token for key, or join the refresh already running for it.

        Raises:
            AuthenticationExpiredError: Provider rejected the refresh (400/401)
            RefreshFailedError: Any other refresh failure; the token stays active
            RefreshThrottledError: Inside the rate-limit window with no usable result
        """
        throttled = False
        with self._lock:
            future = self._in_flight.get(key)
            is_leader = future is None
            if is_leader:
                recent = self._recent_result(key)
                if recent is not None:
                    return recent
                if self._in_rate_limit_window(key):
                    throttled = True
                else:
                    future = Future()
                    self._in_flight[key] = future

        if throttled:
            raise RefreshThrottledError(
                f"Refresh of {key} attempted within {self.min_interval_seconds}s "
                "of the previous one",
                refresh_key=key,
            )

        if not is_leader:
            self.logger.debug("Waiting for in-flight token refresh", extra={"refresh_key": key})
            return future.result()

        return self._lead(key, future, refresh_fn)

    def _lead(
        self, key: str, future: Future, refresh_fn: Callable[[], StoredToken]
    ) -> StoredToken:
        self.logger.info("Refreshing token", extra={"refresh_key": key})
        try:
            result = refresh_fn()
        except BaseException as e:
            error = e
            try:
                if isinstance(e, Exception):
                    error = self._classify_failure(key, e)
            finally:
                # Waiters are released even when classification itself fails
                self._settle(key, future, None)
                if not isinstance(error, Exception):
                    error = RefreshFailedError(
                        f"Token refresh interrupted for {key}", cause=e, refresh_key=key
                    )
                future.set_exception(error)
            if not isinstance(e, Exception):
                raise
            if error is e:
                raise
            raise error from e

        self._settle(key, future, result)
        future.set_result(result)
        self.logger.info("Token refresh completed", extra={"refresh_key": key})
        return result

    def _settle(self, key: str, future: Future, result: Optional[StoredToken]) -> None:
        with self._lock:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]
            self._last_refresh_at[key] = self._clock()
            if result is not None:
                self._last_result[key] = result

    def _classify_failure(self, key: str, error: Exception) -> BaseError:
        terminal = isinstance(error, AuthenticationExpiredError) or (
            isinstance(error, OAuthRefreshError)
            and error.provider_status in Limits.TERMINAL_REFRESH_STATUS_CODES
        )
        if not terminal:
            if isinstance(error, RefreshFailedError):
                return error
            return RefreshFailedError(
                f"Token refresh failed for {key}", cause=error, refresh_key=key
            )

        if self.on_terminal_failure is not None:
            try:
                self.on_terminal_failure(key)
            except Exception as callback_error:
                self.logger.error(
                    "Failed to deactivate token after terminal refresh failure",
                    extra={
                        "refresh_key": key,
                        "error_id": getattr(callback_error, "error_id", None),
                        "error_type": type(callback_error).__name__,
                    },
                )

        if isinstance(error, AuthenticationExpiredError):
            return error
        return AuthenticationExpiredError(
            f"Provider rejected token refresh for {key}; re-authorization required",
            cause=error,
            refresh_key=key,
            provider_status=getattr(error, "provider_status", None),
        )

    def _in_rate_limit_window(self, key: str) -> bool:
        last = self._last_refresh_at.get(key)
        return last is not None and self._clock() - last < self.min_interval_seconds

    def _recent_result(self, key: str) -> Optional[StoredToken]:
        if not self._in_rate_limit_window(key):
            return None
        result = self._last_result.get(key)
        if result is None or result.is_expired():
            return None
        return result

    def status(self) -> Dict[str, object]:
        """Snapshot of in-flight refreshes and open rate-limit windows."""
        with self._lock:
            now = self._clock()
            rate_limited = {
                key: round(self.min_interval_seconds - (now - last), 3)
                for key, last in self._last_refresh_at.items()
                if now - last < self.min_interval_seconds
            }
            return {
                "active_refreshes": len(self._in_flight),
                "refresh_keys": sorted(self._in_flight),
                "rate_limited": rate_limited,
            }

    def clear(self) -> None:
        """Forget all coordination state. Running refreshes still settle their waiters."""
        with self._lock:
            self._in_flight.clear()
            self._last_refresh_at.clear()
            self._last_result.clear()
