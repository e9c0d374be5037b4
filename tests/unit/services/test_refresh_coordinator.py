"""
Tests for RefreshCoordinator.

Covers single-flight deduplication, the rate-limit window and failure
classification.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import Mock

import pytest

from deal_sync_core.constants import ServiceName
from deal_sync_core.db import utc_now
from deal_sync_core.exceptions import (
    AuthenticationExpiredError,
    OAuthRefreshError,
    RefreshFailedError,
    RefreshThrottledError,
)
from deal_sync_core.schemas.token_schemas import StoredToken
from deal_sync_core.services.refresh_coordinator import RefreshCoordinator

KEY = "account-1:crm"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Interrupted(BaseException):
    """Stands in for KeyboardInterrupt or SystemExit inside a refresh."""


def _token(access_token="fresh", expires_in=timedelta(hours=1)):
    return StoredToken(
        id="token-1",
        account_id="account-1",
        service_name=ServiceName.CRM,
        access_token=access_token,
        expires_at=utc_now() + expires_in,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def on_terminal_failure():
    return Mock()


@pytest.fixture
def coordinator(clock, on_terminal_failure):
    return RefreshCoordinator(
        min_interval_seconds=5, on_terminal_failure=on_terminal_failure, clock=clock
    )


class TestSingleFlight:
    """Concurrent callers share one refresh."""

    def test_concurrent_callers_share_one_refresh(self):
        """Ten callers for one key cause exactly one refresh and see the same result."""
        coordinator = RefreshCoordinator(min_interval_seconds=5)
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_refresh():
            calls.append(1)
            started.set()
            release.wait(timeout=5)
            return _token("shared")

        with ThreadPoolExecutor(max_workers=10) as executor:
            leader = executor.submit(coordinator.refresh_once, KEY, slow_refresh)
            assert started.wait(timeout=5)
            followers = [
                executor.submit(coordinator.refresh_once, KEY, slow_refresh) for _ in range(9)
            ]
            time.sleep(0.1)
            release.set()
            results = [leader.result(timeout=5)] + [f.result(timeout=5) for f in followers]

        assert len(calls) == 1
        assert {r.access_token for r in results} == {"shared"}

    def test_different_keys_refresh_independently(self, coordinator):
        """Keys do not block or rate-limit each other."""
        first = coordinator.refresh_once("account-1:crm", lambda: _token("crm"))
        second = coordinator.refresh_once("account-1:accounting", lambda: _token("accounting"))

        assert first.access_token == "crm"
        assert second.access_token == "accounting"

    def test_registration_removed_after_settle(self, coordinator):
        """No in-flight entry remains once a refresh completes."""
        coordinator.refresh_once(KEY, lambda: _token())

        assert coordinator.status()["active_refreshes"] == 0

    def test_followers_receive_leader_failure(self):
        """A failed refresh is delivered to every waiter."""
        coordinator = RefreshCoordinator(min_interval_seconds=5)
        started = threading.Event()
        release = threading.Event()

        def failing_refresh():
            started.set()
            release.wait(timeout=5)
            raise OAuthRefreshError("boom", service_name="crm", provider_status=503)

        with ThreadPoolExecutor(max_workers=4) as executor:
            leader = executor.submit(coordinator.refresh_once, KEY, failing_refresh)
            assert started.wait(timeout=5)
            followers = [
                executor.submit(coordinator.refresh_once, KEY, failing_refresh) for _ in range(3)
            ]
            time.sleep(0.1)
            release.set()

            for future in [leader] + followers:
                with pytest.raises((RefreshFailedError, RefreshThrottledError)):
                    future.result(timeout=5)

        with pytest.raises(RefreshFailedError):
            leader.result()


class TestRateLimit:
    """Minimum interval between refreshes of one key."""

    def test_recent_result_reused_inside_window(self, coordinator, clock):
        """A second refresh inside the window returns the previous result."""
        refresh = Mock(return_value=_token("first"))
        coordinator.refresh_once(KEY, refresh)

        clock.advance(2)
        result = coordinator.refresh_once(KEY, Mock(return_value=_token("second")))

        assert result.access_token == "first"
        assert refresh.call_count == 1

    def test_throttled_when_previous_result_expired(self, coordinator, clock):
        """Inside the window with no usable result the caller is throttled."""
        coordinator.refresh_once(KEY, lambda: _token(expires_in=timedelta(seconds=-1)))

        clock.advance(1)
        with pytest.raises(RefreshThrottledError):
            coordinator.refresh_once(KEY, lambda: _token())

    def test_throttled_after_failed_refresh(self, coordinator, clock):
        """A failed refresh also opens the window."""
        with pytest.raises(RefreshFailedError):
            coordinator.refresh_once(KEY, Mock(side_effect=RuntimeError("network")))

        clock.advance(1)
        with pytest.raises(RefreshThrottledError):
            coordinator.refresh_once(KEY, lambda: _token())

    def test_refresh_allowed_after_window(self, coordinator, clock):
        """Once the interval has passed a new refresh runs."""
        coordinator.refresh_once(KEY, lambda: _token("first"))

        clock.advance(5)
        result = coordinator.refresh_once(KEY, lambda: _token("second"))

        assert result.access_token == "second"


class TestFailureClassification:
    """Terminal versus transient failures."""

    @pytest.mark.parametrize("status", [400, 401])
    def test_provider_rejection_is_terminal(self, coordinator, on_terminal_failure, status):
        """400/401 deactivates the token and asks for re-authorization."""
        error = OAuthRefreshError("invalid_grant", service_name="crm", provider_status=status)

        with pytest.raises(AuthenticationExpiredError):
            coordinator.refresh_once(KEY, Mock(side_effect=error))

        on_terminal_failure.assert_called_once_with(KEY)

    @pytest.mark.parametrize("status", [429, 500, 503, None])
    def test_other_failures_are_transient(self, coordinator, on_terminal_failure, status):
        """Anything else leaves the token active."""
        error = OAuthRefreshError("unavailable", service_name="crm", provider_status=status)

        with pytest.raises(RefreshFailedError) as exc_info:
            coordinator.refresh_once(KEY, Mock(side_effect=error))

        assert exc_info.value.cause is error
        on_terminal_failure.assert_not_called()

    def test_unexpected_exception_is_transient(self, coordinator, on_terminal_failure):
        """Non-provider errors are wrapped as RefreshFailedError."""
        with pytest.raises(RefreshFailedError):
            coordinator.refresh_once(KEY, Mock(side_effect=ValueError("bad payload")))

        on_terminal_failure.assert_not_called()

    def test_authentication_expired_passes_through(self, coordinator, on_terminal_failure):
        """A refresh function may declare the failure terminal itself."""
        error = AuthenticationExpiredError("no refresh token")

        with pytest.raises(AuthenticationExpiredError) as exc_info:
            coordinator.refresh_once(KEY, Mock(side_effect=error))

        assert exc_info.value is error
        on_terminal_failure.assert_called_once_with(KEY)


class TestSettlement:
    """A refresh always releases its waiters and its registration."""

    def _run_with_follower(self, coordinator, refresh):
        started = threading.Event()
        release = threading.Event()

        def blocking_refresh():
            started.set()
            release.wait(timeout=5)
            return refresh()

        with ThreadPoolExecutor(max_workers=2) as executor:
            leader = executor.submit(coordinator.refresh_once, KEY, blocking_refresh)
            assert started.wait(timeout=5)
            follower = executor.submit(coordinator.refresh_once, KEY, blocking_refresh)
            time.sleep(0.1)
            release.set()
            leader_error = leader.exception(timeout=5)
            follower_error = follower.exception(timeout=5)
        return leader_error, follower_error

    def test_failing_deactivation_callback_still_settles(self):
        """An unexpected error from the terminal-failure callback is logged, not fatal."""
        on_terminal_failure = Mock(side_effect=RuntimeError("database gone"))
        coordinator = RefreshCoordinator(
            min_interval_seconds=5, on_terminal_failure=on_terminal_failure
        )

        def rejected():
            raise OAuthRefreshError("invalid_grant", service_name="crm", provider_status=401)

        leader_error, follower_error = self._run_with_follower(coordinator, rejected)

        assert isinstance(leader_error, AuthenticationExpiredError)
        assert isinstance(follower_error, (AuthenticationExpiredError, RefreshThrottledError))
        on_terminal_failure.assert_called_once_with(KEY)
        assert coordinator.status()["active_refreshes"] == 0

    def test_interrupted_refresh_still_settles(self):
        """A BaseException in the refresh reaches the leader; waiters get RefreshFailedError."""
        coordinator = RefreshCoordinator(min_interval_seconds=5)

        def interrupted():
            raise Interrupted()

        leader_error, follower_error = self._run_with_follower(coordinator, interrupted)

        assert isinstance(leader_error, Interrupted)
        assert isinstance(follower_error, (RefreshFailedError, RefreshThrottledError))
        assert coordinator.status()["active_refreshes"] == 0

    def test_interrupted_refresh_opens_rate_limit_window(self, coordinator, clock):
        """The next caller is throttled rather than blocked."""
        with pytest.raises(Interrupted):
            coordinator.refresh_once(KEY, Mock(side_effect=Interrupted()))

        clock.advance(1)
        with pytest.raises(RefreshThrottledError):
            coordinator.refresh_once(KEY, lambda: _token())

        clock.advance(5)
        assert coordinator.refresh_once(KEY, lambda: _token("after")).access_token == "after"


class TestStatus:
    """Introspection and reset."""

    def test_status_during_and_after_refresh(self, coordinator, clock):
        """In-flight keys are listed while running, rate-limited keys afterwards."""
        seen = {}

        def refresh():
            seen.update(coordinator.status())
            return _token()

        coordinator.refresh_once(KEY, refresh)

        assert seen["active_refreshes"] == 1
        assert seen["refresh_keys"] == [KEY]

        status = coordinator.status()
        assert status["active_refreshes"] == 0
        assert status["rate_limited"] == {KEY: 5}

    def test_clear(self, coordinator, clock):
        """clear forgets rate-limit windows."""
        coordinator.refresh_once(KEY, lambda: _token("first"))
        coordinator.clear()

        result = coordinator.refresh_once(KEY, lambda: _token("second"))

        assert result.access_token == "second"
        assert coordinator.status()["rate_limited"] == {KEY: 5}
