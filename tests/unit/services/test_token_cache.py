"""
Tests for TokenCache.
"""

from datetime import timedelta

import pytest

from deal_sync_core.constants import ServiceName
from deal_sync_core.db import utc_now
from deal_sync_core.schemas.token_schemas import StoredToken
from deal_sync_core.services.token_cache import TokenCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _token(access_token="access"):
    return StoredToken(
        id="token-1",
        account_id="account-1",
        service_name=ServiceName.CRM,
        access_token=access_token,
        expires_at=utc_now() + timedelta(hours=1),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TokenCache(ttl_seconds=300, clock=clock)


class TestTokenCache:
    """TTL cache behaviour."""

    def test_miss(self, cache):
        """Unknown keys miss."""
        assert cache.get("account-1:crm") is None

    def test_put_then_get(self, cache):
        """Values are served until the TTL passes."""
        cache.put("account-1:crm", _token())

        assert cache.get("account-1:crm").access_token == "access"

    def test_expires_after_ttl(self, cache, clock):
        """Entries older than the TTL are dropped on read."""
        cache.put("account-1:crm", _token())

        clock.advance(299)
        assert cache.get("account-1:crm") is not None

        clock.advance(1)
        assert cache.get("account-1:crm") is None
        assert cache.size() == 0

    def test_put_overwrites_and_resets_age(self, cache, clock):
        """Writing through replaces the value and restarts its TTL."""
        cache.put("account-1:crm", _token("old"))
        clock.advance(200)
        cache.put("account-1:crm", _token("new"))
        clock.advance(200)

        assert cache.get("account-1:crm").access_token == "new"

    def test_invalidate_and_clear(self, cache):
        """Entries can be dropped singly or all at once."""
        cache.put("account-1:crm", _token())
        cache.put("account-1:accounting", _token())

        cache.invalidate("account-1:crm")
        cache.invalidate("never-stored")
        assert cache.get("account-1:crm") is None
        assert cache.size() == 1

        cache.clear()
        assert cache.size() == 0

    def test_make_key(self):
        """Keys combine account and service."""
        assert TokenCache.make_key("account-1", "crm") == "account-1:crm"
