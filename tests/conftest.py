"""
Test fixtures for the deal sync core.

This module provides shared test fixtures including database setup,
configuration and common test identifiers.

The database is a SQLite file under the test's tmp_path rather than
``:memory:``: services hand work to background and follower threads, and an
in-memory SQLite database is private to a single connection.
"""

import pytest

from deal_sync_core.config import (
    AppConfig,
    DatabaseConfig,
    OAuthClientConfig,
    SecurityConfig,
    reset_config,
    set_config,
)
from deal_sync_core.db import DatabaseManager, close_db, initialize_db
from deal_sync_core.utils.cipher import TokenCipher
from deal_sync_core.utils.logger import reset_logging


@pytest.fixture(scope="session")
def encryption_key() -> str:
    """Hex AES-256 key shared by the test session."""
    return TokenCipher.generate_key()


@pytest.fixture(autouse=True)
def app_config(encryption_key, tmp_path) -> AppConfig:
    """Install a test configuration for every test."""
    config = AppConfig(
        environment="test",
        database=DatabaseConfig(connection_string=f"sqlite:///{tmp_path / 'deal_sync_test.db'}"),
        security=SecurityConfig(encryption_key=encryption_key),
        crm_oauth=OAuthClientConfig(
            client_id="crm-client",
            client_secret="crm-secret",
            token_url="https://crm.example.test/oauth/token",
        ),
        accounting_oauth=OAuthClientConfig(
            client_id="accounting-client",
            client_secret="accounting-secret",
            token_url="https://accounting.example.test/connect/token",
        ),
    )
    set_config(config)

    yield config

    reset_config()
    reset_logging()


@pytest.fixture(scope="function")
def db_manager(app_config: AppConfig) -> DatabaseManager:
    """Create a fresh database with all tables for each test."""
    manager = initialize_db(app_config.database)

    yield manager

    close_db()


@pytest.fixture(scope="function")
def session_factory(db_manager: DatabaseManager):
    """Session factory bound to the test database."""
    return db_manager.session_factory


@pytest.fixture(scope="function")
def db_session(db_manager: DatabaseManager):
    """A session for arranging and inspecting rows directly."""
    session = db_manager.session_factory()

    yield session

    session.rollback()
    session.close()


@pytest.fixture
def cipher(encryption_key: str) -> TokenCipher:
    """Cipher using the session key."""
    return TokenCipher.from_hex(encryption_key)


@pytest.fixture
def sample_account_id() -> str:
    """Standard account ID for testing."""
    return "test-account-123"
