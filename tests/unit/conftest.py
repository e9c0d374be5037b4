"""
Unit test conftest.py - Component-specific fixtures.

This module provides fixtures specific to unit testing:
- Repository fixtures on the per-test database
- Service fixtures with stubbed refresh functions
"""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from deal_sync_core.constants import ServiceName
from deal_sync_core.repositories import (
    AuthTokenRepository,
    ProjectMappingRepository,
    SequenceRepository,
)
from deal_sync_core.services import CredentialService, SequenceService
from tests.fixtures.factories import TokenDataFactory, bind_factories

# ==================== REPOSITORY FIXTURES ====================


@pytest.fixture(scope="function")
def token_repository(session_factory) -> AuthTokenRepository:
    """Token repository on the test database."""
    return AuthTokenRepository(session_factory)


@pytest.fixture(scope="function")
def sequence_repository(session_factory) -> SequenceRepository:
    """Sequence repository on the test database."""
    return SequenceRepository(session_factory)


@pytest.fixture(scope="function")
def mapping_repository(session_factory) -> ProjectMappingRepository:
    """Project mapping repository on the test database."""
    return ProjectMappingRepository(session_factory)


@pytest.fixture(scope="function")
def factories(db_session):
    """Model factories bound to the test session."""
    bind_factories(db_session)
    return db_session


# ==================== SERVICE FIXTURES ====================


@pytest.fixture(scope="function")
def crm_refresh():
    """Stub CRM refresh function returning fresh token material."""
    return Mock(side_effect=lambda refresh_token: TokenDataFactory(refresh_token=None))


@pytest.fixture(scope="function")
def accounting_refresh():
    """Stub accounting refresh function returning fresh token material."""
    return Mock(side_effect=lambda refresh_token: TokenDataFactory())


@pytest.fixture(scope="function")
def credential_service(token_repository, cipher, app_config, crm_refresh, accounting_refresh):
    """Credential service with stubbed refresh functions."""
    service = CredentialService(
        repository=token_repository,
        cipher=cipher,
        refresh_functions={
            ServiceName.CRM: crm_refresh,
            ServiceName.ACCOUNTING: accounting_refresh,
        },
        token_config=app_config.tokens,
        executor=ThreadPoolExecutor(max_workers=1),
    )

    yield service

    service.close()


@pytest.fixture(scope="function")
def sequence_service(sequence_repository, mapping_repository, app_config) -> SequenceService:
    """Sequence service on the test database."""
    return SequenceService(
        sequence_repository,
        sequence_config=app_config.sequences,
        mapping_repository=mapping_repository,
    )
