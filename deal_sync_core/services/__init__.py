"""Services for token storage and project number issuance."""

from .credential_service import CredentialService, RefreshFunction, create_credential_service
from .oauth_refreshers import OAuthRefresher, build_refresh_function
from .refresh_coordinator import RefreshCoordinator
from .sequence_service import SequenceService, create_sequence_service, derive_department_code
from .token_cache import TokenCache

__all__ = [
    "CredentialService",
    "OAuthRefresher",
    "RefreshCoordinator",
    "RefreshFunction",
    "SequenceService",
    "TokenCache",
    "build_refresh_function",
    "create_credential_service",
    "create_sequence_service",
    "derive_department_code",
]
