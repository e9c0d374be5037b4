"""Pydantic schemas exchanged between repositories, services and callers."""

from .sequence_schemas import ProjectMappingRecord, ProjectNumberParts
from .token_schemas import (
    AuthTokenRecord,
    CleanupResult,
    StoredToken,
    TokenData,
    TokenStatistics,
)

__all__ = [
    "AuthTokenRecord",
    "CleanupResult",
    "ProjectMappingRecord",
    "ProjectNumberParts",
    "StoredToken",
    "TokenData",
    "TokenStatistics",
]
