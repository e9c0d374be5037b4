"""Repositories over the deal sync tables."""

from .auth_token_repository import AuthTokenRepository
from .base_repository import BaseRepository
from .project_mapping_repository import ProjectMappingRepository
from .sequence_repository import SequenceRepository

__all__ = [
    "AuthTokenRepository",
    "BaseRepository",
    "ProjectMappingRepository",
    "SequenceRepository",
]
