"""
Pydantic schemas for project numbers.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..db.db_base import ensure_utc


class ProjectNumberParts(BaseModel):
    """A parsed project number such as ``ENG-001``."""

    department_code: str = Field(..., min_length=1, max_length=3)
    sequence_number: int = Field(..., ge=1)


class ProjectMappingRecord(BaseModel):
    """An issued project number with the deals linked to it."""

    id: str
    project_number: str
    department_name: str
    department_code: str
    year: int
    sequence_number: int
    deal_ids: List[int] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v):
        return ensure_utc(v)
