"""
Project number to CRM deal mappings.

A ``ProjectMapping`` records an issued project number; ``DealProjectMapping``
links a CRM deal to exactly one of them. Several deals may share a project.
"""

from sqlalchemy import BigInteger, Column, ForeignKey, Index, Integer, String, UniqueConstraint

from .db_base import TimestampMixin, UUIDMixin
from .db_config import Base


class ProjectMapping(Base, UUIDMixin, TimestampMixin):
    """An issued project number and the department it was issued for."""

    __tablename__ = "project_mappings"

    project_number = Column(String(32), nullable=False)
    department_name = Column(String(255), nullable=False)
    department_code = Column(String(3), nullable=False)
    year = Column(Integer, nullable=False)
    sequence_number = Column(Integer, nullable=False)

    __table_args__ = (
        # Numbers carry no year, so the same number can be issued again next year
        UniqueConstraint(
            "department_code", "year", "sequence_number", name="uq_project_mapping_sequence"
        ),
        Index("ix_project_mapping_number", "project_number"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProjectMapping(project_number='{self.project_number}', "
            f"department_code='{self.department_code}', year={self.year})>"
        )


class DealProjectMapping(Base, UUIDMixin, TimestampMixin):
    """Link from one CRM deal to its project."""

    __tablename__ = "deal_project_mappings"

    deal_id = Column(BigInteger, nullable=False)
    project_mapping_id = Column(
        String(36), ForeignKey("project_mappings.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("deal_id", name="uq_deal_project_mapping_deal"),
        Index("ix_deal_project_mapping_project", "project_mapping_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<DealProjectMapping(deal_id={self.deal_id}, "
            f"project_mapping_id='{self.project_mapping_id}')>"
        )
