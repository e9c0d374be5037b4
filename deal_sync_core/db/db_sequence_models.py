"""
Project number counter model.
"""

from sqlalchemy import CheckConstraint, Column, Integer, String, UniqueConstraint

from .db_base import TimestampMixin, UUIDMixin
from .db_config import Base


class SequenceCounter(Base, UUIDMixin, TimestampMixin):
    """Last issued sequence number for a department code within a two-digit year."""

    __tablename__ = "sequence_counters"

    department_code = Column(String(3), nullable=False)
    year = Column(Integer, nullable=False)
    last_sequence_number = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("department_code", "year", name="uq_sequence_department_year"),
        CheckConstraint("last_sequence_number >= 0", name="ck_sequence_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<SequenceCounter(department_code='{self.department_code}', year={self.year}, "
            f"last_sequence_number={self.last_sequence_number})>"
        )
