"""
Repository for project number counters.

``increment`` is the only way a counter advances. On PostgreSQL and SQLite it
is a single ``INSERT .. ON CONFLICT DO UPDATE .. RETURNING`` statement, so the
database serializes concurrent callers and each receives a distinct value.
Other dialects fall back to an optimistic compare-and-swap loop.
"""

import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..constants import Limits
from ..db.db_base import utc_now
from ..db.db_sequence_models import SequenceCounter
from ..exceptions import ErrorCode, RepositoryError
from .base_repository import BaseRepository


class SequenceRepository(BaseRepository):
    """Persistence for SequenceCounter, keyed by (department_code, year)."""

    entity_name = "SequenceCounter"

    def __init__(self, session_factory, max_cas_attempts: int = Limits.SEQUENCE_CAS_MAX_ATTEMPTS):
        super().__init__(session_factory)
        self.max_cas_attempts = max_cas_attempts

    def increment(self, department_code: str, year: int) -> int:
        """
        Atomically advance the counter and return the new value.

        The first call for a (department_code, year) pair returns 1.
        """
        with self._session_scope(
            "increment", department_code=department_code, year=year
        ) as session:
            dialect = self._dialect_name(session)
            if dialect in ("postgresql", "sqlite"):
                return self._increment_on_conflict(session, dialect, department_code, year)

        return self._increment_compare_and_swap(department_code, year)

    def _increment_on_conflict(
        self, session: Session, dialect: str, department_code: str, year: int
    ) -> int:
        now = utc_now()
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = (
            insert(SequenceCounter)
            .values(
                id=str(uuid.uuid4()),
                department_code=department_code,
                year=year,
                last_sequence_number=1,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_update(
                index_elements=["department_code", "year"],
                set_={
                    "last_sequence_number": SequenceCounter.last_sequence_number + 1,
                    "updated_at": now,
                },
            )
            .returning(SequenceCounter.last_sequence_number)
        )
        return session.execute(stmt).scalar_one()

    def _increment_compare_and_swap(self, department_code: str, year: int) -> int:
        for attempt in range(1, self.max_cas_attempts + 1):
            session = self.session_factory()
            try:
                current = session.execute(
                    select(SequenceCounter.last_sequence_number).where(
                        SequenceCounter.department_code == department_code,
                        SequenceCounter.year == year,
                    )
                ).scalar_one_or_none()

                if current is None:
                    session.add(
                        SequenceCounter(
                            department_code=department_code, year=year, last_sequence_number=1
                        )
                    )
                    session.commit()
                    return 1

                result = session.execute(
                    update(SequenceCounter)
                    .where(
                        SequenceCounter.department_code == department_code,
                        SequenceCounter.year == year,
                        SequenceCounter.last_sequence_number == current,
                    )
                    .values(last_sequence_number=current + 1, updated_at=utc_now())
                )
                if result.rowcount == 1:
                    session.commit()
                    return current + 1
                session.rollback()
            except IntegrityError:
                # Lost the race to create the first row
                session.rollback()
            except Exception as e:
                session.rollback()
                self._handle_db_error(
                    e, "increment", department_code=department_code, year=year
                )
            finally:
                session.close()

            self.logger.debug(
                "Sequence compare-and-swap retry",
                extra={"department_code": department_code, "year": year, "attempt": attempt},
            )

        raise RepositoryError(
            "Sequence increment did not converge",
            error_code=ErrorCode.CONFLICT,
            status_code=409,
            department_code=department_code,
            year=year,
            attempts=self.max_cas_attempts,
        )

    def get(self, department_code: str, year: int) -> Optional[int]:
        """Last issued number, or None when nothing was issued yet."""
        with self._session_scope(
            "get", read_only=True, department_code=department_code, year=year
        ) as session:
            return session.execute(
                select(SequenceCounter.last_sequence_number).where(
                    SequenceCounter.department_code == department_code,
                    SequenceCounter.year == year,
                )
            ).scalar_one_or_none()

    def reset(self, department_code: str, year: int, value: int = 0) -> None:
        """Set the counter to value; the next increment returns value + 1."""
        with self._session_scope(
            "reset", department_code=department_code, year=year, value=value
        ) as session:
            counter = session.execute(
                select(SequenceCounter).where(
                    SequenceCounter.department_code == department_code,
                    SequenceCounter.year == year,
                )
            ).scalar_one_or_none()
            if counter is None:
                session.add(
                    SequenceCounter(
                        department_code=department_code, year=year, last_sequence_number=value
                    )
                )
            else:
                counter.last_sequence_number = value
