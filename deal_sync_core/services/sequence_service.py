"""
Project number issuance.

Project numbers look like ``ENG-001``: a department code of up to three
uppercase letters and a per (department code, year) sequence, zero padded to
at least three digits and never truncated. The counter lives in the database
and advances in a single atomic statement, so concurrent callers in any
number of threads or processes never receive the same number.

A CRM deal can be mapped to a project number. Assignment is idempotent per
deal: asking again returns the number the deal already has.
"""

import hashlib
import re
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from ..config import SequenceConfig, get_config
from ..constants import Limits
from ..db.db_base import utc_now
from ..db.db_config import DatabaseManager, get_db_manager
from ..exceptions import (
    ErrorCode,
    RepositoryError,
    ServiceError,
    ValidationError,
    validation_failed,
)
from ..repositories.project_mapping_repository import ProjectMappingRepository
from ..repositories.sequence_repository import SequenceRepository
from ..schemas.sequence_schemas import ProjectMappingRecord, ProjectNumberParts
from ..utils.logger import get_logger

_NON_ALPHANUMERIC = re.compile(r"[^A-Z0-9]")
_LETTER_RUN = re.compile(r"[A-Z]+")


def derive_department_code(department_name: str) -> str:
    """
    Derive a department code from a free-text department name.

    The name is uppercased and stripped of everything but ASCII letters and
    digits; the first run of letters, truncated to three, is the code. Names
    without any letter get a code built from the SHA-256 digest of the
    normalized name. The same input always yields the same code.

        >>> derive_department_code("Engineering")
        'ENG'
        >>> derive_department_code("2024 r&d")
        'RD'
    """
    normalized = department_name.strip().upper()
    compact = _NON_ALPHANUMERIC.sub("", normalized)
    match = _LETTER_RUN.search(compact)
    if match:
        return match.group(0)[: Limits.DEPARTMENT_CODE_LENGTH]

    digest = hashlib.sha256(normalized.encode("utf-8")).digest()
    return "".join(
        chr(ord("A") + byte % 26) for byte in digest[: Limits.DEPARTMENT_CODE_LENGTH]
    )


class SequenceService:
    """Mints project numbers and exposes operator tooling for the counters."""

    def __init__(
        self,
        repository: SequenceRepository,
        sequence_config: Optional[SequenceConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        mapping_repository: Optional[ProjectMappingRepository] = None,
    ):
        self.repository = repository
        self.mapping_repository = mapping_repository or ProjectMappingRepository(
            repository.session_factory
        )
        self.sequence_config = sequence_config or get_config().sequences
        self._clock = clock
        self._overrides: Dict[str, str] = {
            name.strip().lower(): code
            for name, code in self.sequence_config.department_codes.items()
        }
        self._number_pattern = re.compile(
            rf"^([A-Z]{{1,{Limits.DEPARTMENT_CODE_LENGTH}}})"
            rf"-(\d{{{self.sequence_config.padding},}})$"
        )
        self.logger = get_logger()

    # ==================== DEPARTMENT CODES ====================

    def resolve_department_code(self, department_name: str) -> str:
        """Configured mapping for the name if there is one, otherwise the derived code."""
        name = self._validate_department_name(department_name)
        return self._overrides.get(name.lower()) or derive_department_code(name)

    @staticmethod
    def _validate_department_name(department_name: str) -> str:
        if not isinstance(department_name, str) or not department_name.strip():
            raise ValidationError(
                "Department name is required",
                field="department_name",
                error_code=ErrorCode.MISSING_REQUIRED,
                value=repr(department_name),
            )
        return department_name.strip()

    def _year(self, year: Optional[int]) -> int:
        if year is None:
            return self._clock().year % 100
        if not 0 <= year <= 99:
            raise validation_failed("year", year, "must be a two-digit year (0-99)")
        return year

    # ==================== ISSUANCE ====================

    def get_next_project_number(self, department_name: str) -> str:
        """
        Issue the next project number for a department in the current year.

        Raises:
            ValidationError: If department_name is empty
            RepositoryError: If the counter could not be advanced
        """
        code = self.resolve_department_code(department_name)
        year = self._year(None)
        sequence_number = self.repository.increment(code, year)
        project_number = self.format_project_number(code, sequence_number)

        self.logger.info(
            "Issued project number",
            extra={"department_code": code, "year": year, "project_number": project_number},
        )
        return project_number

    def format_project_number(self, department_code: str, sequence_number: int) -> str:
        """Format as ``CODE-NNN``; numbers wider than the padding are kept whole."""
        if not department_code or len(department_code) > Limits.DEPARTMENT_CODE_LENGTH:
            raise validation_failed(
                "department_code", department_code, "must be 1-3 characters"
            )
        if sequence_number < 1:
            raise validation_failed("sequence_number", sequence_number, "must be positive")
        return f"{department_code}-{sequence_number:0{self.sequence_config.padding}d}"

    def parse_project_number(self, project_number: str) -> ProjectNumberParts:
        """
        Split a project number into its code and sequence.

        Raises:
            ValidationError: If the value is not a well-formed project number
        """
        match = self._number_pattern.match(project_number.strip()) if project_number else None
        if not match or int(match.group(2)) < 1:
            raise ValidationError(
                f"Invalid project number: {project_number!r}",
                field="project_number",
                error_code=ErrorCode.INVALID_FORMAT,
            )
        return ProjectNumberParts(
            department_code=match.group(1), sequence_number=int(match.group(2))
        )

    def is_valid_project_number(self, project_number: str) -> bool:
        if not project_number:
            return False
        match = self._number_pattern.match(project_number.strip())
        return bool(match) and int(match.group(2)) >= 1

    # ==================== DEAL MAPPINGS ====================

    def get_or_assign_project_number(
        self,
        deal_id: Union[int, str],
        department_name: str,
        link_to: Optional[str] = None,
    ) -> str:
        """
        Return the deal's project number, assigning one on first use.

        A deal that already has a project keeps it, so retried workflows do
        not mint new numbers. Otherwise the deal is linked to ``link_to`` when
        that project exists, or gets a newly issued number.

        Raises:
            ValidationError: If deal_id, department_name or link_to is malformed
            ServiceError: If no unused number could be recorded
            RepositoryError: If the database operation fails
        """
        deal = self._validate_deal_id(deal_id)
        existing = self.mapping_repository.find_by_deal(deal)
        if existing is not None:
            return existing.project_number

        if link_to:
            linked = self._link_existing(deal, self._validate_project_number(link_to))
            if linked is not None:
                return linked

        name = self._validate_department_name(department_name)
        code = self.resolve_department_code(name)
        year = self._year(None)

        for attempt in range(1, Limits.PROJECT_ASSIGN_MAX_ATTEMPTS + 1):
            sequence_number = self.repository.increment(code, year)
            project_number = self.format_project_number(code, sequence_number)
            try:
                self.mapping_repository.create(
                    project_number, name, code, year, sequence_number, deal
                )
            except RepositoryError as e:
                if e.error_code != ErrorCode.DUPLICATE:
                    raise
                winner = self.mapping_repository.find_by_deal(deal)
                if winner is not None:
                    # Another caller assigned this deal first; the minted number stays unused
                    self.logger.warning(
                        "Deal assigned concurrently",
                        extra={
                            "deal_id": deal,
                            "project_number": winner.project_number,
                            "unused_project_number": project_number,
                        },
                    )
                    return winner.project_number
                self.logger.warning(
                    "Project number already recorded, issuing the next one",
                    extra={"project_number": project_number, "attempt": attempt},
                )
                continue

            self.logger.info(
                "Assigned project number to deal",
                extra={"deal_id": deal, "department_code": code, "project_number": project_number},
            )
            return project_number

        raise ServiceError(
            f"Could not assign a project number to deal {deal}",
            error_code=ErrorCode.CONFLICT,
            operation="get_or_assign_project_number",
            deal_id=deal,
            department_code=code,
            attempts=Limits.PROJECT_ASSIGN_MAX_ATTEMPTS,
        )

    def _link_existing(self, deal: int, project_number: str) -> Optional[str]:
        try:
            mapping = self.mapping_repository.add_deal(project_number, deal)
        except RepositoryError as e:
            if e.error_code != ErrorCode.DUPLICATE:
                raise
            winner = self.mapping_repository.find_by_deal(deal)
            if winner is None:
                raise
            return winner.project_number

        if mapping is None:
            self.logger.warning(
                "Project to link not found, issuing a new number",
                extra={"deal_id": deal, "project_number": project_number},
            )
            return None

        self.logger.info(
            "Linked deal to existing project",
            extra={"deal_id": deal, "project_number": project_number},
        )
        return mapping.project_number

    def find_project_by_deal(self, deal_id: Union[int, str]) -> Optional[ProjectMappingRecord]:
        """The project a deal is linked to, or None."""
        return self.mapping_repository.find_by_deal(self._validate_deal_id(deal_id))

    def find_project(self, project_number: str) -> Optional[ProjectMappingRecord]:
        """The most recently issued project with this number, or None."""
        return self.mapping_repository.find_by_number(
            self._validate_project_number(project_number)
        )

    def add_deal_to_project(
        self, project_number: str, deal_id: Union[int, str]
    ) -> Optional[ProjectMappingRecord]:
        """
        Link a deal to an existing project; None when the project does not exist.

        Raises:
            ServiceError: CONFLICT if the deal already belongs to another project
        """
        number = self._validate_project_number(project_number)
        deal = self._validate_deal_id(deal_id)
        current = self.mapping_repository.find_by_deal(deal)
        if current is not None and current.project_number != number:
            raise ServiceError(
                f"Deal {deal} already belongs to project {current.project_number}",
                error_code=ErrorCode.CONFLICT,
                operation="add_deal_to_project",
                deal_id=deal,
                project_number=number,
            )
        return self.mapping_repository.add_deal(number, deal)

    def remove_deal_from_project(
        self, project_number: str, deal_id: Union[int, str], delete_if_empty: bool = False
    ) -> Optional[ProjectMappingRecord]:
        """
        Unlink a deal from a project; None when the project does not exist.

        With ``delete_if_empty`` a project left without deals is deleted and
        None is returned.
        """
        number = self._validate_project_number(project_number)
        deal = self._validate_deal_id(deal_id)
        mapping = self.mapping_repository.remove_deal(number, deal)
        if mapping is None:
            return None

        self.logger.info(
            "Removed deal from project", extra={"deal_id": deal, "project_number": number}
        )
        if delete_if_empty and not mapping.deal_ids:
            if self.mapping_repository.delete_if_empty(number):
                self.logger.info("Deleted empty project", extra={"project_number": number})
                return None
        return mapping

    def list_projects(
        self, department_name: str, year: Optional[int] = None, limit: Optional[int] = None
    ) -> List[ProjectMappingRecord]:
        """Projects issued for a department in a year (default: current), in issue order."""
        if limit is not None and limit < 1:
            raise validation_failed("limit", limit, "must be positive")
        code = self.resolve_department_code(department_name)
        return self.mapping_repository.list_by_department_year(code, self._year(year), limit)

    @staticmethod
    def _validate_deal_id(deal_id: Union[int, str]) -> int:
        try:
            if isinstance(deal_id, bool):
                raise TypeError("bool is not a deal id")
            value = int(str(deal_id).strip())
        except (TypeError, ValueError) as e:
            raise validation_failed(
                "deal_id", deal_id, "must be a positive integer", cause=e
            ) from e
        if value < 1:
            raise validation_failed("deal_id", deal_id, "must be a positive integer")
        return value

    def _validate_project_number(self, project_number: str) -> str:
        if not self.is_valid_project_number(project_number):
            raise ValidationError(
                f"Invalid project number: {project_number!r}",
                field="project_number",
                error_code=ErrorCode.INVALID_FORMAT,
            )
        return project_number.strip()

    # ==================== OPERATOR TOOLING ====================

    def current_sequence(self, department_name: str, year: Optional[int] = None) -> int:
        """Last issued sequence number, 0 when none has been issued."""
        code = self.resolve_department_code(department_name)
        return self.repository.get(code, self._year(year)) or 0

    def reset_sequence(
        self, department_name: str, year: Optional[int] = None, value: int = 0
    ) -> None:
        """Set the counter so the next issued number is value + 1."""
        if value < 0:
            raise validation_failed("value", value, "must not be negative")
        code = self.resolve_department_code(department_name)
        target_year = self._year(year)
        self.repository.reset(code, target_year, value)
        self.logger.warning(
            "Project number sequence reset",
            extra={"department_code": code, "year": target_year, "value": value},
        )


def create_sequence_service(
    db_manager: Optional[DatabaseManager] = None,
    sequence_config: Optional[SequenceConfig] = None,
) -> SequenceService:
    """Build a SequenceService on the global (or given) database manager."""
    db_manager = db_manager or get_db_manager()
    return SequenceService(
        SequenceRepository(db_manager.session_factory),
        sequence_config=sequence_config,
        mapping_repository=ProjectMappingRepository(db_manager.session_factory),
    )
