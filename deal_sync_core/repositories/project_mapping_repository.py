"""
Repository for project number to deal mappings.

A deal belongs to at most one project; the unique ``deal_id`` column makes
the database reject a second link, so concurrent assignments of the same deal
cannot both succeed.
"""

from typing import Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db.db_base import utc_now
from ..db.db_project_mapping_models import DealProjectMapping, ProjectMapping
from ..schemas.sequence_schemas import ProjectMappingRecord
from .base_repository import BaseRepository


class ProjectMappingRepository(BaseRepository):
    """Persistence for ProjectMapping and its DealProjectMapping links."""

    entity_name = "ProjectMapping"

    def create(
        self,
        project_number: str,
        department_name: str,
        department_code: str,
        year: int,
        sequence_number: int,
        deal_id: int,
    ) -> ProjectMappingRecord:
        """
        Record a newly issued project number with its first deal, in one transaction.

        Raises:
            RepositoryError: DUPLICATE if the deal is already linked or the
                (department_code, year, sequence_number) triple was recorded before
        """
        with self._session_scope(
            "create", project_number=project_number, deal_id=deal_id
        ) as session:
            mapping = ProjectMapping(
                project_number=project_number,
                department_name=department_name,
                department_code=department_code,
                year=year,
                sequence_number=sequence_number,
            )
            session.add(mapping)
            session.flush()
            session.add(DealProjectMapping(deal_id=deal_id, project_mapping_id=mapping.id))
            session.flush()
            return self._to_record(session, mapping)

    def find_by_deal(self, deal_id: int) -> Optional[ProjectMappingRecord]:
        """The project a deal is linked to, or None."""
        with self._session_scope("find_by_deal", read_only=True, deal_id=deal_id) as session:
            mapping = session.execute(
                select(ProjectMapping)
                .join(
                    DealProjectMapping,
                    DealProjectMapping.project_mapping_id == ProjectMapping.id,
                )
                .where(DealProjectMapping.deal_id == deal_id)
            ).scalar_one_or_none()
            if mapping is None:
                return None
            return self._to_record(session, mapping)

    def find_by_number(self, project_number: str) -> Optional[ProjectMappingRecord]:
        """The most recently issued project with this number, or None."""
        with self._session_scope(
            "find_by_number", read_only=True, project_number=project_number
        ) as session:
            mapping = self._latest_by_number(session, project_number)
            if mapping is None:
                return None
            return self._to_record(session, mapping)

    def add_deal(self, project_number: str, deal_id: int) -> Optional[ProjectMappingRecord]:
        """
        Link a deal to an existing project. Linking it again is a no-op.

        Returns:
            The updated project, or None if no project has this number

        Raises:
            RepositoryError: DUPLICATE if the deal is linked to another project
        """
        with self._session_scope(
            "add_deal", project_number=project_number, deal_id=deal_id
        ) as session:
            mapping = self._latest_by_number(session, project_number)
            if mapping is None:
                return None

            linked = session.execute(
                select(DealProjectMapping.id).where(
                    DealProjectMapping.deal_id == deal_id,
                    DealProjectMapping.project_mapping_id == mapping.id,
                )
            ).scalar_one_or_none()
            if linked is None:
                session.add(DealProjectMapping(deal_id=deal_id, project_mapping_id=mapping.id))
                mapping.updated_at = utc_now()
                session.flush()
            return self._to_record(session, mapping)

    def remove_deal(self, project_number: str, deal_id: int) -> Optional[ProjectMappingRecord]:
        """
        Unlink a deal from a project. The project itself is kept.

        Returns:
            The updated project, or None if no project has this number
        """
        with self._session_scope(
            "remove_deal", project_number=project_number, deal_id=deal_id
        ) as session:
            mapping = self._latest_by_number(session, project_number)
            if mapping is None:
                return None

            result = session.execute(
                delete(DealProjectMapping).where(
                    DealProjectMapping.deal_id == deal_id,
                    DealProjectMapping.project_mapping_id == mapping.id,
                )
            )
            if result.rowcount:
                mapping.updated_at = utc_now()
                session.flush()
            return self._to_record(session, mapping)

    def delete_if_empty(self, project_number: str) -> bool:
        """Delete the project if no deal is linked to it; True when a row was deleted."""
        with self._session_scope("delete_if_empty", project_number=project_number) as session:
            mapping = self._latest_by_number(session, project_number)
            if mapping is None:
                return False

            has_deals = session.execute(
                select(DealProjectMapping.id)
                .where(DealProjectMapping.project_mapping_id == mapping.id)
                .limit(1)
            ).first()
            if has_deals is not None:
                return False

            session.delete(mapping)
            return True

    def list_by_department_year(
        self, department_code: str, year: int, limit: Optional[int] = None
    ) -> List[ProjectMappingRecord]:
        """Projects for a department code and year, in issue order."""
        with self._session_scope(
            "list_by_department_year",
            read_only=True,
            department_code=department_code,
            year=year,
        ) as session:
            stmt = (
                select(ProjectMapping)
                .where(
                    ProjectMapping.department_code == department_code,
                    ProjectMapping.year == year,
                )
                .order_by(ProjectMapping.sequence_number)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            mappings = session.execute(stmt).scalars().all()

            deal_ids = self._deal_ids_by_project(session, [m.id for m in mappings])
            return [self._build_record(m, deal_ids.get(m.id, [])) for m in mappings]

    # ==================== HELPERS ====================

    @staticmethod
    def _latest_by_number(session: Session, project_number: str) -> Optional[ProjectMapping]:
        return session.execute(
            select(ProjectMapping)
            .where(ProjectMapping.project_number == project_number)
            .order_by(ProjectMapping.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    @staticmethod
    def _deal_ids_by_project(session: Session, mapping_ids: List[str]) -> Dict[str, List[int]]:
        if not mapping_ids:
            return {}
        rows = session.execute(
            select(DealProjectMapping.project_mapping_id, DealProjectMapping.deal_id)
            .where(DealProjectMapping.project_mapping_id.in_(mapping_ids))
            .order_by(DealProjectMapping.created_at, DealProjectMapping.deal_id)
        ).all()
        grouped: Dict[str, List[int]] = {}
        for mapping_id, deal_id in rows:
            grouped.setdefault(mapping_id, []).append(deal_id)
        return grouped

    def _to_record(self, session: Session, mapping: ProjectMapping) -> ProjectMappingRecord:
        deal_ids = self._deal_ids_by_project(session, [mapping.id])
        return self._build_record(mapping, deal_ids.get(mapping.id, []))

    @staticmethod
    def _build_record(mapping: ProjectMapping, deal_ids: List[int]) -> ProjectMappingRecord:
        return ProjectMappingRecord(
            id=mapping.id,
            project_number=mapping.project_number,
            department_name=mapping.department_name,
            department_code=mapping.department_code,
            year=mapping.year,
            sequence_number=mapping.sequence_number,
            deal_ids=deal_ids,
            created_at=mapping.created_at,
            updated_at=mapping.updated_at,
        )
