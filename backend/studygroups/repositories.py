"""Repository classes encapsulating database operations.

Each repository is small and focused on a single table. Repositories
return SQLModel objects and only `flush`; the calling service owns the
transaction and decides when to commit or roll back, so multi-table
changes (reassign-then-delete, bulk imports) stay atomic.
"""

from typing import Iterable, List, Optional, Type

from sqlalchemy import func, update
from sqlmodel import Session, SQLModel, select

from . import models
from .utils.pagination import paginate


class _Repository:
    model: Type[SQLModel]
    sortable: tuple = ("id",)

    def __init__(self, session: Session):
        self.session = session

    def get(self, entity_id: int, for_update: bool = False):
        """Fetch a row by primary key, optionally locking it for the transaction."""
        if for_update:
            stmt = select(self.model).where(self.model.id == entity_id).with_for_update()
            return self.session.exec(stmt).first()
        return self.session.get(self.model, entity_id)

    def get_many(self, ids: Iterable[int], for_update: bool = False) -> List:
        ids = list(ids)
        if not ids:
            return []
        stmt = select(self.model).where(self.model.id.in_(ids)).order_by(self.model.id)
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.session.exec(stmt).all())

    def add(self, entity):
        """Stage `entity` and flush so its generated id is available."""
        self.session.add(entity)
        self.session.flush()
        self.session.refresh(entity)
        return entity

    def delete(self, entity) -> None:
        self.session.delete(entity)
        self.session.flush()

    def page(self, page: int, size: int, sort_field: Optional[str], direction: Optional[str]) -> dict:
        return paginate(self.session, self.model, page, size, sort_field, direction, self.sortable)


class CoordinatesRepository(_Repository):
    """Queries for `Coordinates` rows."""
    model = models.Coordinates
    sortable = ("id", "x", "y")


class LocationRepository(_Repository):
    """Queries for `Location` rows."""
    model = models.Location
    sortable = ("id", "name", "x", "y", "z")


class PersonRepository(_Repository):
    """Queries for `Person` rows and their location references."""
    model = models.Person
    sortable = ("id", "name", "eye_color", "hair_color", "height", "weight", "nationality", "location_id")

    def ids_referencing_location(self, location_id: int) -> List[int]:
        stmt = select(models.Person.id).where(models.Person.location_id == location_id).order_by(models.Person.id)
        return list(self.session.exec(stmt).all())

    def reassign_location(self, old_id: int, new_id: int) -> int:
        """Point every person at `old_id` to `new_id`; return affected row count."""
        result = self.session.execute(
            update(models.Person).where(models.Person.location_id == old_id).values(location_id=new_id)
        )
        return result.rowcount


class StudyGroupRepository(_Repository):
    """Queries for `StudyGroup` rows, their references and aggregates."""
    model = models.StudyGroup
    sortable = (
        "id", "name", "creation_date", "students_count", "expelled_students", "transferred_students",
        "form_of_education", "should_be_expelled", "average_mark", "semester_enum",
        "coordinates_id", "group_admin_id",
    )

    def ids_referencing_coordinates(self, coordinates_id: int) -> List[int]:
        stmt = (select(models.StudyGroup.id)
                .where(models.StudyGroup.coordinates_id == coordinates_id)
                .order_by(models.StudyGroup.id))
        return list(self.session.exec(stmt).all())

    def ids_referencing_person(self, person_id: int) -> List[int]:
        stmt = (select(models.StudyGroup.id)
                .where(models.StudyGroup.group_admin_id == person_id)
                .order_by(models.StudyGroup.id))
        return list(self.session.exec(stmt).all())

    def reassign_coordinates(self, old_id: int, new_id: int) -> int:
        result = self.session.execute(
            update(models.StudyGroup)
            .where(models.StudyGroup.coordinates_id == old_id)
            .values(coordinates_id=new_id)
        )
        return result.rowcount

    def reassign_group_admin(self, old_id: int, new_id: int) -> int:
        result = self.session.execute(
            update(models.StudyGroup)
            .where(models.StudyGroup.group_admin_id == old_id)
            .values(group_admin_id=new_id)
        )
        return result.rowcount

    def list_by_semester(self, semester: models.Semester) -> List[models.StudyGroup]:
        stmt = (select(models.StudyGroup)
                .where(models.StudyGroup.semester_enum == semester)
                .order_by(models.StudyGroup.id)
                .with_for_update())
        return self.session.exec(stmt).all()

    def first_by_semester(self, semester: models.Semester) -> Optional[models.StudyGroup]:
        stmt = (select(models.StudyGroup)
                .where(models.StudyGroup.semester_enum == semester)
                .order_by(models.StudyGroup.id)
                .limit(1)
                .with_for_update())
        return self.session.exec(stmt).first()

    def count_by_should_be_expelled(self) -> List[tuple]:
        stmt = (select(models.StudyGroup.should_be_expelled, func.count(models.StudyGroup.id))
                .group_by(models.StudyGroup.should_be_expelled)
                .order_by(models.StudyGroup.should_be_expelled))
        return list(self.session.exec(stmt).all())

    def sum_expelled_students(self) -> int:
        total = self.session.exec(select(func.sum(models.StudyGroup.expelled_students))).one()
        return int(total or 0)


class ImportJobRepository:
    """Persistence for `ImportJob` rows."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, job_id: str) -> Optional[models.ImportJob]:
        return self.session.get(models.ImportJob, job_id)

    def save(self, job: models.ImportJob) -> models.ImportJob:
        self.session.add(job)
        self.session.flush()
        return job

    def history(self, entity_type: str) -> List[models.ImportJob]:
        """Return jobs for `entity_type`, newest first."""
        stmt = (select(models.ImportJob)
                .where(models.ImportJob.entity_type == entity_type)
                .order_by(models.ImportJob.created_at.desc(), models.ImportJob.id.desc()))
        return self.session.exec(stmt).all()
