"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table; foreign keys are declared on the owning side
and relationships are used to render nested responses.

Reference graph (who points at whom):

- `StudyGroup.coordinates_id` -> `Coordinates.id` (required)
- `StudyGroup.group_admin_id` -> `Person.id` (optional)
- `Person.location_id` -> `Location.id` (optional)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid

from sqlmodel import SQLModel, Field, Relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Semester(str, Enum):
    FIRST = "FIRST"
    SECOND = "SECOND"
    FOURTH = "FOURTH"
    SIXTH = "SIXTH"
    SEVENTH = "SEVENTH"


class FormOfEducation(str, Enum):
    DISTANCE_EDUCATION = "DISTANCE_EDUCATION"
    FULL_TIME_EDUCATION = "FULL_TIME_EDUCATION"
    EVENING_CLASSES = "EVENING_CLASSES"


class Color(str, Enum):
    BLACK = "BLACK"
    YELLOW = "YELLOW"
    ORANGE = "ORANGE"


class Country(str, Enum):
    UNITED_KINGDOM = "UNITED_KINGDOM"
    FRANCE = "FRANCE"
    INDIA = "INDIA"
    VATICAN = "VATICAN"


class ImportStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Coordinates(SQLModel, table=True):
    """A point on the plane; every `StudyGroup` owns a reference to one."""
    id: Optional[int] = Field(default=None, primary_key=True)
    x: int
    y: float


class Location(SQLModel, table=True):
    """A named point in space a `Person` may live at."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    x: int
    y: float
    z: float


class Person(SQLModel, table=True):
    """A person that can administer a study group.

    `height` and `weight` must be strictly positive; colors and
    nationality are stored as enum names.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    eye_color: Optional[Color] = None
    hair_color: Color
    height: int
    weight: float
    nationality: Optional[Country] = None
    location_id: Optional[int] = Field(default=None, foreign_key="location.id", index=True)
    location: Optional[Location] = Relationship()


class StudyGroup(SQLModel, table=True):
    """A study group with its required coordinates and optional admin.

    `creation_date` is assigned by the server when the row is built and
    never changes afterwards.
    """
    __tablename__ = "study_group"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(nullable=False, index=True)
    coordinates_id: int = Field(foreign_key="coordinates.id", nullable=False, index=True)
    creation_date: datetime = Field(default_factory=_utcnow, nullable=False)
    students_count: Optional[int] = None
    expelled_students: int
    transferred_students: int
    form_of_education: Optional[FormOfEducation] = None
    should_be_expelled: int = Field(index=True)
    average_mark: Optional[int] = None
    semester_enum: Semester = Field(index=True)
    group_admin_id: Optional[int] = Field(default=None, foreign_key="person.id", index=True)
    coordinates: Optional[Coordinates] = Relationship()
    group_admin: Optional[Person] = Relationship()


class ImportJob(SQLModel, table=True):
    """One bulk-import attempt and its outcome.

    `status` leaves IN_PROGRESS exactly once; `finished_at` is stamped at
    the same moment. `storage_key` points at the stored upload.
    """
    __tablename__ = "import_job"

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    entity_type: str = Field(default="STUDY_GROUP", nullable=False, index=True)
    status: ImportStatus = Field(default=ImportStatus.IN_PROGRESS, nullable=False)
    filename: str = Field(nullable=False)
    content_type: Optional[str] = None
    file_size: Optional[int] = None
    storage_key: Optional[str] = None
    total_records: Optional[int] = None
    success_count: Optional[int] = None
    error_message: Optional[str] = Field(default=None, max_length=2000)
    created_at: datetime = Field(default_factory=_utcnow, nullable=False, index=True)
    finished_at: Optional[datetime] = None
