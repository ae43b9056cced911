"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers, the YAML importer and tests. Attributes are
snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .models import Color, Country, FormOfEducation, ImportStatus, Semester

T = TypeVar("T")

_ENUM_FIELDS = ("eye_color", "hair_color", "nationality", "form_of_education", "semester_enum")


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class RequestModel(ApiModel):
    """Base for request bodies: unknown keys (e.g. `id`) are rejected."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    @field_validator(*_ENUM_FIELDS, mode="before", check_fields=False)
    @classmethod
    def _upper_enum(cls, v):
        # enum names are accepted case-insensitively
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("name", check_fields=False)
    @classmethod
    def _name_not_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError("name must not be blank")
        return v.strip() if v is not None else v


# --- coordinates -----------------------------------------------------------

class CoordinatesIn(RequestModel):
    x: int
    y: float


class CoordinatesUpdate(RequestModel):
    x: Optional[int] = None
    y: Optional[float] = None


class CoordinatesOut(ApiModel):
    id: int
    x: int
    y: float


# --- locations -------------------------------------------------------------

class LocationIn(RequestModel):
    name: str
    x: int
    y: float
    z: float


class LocationUpdate(RequestModel):
    name: Optional[str] = None
    x: Optional[int] = None
    y: Optional[float] = None
    z: Optional[float] = None


class LocationOut(ApiModel):
    id: int
    name: str
    x: int
    y: float
    z: float


# --- persons ---------------------------------------------------------------

class PersonIn(RequestModel):
    """New person; the location is either `locationId` or an inline `location`."""
    name: str
    eye_color: Optional[Color] = None
    hair_color: Color
    height: int = Field(gt=0)
    weight: float = Field(gt=0)
    nationality: Optional[Country] = None
    location_id: Optional[int] = None
    location: Optional[LocationIn] = None

    @model_validator(mode="after")
    def _one_location_source(self):
        if self.location_id is not None and self.location is not None:
            raise ValueError("pass either locationId or location, not both")
        return self


class PersonUpdate(RequestModel):
    name: Optional[str] = None
    eye_color: Optional[Color] = None
    clear_eye_color: bool = False
    hair_color: Optional[Color] = None
    height: Optional[int] = Field(default=None, gt=0)
    weight: Optional[float] = Field(default=None, gt=0)
    nationality: Optional[Country] = None
    clear_nationality: bool = False
    location_id: Optional[int] = None
    location: Optional[LocationIn] = None
    remove_location: bool = False


class PersonOut(ApiModel):
    id: int
    name: str
    eye_color: Optional[Color] = None
    hair_color: Color
    height: int
    weight: float
    nationality: Optional[Country] = None
    location: Optional[LocationOut] = None


# --- study groups ----------------------------------------------------------

class StudyGroupIn(RequestModel):
    """New study group.

    Coordinates are required and come either as `coordinatesId` or as an
    inline `coordinates` object; the admin is optional and follows the
    same id-or-object rule.
    """
    name: str
    coordinates_id: Optional[int] = None
    coordinates: Optional[CoordinatesIn] = None
    students_count: Optional[int] = Field(default=None, gt=0)
    expelled_students: int = Field(gt=0)
    transferred_students: int = Field(gt=0)
    form_of_education: Optional[FormOfEducation] = None
    should_be_expelled: int = Field(gt=0)
    average_mark: Optional[int] = Field(default=None, gt=0)
    semester_enum: Semester
    group_admin_id: Optional[int] = None
    group_admin: Optional[PersonIn] = None

    @model_validator(mode="after")
    def _references(self):
        if self.coordinates_id is not None and self.coordinates is not None:
            raise ValueError("pass either coordinatesId or coordinates, not both")
        if self.coordinates_id is None and self.coordinates is None:
            raise ValueError("coordinates are required (coordinatesId or coordinates)")
        if self.group_admin_id is not None and self.group_admin is not None:
            raise ValueError("pass either groupAdminId or groupAdmin, not both")
        return self


class StudyGroupUpdate(RequestModel):
    name: Optional[str] = None
    coordinates_id: Optional[int] = None
    coordinates: Optional[CoordinatesIn] = None
    students_count: Optional[int] = Field(default=None, gt=0)
    clear_students_count: bool = False
    expelled_students: Optional[int] = Field(default=None, gt=0)
    transferred_students: Optional[int] = Field(default=None, gt=0)
    form_of_education: Optional[FormOfEducation] = None
    clear_form_of_education: bool = False
    should_be_expelled: Optional[int] = Field(default=None, gt=0)
    average_mark: Optional[int] = Field(default=None, gt=0)
    clear_average_mark: bool = False
    semester_enum: Optional[Semester] = None
    group_admin_id: Optional[int] = None
    group_admin: Optional[PersonIn] = None
    remove_group_admin: bool = False


class StudyGroupOut(ApiModel):
    id: int
    name: str
    coordinates: CoordinatesOut
    creation_date: datetime
    students_count: Optional[int] = None
    expelled_students: int
    transferred_students: int
    form_of_education: Optional[FormOfEducation] = None
    should_be_expelled: int
    average_mark: Optional[int] = None
    semester_enum: Semester
    group_admin: Optional[PersonOut] = None


class ShouldBeExpelledGroupOut(ApiModel):
    should_be_expelled: int
    count: int


class ExpelledTotalOut(ApiModel):
    total_expelled_students: int


class DeletedCountOut(ApiModel):
    deleted: int


# --- shared ----------------------------------------------------------------

class Page(ApiModel, Generic[T]):
    """Pagination envelope returned by every list endpoint."""
    content: List[T]
    page: int
    size: int
    total_elements: int
    total_pages: int


class ReferencesOut(ApiModel):
    entity: str
    id: int
    referenced_by: List[int]


class ImportJobOut(ApiModel):
    id: str
    entity_type: str
    status: ImportStatus
    filename: str
    content_type: Optional[str] = None
    file_size: Optional[int] = None
    download_url: Optional[str] = None
    total_records: Optional[int] = None
    success_count: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime
    finished_at: Optional[datetime] = None
