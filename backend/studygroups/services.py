"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
validation and change notifications. Each service method that mutates
data runs inside `transaction()`: the session is committed once at the
end, rolled back on any error, and the queued entity-change events are
published only after a successful commit.

- `CoordinatesService`, `LocationService`, `PersonService`,
  `StudyGroupService`: listing, lookup, create and partial update.
- `ReferenceGuard`: deletes for rows other tables point at, either
  refusing (`ReferencedEntityError`) or reassigning dependents first.
- `ImportService`: YAML bulk import tracked as an `ImportJob`.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import models, repositories, schemas
from .database import begin_write, engine
from .errors import (
    ConflictError,
    ImportValidationError,
    InvalidReplacementError,
    NotFoundError,
    ReferencedEntityError,
    ServiceError,
    ValidationError,
)
from .utils.fields import (
    CLEARED,
    UNCHANGED,
    ExistingRef,
    SetTo,
    field_change,
    reference_change,
    reference_choice,
)
from .utils.import_jobs import ImportJobRunner
from .utils.notifier import CREATED, DELETED, UPDATED, EntityChangeNotifier
from .utils.storage import LocalFileStorage, StagedFile, StoredFile
from .utils.yaml_import import parse_study_groups

logger = logging.getLogger("studygroups.services")

COORDINATES = "COORDINATES"
LOCATION = "LOCATION"
PERSON = "PERSON"
STUDY_GROUP = "STUDY_GROUP"
IMPORT_JOB = "IMPORT_JOB"


def to_payload(schema, row) -> dict:
    """Render an ORM row through its response schema as a JSON-ready dict."""
    return schema.model_validate(row).model_dump(mode="json", by_alias=True)


class _Service:
    """Shared transaction, event and nested-reference handling."""

    def __init__(self, session: Session, notifier: Optional[EntityChangeNotifier] = None):
        self.session = session
        self.notifier = notifier
        self._events: list = []
        self._depth = 0
        self.coordinates_repo = repositories.CoordinatesRepository(session)
        self.location_repo = repositories.LocationRepository(session)
        self.person_repo = repositories.PersonRepository(session)
        self.group_repo = repositories.StudyGroupRepository(session)

    @contextmanager
    def transaction(self):
        """Commit on success, roll back on error, then publish queued events.

        Nested use joins the outer transaction.
        """
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return
        self._depth = 1
        try:
            begin_write(self.session)
            yield
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            self._events.clear()
            logger.warning("constraint violation: %s", exc.orig)
            raise ConflictError("the change violates a database constraint") from exc
        except Exception:
            self.session.rollback()
            self._events.clear()
            raise
        finally:
            self._depth = 0
        events, self._events = self._events, []
        if self.notifier is not None:
            for entity, action, payload in events:
                self.notifier.publish(entity, action, payload)

    def _queue(self, entity: str, action: str, payload) -> None:
        self._events.append((entity, action, payload))

    # nested reference resolution -------------------------------------------

    def _resolve_coordinates(self, ref) -> models.Coordinates:
        if isinstance(ref, ExistingRef):
            coords = self.coordinates_repo.get(ref.id)
            if coords is None:
                raise NotFoundError(f"coordinates {ref.id} not found")
            return coords
        coords = self.coordinates_repo.add(models.Coordinates(**ref.payload.model_dump()))
        self._queue(COORDINATES, CREATED, to_payload(schemas.CoordinatesOut, coords))
        return coords

    def _resolve_location(self, ref) -> models.Location:
        if isinstance(ref, ExistingRef):
            location = self.location_repo.get(ref.id)
            if location is None:
                raise NotFoundError(f"location {ref.id} not found")
            return location
        location = self.location_repo.add(models.Location(**ref.payload.model_dump()))
        self._queue(LOCATION, CREATED, to_payload(schemas.LocationOut, location))
        return location

    def _resolve_person(self, ref) -> models.Person:
        if isinstance(ref, ExistingRef):
            person = self.person_repo.get(ref.id)
            if person is None:
                raise NotFoundError(f"person {ref.id} not found")
            return person
        return self._build_person(ref.payload)

    def _build_person(self, data: schemas.PersonIn) -> models.Person:
        location_ref = reference_choice(data.location_id, data.location, "location")
        location = self._resolve_location(location_ref) if location_ref is not None else None
        person = models.Person(
            name=data.name,
            eye_color=data.eye_color,
            hair_color=data.hair_color,
            height=data.height,
            weight=data.weight,
            nationality=data.nationality,
            location=location,
        )
        person = self.person_repo.add(person)
        self._queue(PERSON, CREATED, to_payload(schemas.PersonOut, person))
        return person


class _CrudService(_Service):
    """Read and update paths shared by all four entity services."""
    entity: str
    out_schema = None

    @property
    def repo(self):
        raise NotImplementedError

    @property
    def label(self) -> str:
        return self.entity.lower().replace("_", " ")

    def list(self, page: int, size: int, sort_by: Optional[str] = None, direction: Optional[str] = None) -> dict:
        result = self.repo.page(page, size, sort_by, direction)
        result["content"] = [self.out_schema.model_validate(r) for r in result["content"]]
        return result

    def get(self, entity_id: int):
        row = self.repo.get(entity_id)
        if row is None:
            raise NotFoundError(f"{self.label} {entity_id} not found")
        return self.out_schema.model_validate(row)

    def get_many(self, ids: Iterable[int]) -> list:
        return [self.out_schema.model_validate(r) for r in self.repo.get_many(ids)]

    def update(self, entity_id: int, request):
        with self.transaction():
            row = self._require(entity_id)
            self._apply_update(row, request)
            self.session.flush()
            out = self.out_schema.model_validate(row)
            self._queue(self.entity, UPDATED, out.model_dump(mode="json", by_alias=True))
        return out

    def update_many(self, ids: List[int], request) -> list:
        """Apply the same partial update to every listed row, all or nothing."""
        ids = sorted(set(ids))
        if not ids:
            return []
        out = []
        with self.transaction():
            rows = self._require_all(ids)
            for row in rows:
                self._apply_update(row, request)
            self.session.flush()
            for row in rows:
                item = self.out_schema.model_validate(row)
                out.append(item)
                self._queue(self.entity, UPDATED, item.model_dump(mode="json", by_alias=True))
        return out

    def _apply_update(self, row, request) -> None:
        raise NotImplementedError

    def _require(self, entity_id: int, for_update: bool = True):
        row = self.repo.get(entity_id, for_update=for_update)
        if row is None:
            raise NotFoundError(f"{self.label} {entity_id} not found")
        return row

    def _require_all(self, ids: List[int]) -> list:
        rows = self.repo.get_many(ids, for_update=True)
        missing = sorted(set(ids) - {r.id for r in rows})
        if missing:
            raise NotFoundError(f"{self.label} not found: {missing}")
        return rows

    def _apply_scalars(self, row, request, fields) -> bool:
        """Apply `(field, clear_flag)` changes to `row`; return True if anything changed."""
        changed = False
        for field, clear_flag in fields:
            change = field_change(request, field, clear_flag)
            if change is UNCHANGED:
                continue
            setattr(row, field, None if change is CLEARED else change.value)
            changed = True
        return changed


class CoordinatesService(_CrudService):
    entity = COORDINATES
    out_schema = schemas.CoordinatesOut

    @property
    def repo(self):
        return self.coordinates_repo

    def create(self, request: schemas.CoordinatesIn) -> schemas.CoordinatesOut:
        with self.transaction():
            coords = self.repo.add(models.Coordinates(**request.model_dump()))
            out = self.out_schema.model_validate(coords)
            self._queue(COORDINATES, CREATED, out.model_dump(mode="json", by_alias=True))
        return out

    def _apply_update(self, coords: models.Coordinates, request: schemas.CoordinatesUpdate) -> None:
        if not self._apply_scalars(coords, request, [("x", None), ("y", None)]):
            raise ValidationError("no fields to update for coordinates")


class LocationService(_CrudService):
    entity = LOCATION
    out_schema = schemas.LocationOut

    SCALARS = [("name", None), ("x", None), ("y", None), ("z", None)]

    @property
    def repo(self):
        return self.location_repo

    def create(self, request: schemas.LocationIn) -> schemas.LocationOut:
        with self.transaction():
            location = self.repo.add(models.Location(**request.model_dump()))
            out = self.out_schema.model_validate(location)
            self._queue(LOCATION, CREATED, out.model_dump(mode="json", by_alias=True))
        return out

    def _apply_update(self, location: models.Location, request: schemas.LocationUpdate) -> None:
        if not self._apply_scalars(location, request, self.SCALARS):
            raise ValidationError("no fields to update for location")


class PersonService(_CrudService):
    entity = PERSON
    out_schema = schemas.PersonOut

    SCALARS = [
        ("name", None),
        ("eye_color", "clear_eye_color"),
        ("hair_color", None),
        ("height", None),
        ("weight", None),
        ("nationality", "clear_nationality"),
    ]

    @property
    def repo(self):
        return self.person_repo

    def create(self, request: schemas.PersonIn) -> schemas.PersonOut:
        with self.transaction():
            person = self._build_person(request)
            out = self.out_schema.model_validate(person)
        return out

    def _apply_update(self, person: models.Person, request: schemas.PersonUpdate) -> None:
        changed = self._apply_scalars(person, request, self.SCALARS)
        location = reference_change(request, "location_id", "location", "location", "remove_location")
        if location is CLEARED:
            person.location = None
            changed = True
        elif isinstance(location, SetTo):
            person.location = self._resolve_location(location.value)
            changed = True
        if not changed:
            raise ValidationError("no fields to update for person")


class StudyGroupService(_CrudService):
    """Study groups, their semester-wide deletes and statistics.

    Deleting groups also removes coordinates that no remaining group
    points at, in the same transaction.
    """
    entity = STUDY_GROUP
    out_schema = schemas.StudyGroupOut

    SCALARS = [
        ("name", None),
        ("students_count", "clear_students_count"),
        ("expelled_students", None),
        ("transferred_students", None),
        ("form_of_education", "clear_form_of_education"),
        ("should_be_expelled", None),
        ("average_mark", "clear_average_mark"),
        ("semester_enum", None),
    ]

    @property
    def repo(self):
        return self.group_repo

    def build(self, request: schemas.StudyGroupIn) -> models.StudyGroup:
        """Create one group inside the caller's transaction and queue its events."""
        coords_ref = reference_choice(request.coordinates_id, request.coordinates, "coordinates")
        if coords_ref is None:
            raise ValidationError("coordinates are required for a study group")
        coordinates = self._resolve_coordinates(coords_ref)
        admin_ref = reference_choice(request.group_admin_id, request.group_admin, "groupAdmin")
        admin = self._resolve_person(admin_ref) if admin_ref is not None else None
        group = models.StudyGroup(
            name=request.name,
            coordinates=coordinates,
            students_count=request.students_count,
            expelled_students=request.expelled_students,
            transferred_students=request.transferred_students,
            form_of_education=request.form_of_education,
            should_be_expelled=request.should_be_expelled,
            average_mark=request.average_mark,
            semester_enum=request.semester_enum,
            group_admin=admin,
        )
        group = self.repo.add(group)
        self._queue(STUDY_GROUP, CREATED, to_payload(self.out_schema, group))
        return group

    def create(self, request: schemas.StudyGroupIn) -> schemas.StudyGroupOut:
        with self.transaction():
            group = self.build(request)
            out = self.out_schema.model_validate(group)
        return out

    def _apply_update(self, group: models.StudyGroup, request: schemas.StudyGroupUpdate) -> None:
        changed = self._apply_scalars(group, request, self.SCALARS)
        coords = reference_change(request, "coordinates_id", "coordinates", "coordinates")
        if isinstance(coords, SetTo):
            group.coordinates = self._resolve_coordinates(coords.value)
            changed = True
        admin = reference_change(request, "group_admin_id", "group_admin", "groupAdmin", "remove_group_admin")
        if admin is CLEARED:
            group.group_admin = None
            changed = True
        elif isinstance(admin, SetTo):
            group.group_admin = self._resolve_person(admin.value)
            changed = True
        if not changed:
            raise ValidationError("no fields to update for study group")

    def delete(self, entity_id: int) -> schemas.StudyGroupOut:
        with self.transaction():
            (out,) = self._delete_groups([self._require(entity_id)])
        return out

    def delete_many(self, ids: List[int]) -> int:
        ids = sorted(set(ids))
        if not ids:
            return 0
        with self.transaction():
            self._delete_groups(self._require_all(ids))
        return len(ids)

    def delete_all_by_semester(self, semester: models.Semester) -> int:
        with self.transaction():
            groups = self.repo.list_by_semester(semester)
            if not groups:
                raise NotFoundError(f"no study groups in semester {semester.value}")
            self._delete_groups(groups)
        logger.info("deleted %d study group(s) in semester %s", len(groups), semester.value)
        return len(groups)

    def delete_one_by_semester(self, semester: models.Semester) -> schemas.StudyGroupOut:
        with self.transaction():
            group = self.repo.first_by_semester(semester)
            if group is None:
                raise NotFoundError(f"no study groups in semester {semester.value}")
            (out,) = self._delete_groups([group])
        return out

    def _delete_groups(self, groups: List[models.StudyGroup]) -> List[schemas.StudyGroupOut]:
        """Delete `groups`, then every coordinates row they leave unreferenced."""
        out = []
        coordinate_ids = set()
        for group in groups:
            item = self.out_schema.model_validate(group)
            coordinate_ids.add(group.coordinates_id)
            self.repo.delete(group)
            self._queue(STUDY_GROUP, DELETED, item.model_dump(mode="json", by_alias=True))
            out.append(item)
        for coordinates_id in sorted(coordinate_ids):
            if self.group_repo.ids_referencing_coordinates(coordinates_id):
                continue
            coords = self.coordinates_repo.get(coordinates_id, for_update=True)
            if coords is None:
                continue
            payload = to_payload(schemas.CoordinatesOut, coords)
            self.coordinates_repo.delete(coords)
            self._queue(COORDINATES, DELETED, payload)
        return out

    def should_be_expelled_stats(self) -> List[schemas.ShouldBeExpelledGroupOut]:
        return [
            schemas.ShouldBeExpelledGroupOut(should_be_expelled=value, count=count)
            for value, count in self.repo.count_by_should_be_expelled()
        ]

    def expelled_total(self) -> schemas.ExpelledTotalOut:
        return schemas.ExpelledTotalOut(total_expelled_students=self.repo.sum_expelled_students())


class ReferenceGuard(_Service):
    """Referential-integrity gate for deleting referenced rows.

    Coordinates and persons are referenced by study groups; locations by
    persons. The reference check always runs again inside the deleting
    transaction with the target row locked, so a reference created
    concurrently can never be left dangling.
    """

    def _spec(self, entity_type: str) -> dict:
        specs = {
            COORDINATES: {
                "repo": self.coordinates_repo,
                "schema": schemas.CoordinatesOut,
                "refs": self.group_repo.ids_referencing_coordinates,
                "reassign": self.group_repo.reassign_coordinates,
                "dependent": (STUDY_GROUP, self.group_repo, schemas.StudyGroupOut),
            },
            LOCATION: {
                "repo": self.location_repo,
                "schema": schemas.LocationOut,
                "refs": self.person_repo.ids_referencing_location,
                "reassign": self.person_repo.reassign_location,
                "dependent": (PERSON, self.person_repo, schemas.PersonOut),
            },
            PERSON: {
                "repo": self.person_repo,
                "schema": schemas.PersonOut,
                "refs": self.group_repo.ids_referencing_person,
                "reassign": self.group_repo.reassign_group_admin,
                "dependent": (STUDY_GROUP, self.group_repo, schemas.StudyGroupOut),
            },
        }
        try:
            return specs[entity_type]
        except KeyError:
            raise ValidationError(f"{entity_type} rows cannot be referenced") from None

    def _label(self, entity_type: str) -> str:
        return entity_type.lower().replace("_", " ")

    def check_references(self, entity_type: str, entity_id: int) -> set:
        spec = self._spec(entity_type)
        if spec["repo"].get(entity_id) is None:
            raise NotFoundError(f"{self._label(entity_type)} {entity_id} not found")
        return set(spec["refs"](entity_id))

    def delete(self, entity_type: str, entity_id: int, replacement_id: Optional[int] = None) -> dict:
        """Delete a row, reassigning dependents when `replacement_id` is given."""
        if replacement_id is not None:
            return self.delete_with_replacement(entity_type, entity_id, replacement_id)
        spec = self._spec(entity_type)
        with self.transaction():
            target = spec["repo"].get(entity_id, for_update=True)
            if target is None:
                raise NotFoundError(f"{self._label(entity_type)} {entity_id} not found")
            refs = spec["refs"](entity_id)
            if refs:
                raise ReferencedEntityError(entity_type, entity_id, refs)
            payload = to_payload(spec["schema"], target)
            spec["repo"].delete(target)
            self._queue(entity_type, DELETED, payload)
        return payload

    def delete_with_replacement(self, entity_type: str, entity_id: int, replacement_id: int) -> dict:
        spec = self._spec(entity_type)
        if replacement_id == entity_id:
            raise InvalidReplacementError("replacementId must differ from the id being deleted")
        label = self._label(entity_type)
        with self.transaction():
            target = spec["repo"].get(entity_id, for_update=True)
            if target is None:
                raise NotFoundError(f"{label} {entity_id} not found")
            replacement = spec["repo"].get(replacement_id, for_update=True)
            if replacement is None:
                raise NotFoundError(f"replacement {label} {replacement_id} not found")
            refs = spec["refs"](entity_id)
            moved = spec["reassign"](entity_id, replacement_id) if refs else 0
            payload = to_payload(spec["schema"], target)
            spec["repo"].delete(target)
            self._queue(entity_type, DELETED, payload)
            dep_entity, dep_repo, dep_schema = spec["dependent"]
            for row in dep_repo.get_many(refs):
                self.session.refresh(row)
                self._queue(dep_entity, UPDATED, to_payload(dep_schema, row))
        logger.info("deleted %s %s, reassigned %d dependent row(s) to %s",
                    label, entity_id, moved, replacement_id)
        return payload

    def delete_many(self, entity_type: str, ids: Iterable[int]) -> int:
        """Delete every listed row, or none if any is missing or still referenced."""
        spec = self._spec(entity_type)
        ids = sorted(set(ids))
        if not ids:
            return 0
        label = self._label(entity_type)
        with self.transaction():
            rows = spec["repo"].get_many(ids, for_update=True)
            missing = sorted(set(ids) - {r.id for r in rows})
            if missing:
                raise NotFoundError(f"{label} not found: {missing}")
            for row in rows:
                refs = spec["refs"](row.id)
                if refs:
                    raise ReferencedEntityError(entity_type, row.id, refs)
            for row in rows:
                payload = to_payload(spec["schema"], row)
                spec["repo"].delete(row)
                self._queue(entity_type, DELETED, payload)
        logger.info("deleted %d %s row(s)", len(ids), label)
        return len(ids)


class ImportService:
    """Import study groups from YAML files, tracked as `ImportJob` rows.

    `start` stores the upload and records the job; `process` parses,
    validates and persists every record in one transaction and stamps
    the job COMPLETED, or rolls everything back and stamps it FAILED.
    """
    ENTITY_TYPE = STUDY_GROUP

    def __init__(self, session: Session, storage: LocalFileStorage,
                 notifier: Optional[EntityChangeNotifier] = None):
        self.session = session
        self.storage = storage
        self.notifier = notifier
        self.job_repo = repositories.ImportJobRepository(session)

    def submit(self, payload: bytes, filename: Optional[str], content_type: Optional[str],
               runner: ImportJobRunner) -> schemas.ImportJobOut:
        """Record a job for `payload` and hand processing to `runner`."""
        out, staged = self.start(payload, filename, content_type)
        job_id = out.id
        storage, notifier = self.storage, self.notifier
        runner.submit(job_id, lambda: run_import_job(job_id, staged, storage, notifier))
        return out

    def start(self, payload: bytes, filename: Optional[str],
              content_type: Optional[str]) -> tuple:
        """Stage `payload` and commit an IN_PROGRESS job; return `(job_out, staged)`.

        The session holds no transaction afterwards, so a worker can take
        the write lock straight away.
        """
        if not payload:
            raise ValidationError("choose a non-empty YAML file to import")
        # storage first: an unreachable store must fail before any row is written
        staged = self.storage.stage(payload, filename, content_type)
        job = models.ImportJob(
            entity_type=self.ENTITY_TYPE,
            status=models.ImportStatus.IN_PROGRESS,
            filename=filename or "import.yaml",
            content_type=staged.content_type,
            file_size=staged.size,
        )
        try:
            begin_write(self.session)
            self.job_repo.save(job)
            out = self.to_out(job)
            self.session.commit()
        except Exception:
            self.session.rollback()
            self.storage.discard(staged)
            raise
        logger.info("import job %s created for %s (%d bytes)", out.id, out.filename, staged.size)
        self._publish(CREATED, out)
        return out, staged

    def process(self, job_id: str, staged: StagedFile) -> models.ImportJob:
        """Run job `job_id` to COMPLETED or FAILED; any error ends in FAILED."""
        groups = StudyGroupService(self.session, self.notifier)
        total = None
        committed_key = None
        try:
            requests = parse_study_groups(self.storage.read(staged.key))
            total = len(requests)
            with groups.transaction():
                job = self.job_repo.get(job_id)
                if job is None:
                    raise NotFoundError(f"import job {job_id} not found")
                for idx, request in enumerate(requests, start=1):
                    try:
                        groups.build(request)
                    except ServiceError as exc:
                        raise ImportValidationError(f"record {idx}: {exc.message}") from exc
                committed_key = self.storage.commit(staged, job.id)
                job.storage_key = committed_key
                self._finish(job, models.ImportStatus.COMPLETED)
                job.total_records = total
                job.success_count = total
                self.job_repo.save(job)
        except Exception as exc:
            if not isinstance(exc, ServiceError):
                logger.exception("import job %s failed unexpectedly", job_id)
            self.storage.discard(staged)
            if committed_key is not None:
                self.storage.remove(committed_key)
            job = self._fail(job_id, exc, total)
        else:
            logger.info("import job %s completed with %d record(s)", job_id, total)
        self.session.refresh(job)
        self._publish_job(job, UPDATED)
        return job

    def _fail(self, job_id: str, exc: Exception, total: Optional[int]) -> models.ImportJob:
        self.session.rollback()
        begin_write(self.session)
        job = self.job_repo.get(job_id)
        if job is None:
            self.session.rollback()
            raise NotFoundError(f"import job {job_id} not found") from exc
        message = exc.message if isinstance(exc, ServiceError) else f"{type(exc).__name__}: {exc}"
        self._finish(job, models.ImportStatus.FAILED)
        job.total_records = total
        job.error_message = message[:2000]
        self.job_repo.save(job)
        self.session.commit()
        logger.warning("import job %s failed: %s", job_id, job.error_message)
        return job

    @staticmethod
    def _finish(job: models.ImportJob, status: models.ImportStatus) -> None:
        if job.status != models.ImportStatus.IN_PROGRESS:
            raise RuntimeError(f"import job {job.id} already finished with {job.status.value}")
        job.status = status
        job.finished_at = datetime.now(timezone.utc)

    def get(self, job_id: str) -> schemas.ImportJobOut:
        job = self.job_repo.get(job_id)
        if job is None or job.entity_type != self.ENTITY_TYPE:
            raise NotFoundError(f"import job {job_id} not found")
        return self.to_out(job)

    def get_history(self) -> List[schemas.ImportJobOut]:
        return [self.to_out(j) for j in self.job_repo.history(self.ENTITY_TYPE)]

    def download(self, job_id: str) -> StoredFile:
        job = self.job_repo.get(job_id)
        if job is None:
            raise NotFoundError(f"import job {job_id} not found")
        if not job.storage_key:
            raise NotFoundError(f"file for import job {job_id} is not available")
        return self.storage.load(job.storage_key, job.filename, job.content_type)

    @staticmethod
    def to_out(job: models.ImportJob) -> schemas.ImportJobOut:
        out = schemas.ImportJobOut.model_validate(job)
        if job.storage_key:
            out.download_url = f"/imports/study-groups/{job.id}/file"
        return out

    def _publish_job(self, job: models.ImportJob, action: str) -> None:
        self._publish(action, self.to_out(job))

    def _publish(self, action: str, out: schemas.ImportJobOut) -> None:
        if self.notifier is not None:
            self.notifier.publish(IMPORT_JOB, action, out.model_dump(mode="json", by_alias=True))


def run_import_job(job_id: str, staged: StagedFile, storage: LocalFileStorage,
                   notifier: Optional[EntityChangeNotifier]) -> None:
    """Background entrypoint: process one job in its own session."""
    with Session(engine) as session:
        ImportService(session, storage, notifier).process(job_id, staged)
