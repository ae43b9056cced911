"""FastAPI application entrypoint and HTTP controllers.

Controllers are intentionally thin: they parse query parameters, call a
service and return its schema. Domain errors (`errors.ServiceError`) are
rendered by a single exception handler.

Endpoints implemented:
- /coordinates, /locations, /persons, /study-groups: list, by-ids, get,
  create, patch, delete (with optional replacementId), references
- /study-groups: semester deletes, bulk patch/delete, statistics
- /imports/study-groups: upload, history, poll, download
- /ws/entity: entity-change events
- GET /health
"""

import asyncio
from contextlib import asynccontextmanager
import json
import logging
import time
from typing import List, Optional
import uuid

from fastapi import Depends, FastAPI, File, Query, Request, UploadFile, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session

from . import schemas
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import ServiceError, ValidationError
from .models import Semester
from .services import (
    COORDINATES,
    LOCATION,
    PERSON,
    CoordinatesService,
    ImportService,
    LocationService,
    PersonService,
    ReferenceGuard,
    StudyGroupService,
)
from .utils.import_jobs import ImportJobRunner
from .utils.notifier import EntityChangeNotifier
from .utils.storage import LocalFileStorage

logger = logging.getLogger("studygroups.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

notifier = EntityChangeNotifier(max_queue=settings.NOTIFIER_QUEUE_SIZE)
storage = LocalFileStorage(settings.STORAGE_DIR, timeout_s=settings.STORAGE_TIMEOUT_SECONDS)
import_runner = ImportJobRunner(max_handles=settings.IMPORT_JOB_MAX_HANDLES, run_async=settings.IMPORT_ASYNC)


@asynccontextmanager
async def lifespan(app: FastAPI):
    notifier.open()
    try:
        yield
    finally:
        notifier.close()


app = FastAPI(title="Study Groups API", lifespan=lifespan)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


def get_notifier() -> EntityChangeNotifier:
    return notifier


def get_storage() -> LocalFileStorage:
    return storage


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    fields = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        "client": request.client.host if request.client else "unknown",
    }
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        fields["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception("request_failed %s", json.dumps(fields, ensure_ascii=True))
        raise
    response.headers["X-Request-ID"] = req_id
    fields["status_code"] = response.status_code
    fields["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info("request_done %s", json.dumps(fields, ensure_ascii=True))
    return response


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    body = {
        "status": exc.status_code,
        "error": type(exc).__name__,
        "message": exc.message,
        **exc.extra(),
    }
    return JSONResponse(status_code=exc.status_code, content=body)


def _page_params(
    page: int = Query(0),
    size: Optional[int] = Query(None),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    direction: Optional[str] = Query(None),
) -> dict:
    return {
        "page": page,
        "size": settings.DEFAULT_PAGE_SIZE if size is None else size,
        "sort_by": sort_by,
        "direction": direction,
    }


def _semester(value: str) -> Semester:
    try:
        return Semester(value.strip().upper())
    except ValueError:
        raise ValidationError(f"unknown semester '{value}'") from None


def _references(guard: ReferenceGuard, entity: str, entity_id: int) -> schemas.ReferencesOut:
    refs = guard.check_references(entity, entity_id)
    return schemas.ReferencesOut(entity=entity, id=entity_id, referenced_by=sorted(refs))


# --- coordinates -----------------------------------------------------------

@app.get("/coordinates", response_model=schemas.Page[schemas.CoordinatesOut])
def list_coordinates(params: dict = Depends(_page_params), db: Session = Depends(get_session)):
    return CoordinatesService(db).list(**params)


@app.get("/coordinates/by-ids", response_model=List[schemas.CoordinatesOut])
def coordinates_by_ids(ids: List[int] = Query(default=[]), db: Session = Depends(get_session)):
    return CoordinatesService(db).get_many(ids)


@app.patch("/coordinates", response_model=List[schemas.CoordinatesOut])
def update_coordinates_bulk(payload: schemas.CoordinatesUpdate, ids: List[int] = Query(...),
                            db: Session = Depends(get_session), events: EntityChangeNotifier = Depends(get_notifier)):
    return CoordinatesService(db, events).update_many(ids, payload)


@app.delete("/coordinates", response_model=schemas.DeletedCountOut)
def delete_coordinates_bulk(ids: List[int] = Query(...), db: Session = Depends(get_session),
                            events: EntityChangeNotifier = Depends(get_notifier)):
    return schemas.DeletedCountOut(deleted=ReferenceGuard(db, events).delete_many(COORDINATES, ids))


@app.get("/coordinates/{entity_id}", response_model=schemas.CoordinatesOut)
def get_coordinates(entity_id: int, db: Session = Depends(get_session)):
    return CoordinatesService(db).get(entity_id)


@app.post("/coordinates", response_model=schemas.CoordinatesOut, status_code=201)
def create_coordinates(payload: schemas.CoordinatesIn, db: Session = Depends(get_session),
                       events: EntityChangeNotifier = Depends(get_notifier)):
    return CoordinatesService(db, events).create(payload)


@app.patch("/coordinates/{entity_id}", response_model=schemas.CoordinatesOut)
def update_coordinates(entity_id: int, payload: schemas.CoordinatesUpdate, db: Session = Depends(get_session),
                       events: EntityChangeNotifier = Depends(get_notifier)):
    return CoordinatesService(db, events).update(entity_id, payload)


@app.delete("/coordinates/{entity_id}", response_model=schemas.CoordinatesOut)
def delete_coordinates(entity_id: int, replacement_id: Optional[int] = Query(None, alias="replacementId"),
                       db: Session = Depends(get_session), events: EntityChangeNotifier = Depends(get_notifier)):
    return ReferenceGuard(db, events).delete(COORDINATES, entity_id, replacement_id)


@app.get("/coordinates/{entity_id}/references", response_model=schemas.ReferencesOut)
def coordinates_references(entity_id: int, db: Session = Depends(get_session)):
    return _references(ReferenceGuard(db), COORDINATES, entity_id)


# --- locations -------------------------------------------------------------

@app.get("/locations", response_model=schemas.Page[schemas.LocationOut])
def list_locations(params: dict = Depends(_page_params), db: Session = Depends(get_session)):
    return LocationService(db).list(**params)


@app.get("/locations/by-ids", response_model=List[schemas.LocationOut])
def locations_by_ids(ids: List[int] = Query(default=[]), db: Session = Depends(get_session)):
    return LocationService(db).get_many(ids)


@app.patch("/locations", response_model=List[schemas.LocationOut])
def update_locations_bulk(payload: schemas.LocationUpdate, ids: List[int] = Query(...),
                          db: Session = Depends(get_session), events: EntityChangeNotifier = Depends(get_notifier)):
    return LocationService(db, events).update_many(ids, payload)


@app.delete("/locations", response_model=schemas.DeletedCountOut)
def delete_locations_bulk(ids: List[int] = Query(...), db: Session = Depends(get_session),
                          events: EntityChangeNotifier = Depends(get_notifier)):
    return schemas.DeletedCountOut(deleted=ReferenceGuard(db, events).delete_many(LOCATION, ids))


@app.get("/locations/{entity_id}", response_model=schemas.LocationOut)
def get_location(entity_id: int, db: Session = Depends(get_session)):
    return LocationService(db).get(entity_id)


@app.post("/locations", response_model=schemas.LocationOut, status_code=201)
def create_location(payload: schemas.LocationIn, db: Session = Depends(get_session),
                    events: EntityChangeNotifier = Depends(get_notifier)):
    return LocationService(db, events).create(payload)


@app.patch("/locations/{entity_id}", response_model=schemas.LocationOut)
def update_location(entity_id: int, payload: schemas.LocationUpdate, db: Session = Depends(get_session),
                    events: EntityChangeNotifier = Depends(get_notifier)):
    return LocationService(db, events).update(entity_id, payload)


@app.delete("/locations/{entity_id}", response_model=schemas.LocationOut)
def delete_location(entity_id: int, replacement_id: Optional[int] = Query(None, alias="replacementId"),
                    db: Session = Depends(get_session), events: EntityChangeNotifier = Depends(get_notifier)):
    return ReferenceGuard(db, events).delete(LOCATION, entity_id, replacement_id)


@app.get("/locations/{entity_id}/references", response_model=schemas.ReferencesOut)
def location_references(entity_id: int, db: Session = Depends(get_session)):
    return _references(ReferenceGuard(db), LOCATION, entity_id)


# --- persons ---------------------------------------------------------------

@app.get("/persons", response_model=schemas.Page[schemas.PersonOut])
def list_persons(params: dict = Depends(_page_params), db: Session = Depends(get_session)):
    return PersonService(db).list(**params)


@app.get("/persons/by-ids", response_model=List[schemas.PersonOut])
def persons_by_ids(ids: List[int] = Query(default=[]), db: Session = Depends(get_session)):
    return PersonService(db).get_many(ids)


@app.patch("/persons", response_model=List[schemas.PersonOut])
def update_persons_bulk(payload: schemas.PersonUpdate, ids: List[int] = Query(...),
                        db: Session = Depends(get_session), events: EntityChangeNotifier = Depends(get_notifier)):
    return PersonService(db, events).update_many(ids, payload)


@app.delete("/persons", response_model=schemas.DeletedCountOut)
def delete_persons_bulk(ids: List[int] = Query(...), db: Session = Depends(get_session),
                        events: EntityChangeNotifier = Depends(get_notifier)):
    return schemas.DeletedCountOut(deleted=ReferenceGuard(db, events).delete_many(PERSON, ids))


@app.get("/persons/{entity_id}", response_model=schemas.PersonOut)
def get_person(entity_id: int, db: Session = Depends(get_session)):
    return PersonService(db).get(entity_id)


@app.post("/persons", response_model=schemas.PersonOut, status_code=201)
def create_person(payload: schemas.PersonIn, db: Session = Depends(get_session),
                  events: EntityChangeNotifier = Depends(get_notifier)):
    return PersonService(db, events).create(payload)


@app.patch("/persons/{entity_id}", response_model=schemas.PersonOut)
def update_person(entity_id: int, payload: schemas.PersonUpdate, db: Session = Depends(get_session),
                  events: EntityChangeNotifier = Depends(get_notifier)):
    return PersonService(db, events).update(entity_id, payload)


@app.delete("/persons/{entity_id}", response_model=schemas.PersonOut)
def delete_person(entity_id: int, replacement_id: Optional[int] = Query(None, alias="replacementId"),
                  db: Session = Depends(get_session), events: EntityChangeNotifier = Depends(get_notifier)):
    return ReferenceGuard(db, events).delete(PERSON, entity_id, replacement_id)


@app.get("/persons/{entity_id}/references", response_model=schemas.ReferencesOut)
def person_references(entity_id: int, db: Session = Depends(get_session)):
    return _references(ReferenceGuard(db), PERSON, entity_id)


# --- study groups ----------------------------------------------------------

@app.get("/study-groups", response_model=schemas.Page[schemas.StudyGroupOut])
def list_study_groups(params: dict = Depends(_page_params), db: Session = Depends(get_session)):
    return StudyGroupService(db).list(**params)


@app.get("/study-groups/by-ids", response_model=List[schemas.StudyGroupOut])
def study_groups_by_ids(ids: List[int] = Query(default=[]), db: Session = Depends(get_session)):
    return StudyGroupService(db).get_many(ids)


@app.get("/study-groups/stats/should-be-expelled", response_model=List[schemas.ShouldBeExpelledGroupOut])
def should_be_expelled_stats(db: Session = Depends(get_session)):
    return StudyGroupService(db).should_be_expelled_stats()


@app.get("/study-groups/stats/expelled-total", response_model=schemas.ExpelledTotalOut)
def expelled_total(db: Session = Depends(get_session)):
    return StudyGroupService(db).expelled_total()


@app.delete("/study-groups/by-semester", response_model=schemas.DeletedCountOut)
def delete_study_groups_by_semester(semester: str = Query(..., alias="semesterEnum"),
                                    db: Session = Depends(get_session),
                                    events: EntityChangeNotifier = Depends(get_notifier)):
    deleted = StudyGroupService(db, events).delete_all_by_semester(_semester(semester))
    return schemas.DeletedCountOut(deleted=deleted)


@app.delete("/study-groups/by-semester/one", response_model=schemas.StudyGroupOut)
def delete_one_study_group_by_semester(semester: str = Query(..., alias="semesterEnum"),
                                       db: Session = Depends(get_session),
                                       events: EntityChangeNotifier = Depends(get_notifier)):
    return StudyGroupService(db, events).delete_one_by_semester(_semester(semester))


@app.patch("/study-groups", response_model=List[schemas.StudyGroupOut])
def update_study_groups(payload: schemas.StudyGroupUpdate, ids: List[int] = Query(...),
                        db: Session = Depends(get_session), events: EntityChangeNotifier = Depends(get_notifier)):
    return StudyGroupService(db, events).update_many(ids, payload)


@app.delete("/study-groups", response_model=schemas.DeletedCountOut)
def delete_study_groups(ids: List[int] = Query(...), db: Session = Depends(get_session),
                        events: EntityChangeNotifier = Depends(get_notifier)):
    return schemas.DeletedCountOut(deleted=StudyGroupService(db, events).delete_many(ids))


@app.get("/study-groups/{entity_id}", response_model=schemas.StudyGroupOut)
def get_study_group(entity_id: int, db: Session = Depends(get_session)):
    return StudyGroupService(db).get(entity_id)


@app.post("/study-groups", response_model=schemas.StudyGroupOut, status_code=201)
def create_study_group(payload: schemas.StudyGroupIn, db: Session = Depends(get_session),
                       events: EntityChangeNotifier = Depends(get_notifier)):
    return StudyGroupService(db, events).create(payload)


@app.patch("/study-groups/{entity_id}", response_model=schemas.StudyGroupOut)
def update_study_group(entity_id: int, payload: schemas.StudyGroupUpdate, db: Session = Depends(get_session),
                       events: EntityChangeNotifier = Depends(get_notifier)):
    return StudyGroupService(db, events).update(entity_id, payload)


@app.delete("/study-groups/{entity_id}", response_model=schemas.StudyGroupOut)
def delete_study_group(entity_id: int, db: Session = Depends(get_session),
                       events: EntityChangeNotifier = Depends(get_notifier)):
    return StudyGroupService(db, events).delete(entity_id)


# --- imports ---------------------------------------------------------------

@app.post("/imports/study-groups", response_model=schemas.ImportJobOut, status_code=202)
def import_study_groups(
    file: UploadFile = File(...),
    db: Session = Depends(get_session),
    events: EntityChangeNotifier = Depends(get_notifier),
    blobs: LocalFileStorage = Depends(get_storage),
):
    """Store the upload, record an import job and process it in the background."""
    payload = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(payload) > settings.MAX_UPLOAD_BYTES:
        raise ValidationError("file too large")
    return ImportService(db, blobs, events).submit(payload, file.filename, file.content_type, import_runner)


@app.get("/imports/study-groups", response_model=List[schemas.ImportJobOut])
def import_history(db: Session = Depends(get_session), blobs: LocalFileStorage = Depends(get_storage)):
    return ImportService(db, blobs).get_history()


@app.get("/imports/study-groups/{job_id}", response_model=schemas.ImportJobOut)
def get_import_job(job_id: str, db: Session = Depends(get_session), blobs: LocalFileStorage = Depends(get_storage)):
    return ImportService(db, blobs).get(job_id)


@app.get("/imports/study-groups/{job_id}/file")
def download_import_file(job_id: str, db: Session = Depends(get_session),
                         blobs: LocalFileStorage = Depends(get_storage)):
    stored = ImportService(db, blobs).download(job_id)
    return Response(
        content=stored.content,
        media_type=stored.content_type,
        headers={"Content-Disposition": f'attachment; filename="{stored.filename}"'},
    )


# --- events ----------------------------------------------------------------

@app.websocket("/ws/entity")
async def entity_events(websocket: WebSocket):
    """Push entity-change events to the client; incoming messages are ignored."""
    await websocket.accept()
    try:
        sub = notifier.subscribe()
    except RuntimeError:
        await websocket.close(code=1013)
        return

    async def _until_disconnect():
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

    reader = asyncio.create_task(_until_disconnect())
    try:
        while True:
            pending = asyncio.create_task(sub.next_event())
            done, _ = await asyncio.wait({pending, reader}, return_when=asyncio.FIRST_COMPLETED)
            if pending not in done:
                pending.cancel()
                break
            await websocket.send_json(pending.result())
    finally:
        reader.cancel()
        notifier.unsubscribe(sub)


@app.get("/health")
def health():
    return {"status": "ok", "subscribers": notifier.subscriber_count(), "imports_running": import_runner.running()}
