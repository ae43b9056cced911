"""CLI script to import study groups from a local YAML file into the backend DB.
Usage: python scripts/import_study_groups.py PATH [PATH ...]
"""
import sys
import argparse
import pathlib
from typing import List
# Ensure `backend/` is on sys.path so `studygroups` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from studygroups.config import settings
from studygroups.database import engine, create_db_and_tables
from studygroups.errors import ServiceError
from studygroups.models import ImportStatus
from studygroups.services import ImportService
from studygroups.utils.storage import LocalFileStorage


def main(paths: List[pathlib.Path]) -> int:
    """Import each file as its own job and print the outcome.

    Each file runs synchronously and is all-or-nothing, exactly like an
    upload through the API. Returns the number of failed files.
    """
    create_db_and_tables()
    storage = LocalFileStorage(settings.STORAGE_DIR, timeout_s=settings.STORAGE_TIMEOUT_SECONDS)
    failed = 0
    with Session(engine) as session:
        svc = ImportService(session, storage)
        for path in paths:
            if not path.is_file():
                print(f'File not found: {path}')
                failed += 1
                continue
            try:
                out, staged = svc.start(path.read_bytes(), path.name, 'application/x-yaml')
                job = svc.process(out.id, staged)
            except ServiceError as e:
                print(f'Error importing {path}: {e.message}')
                failed += 1
                continue
            if job.status == ImportStatus.COMPLETED:
                print(f'Imported {path}: {job.success_count} study group(s), job {job.id}')
            else:
                print(f'Failed {path}: {job.error_message} (job {job.id})')
                failed += 1
    print(f'Done: {len(paths) - failed} succeeded, {failed} failed')
    return failed


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('paths', nargs='+', type=pathlib.Path, help='YAML files to import')
    args = parser.parse_args()
    sys.exit(1 if main(args.paths) else 0)
