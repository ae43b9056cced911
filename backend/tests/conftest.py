from pathlib import Path
import os
import tempfile
import time

import pytest

# settings are read once at import, so point the app at a scratch area first
_TMP = Path(tempfile.mkdtemp(prefix="studygroups-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["STORAGE_DIR"] = str(_TMP / "blobs")
os.environ.setdefault("LOG_LEVEL", "WARNING")


@pytest.fixture(autouse=True)
def reset_db():
    """Give every test an empty schema and wait for stray import threads."""
    from studygroups.database import create_db_and_tables, drop_db_and_tables
    from studygroups.main import import_runner

    drop_db_and_tables()
    create_db_and_tables()
    yield
    deadline = time.time() + 10
    while import_runner.running() and time.time() < deadline:
        time.sleep(0.05)


@pytest.fixture
def session():
    from sqlmodel import Session
    from studygroups.database import engine

    with Session(engine) as s:
        yield s

