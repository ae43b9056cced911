import time

import pytest

from studygroups.errors import NotFoundError, StorageUnavailableError
from studygroups.utils import storage as storage_mod
from studygroups.utils.storage import LocalFileStorage, sanitize_filename


def test_sanitize_filename():
    assert sanitize_filename("../../etc/passwd") == "passwd"
    assert sanitize_filename("my groups (v2).yaml") == "my_groups__v2_.yaml"
    assert sanitize_filename(None).startswith("import-")


def test_stage_commit_and_load(tmp_path):
    store = LocalFileStorage(tmp_path)
    staged = store.stage(b"groups: []", "g.yaml", "application/x-yaml")
    assert staged.key.startswith("tmp/")
    assert store.read(staged.key) == b"groups: []"

    key = store.commit(staged, "job1")
    assert key.startswith("imports/job1/") and key.endswith("-g.yaml")
    assert not (tmp_path / staged.key).exists()

    stored = store.load(key, "g.yaml", "application/x-yaml")
    assert stored.content == b"groups: []"
    assert stored.size == 10

    store.remove(key)
    with pytest.raises(NotFoundError):
        store.load(key, "g.yaml", None)


def test_discard_removes_staged_file(tmp_path):
    store = LocalFileStorage(tmp_path)
    staged = store.stage(b"x", "g.yaml", None)
    assert staged.content_type == "application/octet-stream"
    store.discard(staged)
    assert not (tmp_path / staged.key).exists()
    # discarding twice is harmless
    store.discard(staged)


def test_keys_cannot_escape_the_root(tmp_path):
    store = LocalFileStorage(tmp_path / "blobs")
    with pytest.raises(NotFoundError):
        store.load("../outside.yaml", None, None)


def test_unwritable_root_is_unavailable(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    store = LocalFileStorage(blocker)
    with pytest.raises(StorageUnavailableError):
        store.stage(b"x", "g.yaml", None)


def test_slow_storage_times_out(monkeypatch, tmp_path):
    store = LocalFileStorage(tmp_path, timeout_s=0.1)
    monkeypatch.setattr(storage_mod.Path, "write_bytes", lambda *_a, **_k: time.sleep(1))
    with pytest.raises(StorageUnavailableError, match="timed out"):
        store.stage(b"x", "g.yaml", None)


def test_slow_existence_check_times_out(monkeypatch, tmp_path):
    store = LocalFileStorage(tmp_path, timeout_s=0.1)
    staged = store.stage(b"x", "g.yaml", None)
    key = store.commit(staged, "job1")
    monkeypatch.setattr(storage_mod.Path, "is_file", lambda *_a, **_k: time.sleep(1) or True)
    with pytest.raises(StorageUnavailableError, match="timed out"):
        store.load(key, "g.yaml", None)
