"""Blob storage for uploaded import files.

Uploads are staged under `tmp/` first, promoted to `imports/<job_id>/`
when the import commits and discarded when it fails. The local
filesystem backend mirrors that object-store layout so the rest of the
code only sees opaque keys.
"""

from __future__ import annotations

import logging
import os
import queue
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional
from uuid import uuid4

from ..errors import NotFoundError, StorageUnavailableError

_LOGGER = logging.getLogger("studygroups.storage")


@dataclass(frozen=True)
class StagedFile:
    key: str
    filename: str
    content_type: str
    size: int


@dataclass(frozen=True)
class StoredFile:
    content: bytes
    filename: str
    content_type: str
    size: int


def sanitize_filename(original: Optional[str]) -> str:
    if not original or not original.strip():
        return f"import-{uuid4().hex}.yaml"
    cleaned = original.replace("\\", "/").rsplit("/", 1)[-1]
    cleaned = re.sub(r"[^A-Za-z0-9._-]", "_", cleaned)
    return cleaned or f"import-{uuid4().hex}.yaml"


def _run_with_timeout(fn: Callable, timeout_s: float, what: str):
    """Run `fn` in a daemon thread and give up promptly on timeout."""
    out: queue.Queue = queue.Queue(maxsize=1)

    def _work():
        try:
            out.put((True, fn()))
        except Exception as exc:
            out.put((False, exc))

    t = threading.Thread(target=_work, daemon=True)
    t.start()
    try:
        ok, value = out.get(timeout=timeout_s)
    except queue.Empty as exc:
        raise StorageUnavailableError(f"storage timed out after {timeout_s:.0f}s while {what}") from exc
    if ok:
        return value
    if isinstance(value, OSError):
        raise StorageUnavailableError(f"storage unavailable while {what}: {value}") from value
    raise value


class LocalFileStorage:
    """Filesystem-backed blob store rooted at `root`."""

    def __init__(self, root: Path, timeout_s: float = 5.0):
        self.root = Path(root)
        self.timeout_s = timeout_s

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise NotFoundError("stored file not found")
        return path

    def stage(self, payload: bytes, filename: Optional[str], content_type: Optional[str]) -> StagedFile:
        name = sanitize_filename(filename)
        key = f"tmp/{uuid4().hex}/{name}"

        def _write():
            path = self._path(key)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(payload)

        _run_with_timeout(_write, self.timeout_s, "staging upload")
        _LOGGER.info("staged %s (%d bytes)", key, len(payload))
        return StagedFile(key=key, filename=name, content_type=content_type or "application/octet-stream",
                          size=len(payload))

    def read(self, key: str) -> bytes:
        return _run_with_timeout(lambda: self._path(key).read_bytes(), self.timeout_s, "reading upload")

    def commit(self, staged: StagedFile, job_id: str) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        final_key = f"imports/{job_id}/{stamp}-{staged.filename}"

        def _move():
            dst = self._path(final_key)
            dst.parent.mkdir(parents=True, exist_ok=True)
            os.replace(self._path(staged.key), dst)
            self._prune_empty(self._path(staged.key).parent)

        _run_with_timeout(_move, self.timeout_s, "committing upload")
        return final_key

    def discard(self, staged: StagedFile) -> None:
        try:
            path = self._path(staged.key)
            path.unlink(missing_ok=True)
            self._prune_empty(path.parent)
        except OSError as exc:
            _LOGGER.warning("could not remove staged file %s: %s", staged.key, exc)

    def remove(self, key: str) -> None:
        """Delete a committed blob; used when the surrounding import rolls back."""
        try:
            path = self._path(key)
            path.unlink(missing_ok=True)
            self._prune_empty(path.parent)
        except OSError as exc:
            _LOGGER.warning("could not remove stored file %s: %s", key, exc)

    def load(self, key: str, filename: Optional[str], content_type: Optional[str]) -> StoredFile:
        path = self._path(key)

        def _load():
            if not path.is_file():
                raise NotFoundError("stored file not found")
            return path.read_bytes()

        content = _run_with_timeout(_load, self.timeout_s, "loading stored file")
        return StoredFile(content=content, filename=filename or path.name,
                          content_type=content_type or "application/octet-stream", size=len(content))

    def _prune_empty(self, directory: Path) -> None:
        try:
            directory.rmdir()
        except OSError:
            pass
