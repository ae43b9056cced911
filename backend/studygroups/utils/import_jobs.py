"""Background execution handles for import jobs.

Job status is persisted on the `ImportJob` row; this store only keeps
the thread handles so callers (tests, the CLI) can wait for a job and so
the process knows how many imports are still running.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

_LOGGER = logging.getLogger("studygroups.imports")


class ImportJobRunner:
    def __init__(self, max_handles: int = 500, run_async: bool = True):
        self._handles: dict[str, dict] = {}
        self._lock = threading.Lock()
        self._max_handles = max_handles
        self.run_async = run_async

    def submit(self, job_id: str, worker: Callable[[], None]) -> None:
        """Run `worker` for `job_id`, in a daemon thread unless running inline."""
        handle = {"job_id": job_id, "thread": None, "done": threading.Event(),
                  "started_at": datetime.now(timezone.utc).isoformat(), "finished_at": None}
        with self._lock:
            self._handles[job_id] = handle
            self._prune()
        if not self.run_async:
            self._run(job_id, worker)
            return
        thread = threading.Thread(target=self._run, args=(job_id, worker), name=f"import-{job_id[:8]}",
                                  daemon=True)
        handle["thread"] = thread
        thread.start()

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Block until the job's worker returned; False on timeout or unknown id."""
        with self._lock:
            handle = self._handles.get(job_id)
        if handle is None:
            return False
        return handle["done"].wait(timeout)

    def running(self) -> int:
        with self._lock:
            return sum(1 for h in self._handles.values() if not h["done"].is_set())

    def _run(self, job_id: str, worker: Callable[[], None]) -> None:
        try:
            worker()
        except Exception:
            # the worker records failures on the job row; this only catches bugs in that path
            _LOGGER.exception("import worker crashed for job %s", job_id)
        finally:
            with self._lock:
                handle = self._handles.get(job_id)
                if handle is not None:
                    handle["finished_at"] = datetime.now(timezone.utc).isoformat()
                    handle["done"].set()

    def _prune(self) -> None:
        if len(self._handles) <= self._max_handles:
            return
        finished = sorted(
            (h for h in self._handles.values() if h["done"].is_set()),
            key=lambda h: h["finished_at"] or "",
        )
        for old in finished[: len(self._handles) - self._max_handles]:
            self._handles.pop(old["job_id"], None)
