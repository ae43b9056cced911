"""In-process fan-out of entity-change events to WebSocket subscribers."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Optional

_LOGGER = logging.getLogger("studygroups.notifier")

CREATED = "CREATED"
UPDATED = "UPDATED"
DELETED = "DELETED"


class Subscription:
    """One connected client: a bounded queue owned by the client's event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, max_queue: int):
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self.dropped = 0

    def offer(self, event: dict) -> None:
        # runs on self.loop
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1

    async def next_event(self) -> dict:
        return await self.queue.get()


class EntityChangeNotifier:
    """Registry of live subscriptions with an explicit open/close lifecycle.

    `publish` may be called from any thread. It never blocks and never
    raises: events for a full or dead subscriber are dropped, delivery is
    at most once and nothing is replayed.
    """

    def __init__(self, max_queue: int = 100):
        self._subs: set[Subscription] = set()
        self._lock = threading.Lock()
        self._max_queue = max_queue
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        with self._lock:
            self._open = True
        _LOGGER.info("notifier opened")

    def close(self) -> None:
        with self._lock:
            self._open = False
            count = len(self._subs)
            self._subs.clear()
        _LOGGER.info("notifier closed, dropped %d subscriber(s)", count)

    def subscribe(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> Subscription:
        if loop is None:
            loop = asyncio.get_running_loop()
        sub = Subscription(loop, self._max_queue)
        with self._lock:
            if not self._open:
                raise RuntimeError("notifier is closed")
            self._subs.add(sub)
        sub.offer({"entity": "SYSTEM", "action": "CONNECTED", "data": "ready"})
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subs.discard(sub)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def publish(self, entity: str, action: str, payload: Any) -> None:
        event = {"entity": entity, "action": action, "data": payload}
        with self._lock:
            subs = list(self._subs)
        dead = []
        for sub in subs:
            try:
                sub.loop.call_soon_threadsafe(sub.offer, event)
            except RuntimeError:
                # loop already closed
                dead.append(sub)
        if dead:
            with self._lock:
                for sub in dead:
                    self._subs.discard(sub)
        _LOGGER.debug("published %s %s to %d subscriber(s)", entity, action, len(subs) - len(dead))
