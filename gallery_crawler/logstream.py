"""Live progress fan-out to per-client listeners."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Dict, Set

logger = logging.getLogger("gallery_crawler.logstream")


def timestamp() -> str:
    now = dt.datetime.now(dt.timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def stamp(line: str) -> str:
    return f"[{timestamp()}] {line}"


# Sole item left on a dropped listener's queue; readers stop on it.
CLOSED = object()


def _close(queue: asyncio.Queue) -> None:
    while not queue.empty():
        queue.get_nowait()
    queue.put_nowait(CLOSED)


class LogBroker:
    """Best-effort delivery of log lines to listeners grouped by identity.

    A listener whose queue is full is dropped and its queue is left holding
    only :data:`CLOSED`; the publisher never waits.
    """

    def __init__(self, max_queue: int = 1000) -> None:
        self.max_queue = max_queue
        self._listeners: Dict[str, Set[asyncio.Queue]] = {}

    def subscribe(self, identity: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue)
        self._listeners.setdefault(identity, set()).add(queue)
        return queue

    def unsubscribe(self, identity: str, queue: asyncio.Queue) -> None:
        listeners = self._listeners.get(identity)
        if not listeners:
            return
        listeners.discard(queue)
        if not listeners:
            del self._listeners[identity]

    def listener_count(self, identity: str) -> int:
        return len(self._listeners.get(identity, ()))

    def publish(self, identity: str, line: str) -> None:
        for queue in list(self._listeners.get(identity, ())):
            try:
                queue.put_nowait(line)
            except asyncio.QueueFull:
                logger.debug("Dropping slow log listener for %s", identity)
                self.unsubscribe(identity, queue)
                _close(queue)


class ChannelSink:
    """Progress sink publishing timestamped lines to one identity's listeners."""

    def __init__(self, broker: LogBroker, identity: str) -> None:
        self.broker = broker
        self.identity = identity

    def on_log(self, line: str) -> None:
        self.broker.publish(self.identity, stamp(line))
