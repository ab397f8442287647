"""Ordered waiting queue owned by the broker.

Every operation runs under ``QueueManager.lock``. The lock is re-entrant so
the pairing engine and the timeout supervisor can hold it across several
queue operations and stay mutually exclusive with join/leave callers.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import deque
from dataclasses import replace
from typing import Callable

from .models import EnqueueResult, ParticipantRecord, QueueEvent

logger = logging.getLogger(__name__)


class QueueManager:
    def __init__(self, clock: Callable[[], float] = time.monotonic, history_size: int = 1000) -> None:
        self.lock = threading.RLock()
        self._clock = clock
        self._sequence = itertools.count(1)
        # dict preserves insertion order, which is sequence order
        self._entries: dict[str, ParticipantRecord] = {}
        self._depth = 0
        self._history: deque[QueueEvent] = deque(maxlen=history_size)

    def enqueue(self, identity: str) -> EnqueueResult:
        with self.lock:
            existing = self._entries.get(identity)
            if existing is not None:
                return EnqueueResult(status="already-queued", record=existing)
            now = self._clock()
            record = ParticipantRecord(
                identity=identity,
                enqueued_at=now,
                last_seen=now,
                sequence=next(self._sequence),
            )
            self._entries[identity] = record
            self._depth = len(self._entries)
            self._record("enqueued", record)
            logger.debug("enqueued %s seq=%s depth=%s", identity, record.sequence, self._depth)
            return EnqueueResult(status="ok", record=record)

    def dequeue_front(self) -> ParticipantRecord | None:
        with self.lock:
            taken = self.take_front(1)
            return taken[0] if taken else None

    def take_front(self, count: int) -> list[ParticipantRecord]:
        """Remove the ``count`` front-most records, or nothing if fewer are queued."""
        with self.lock:
            if count <= 0 or len(self._entries) < count:
                return []
            taken = list(itertools.islice(self._entries.values(), count))
            for record in taken:
                del self._entries[record.identity]
                self._record("dequeued", record)
            self._depth = len(self._entries)
            return taken

    def remove_by_identity(self, identity: str, kind: str = "removed") -> str:
        with self.lock:
            record = self._entries.pop(identity, None)
            if record is None:
                return "not-found"
            self._depth = len(self._entries)
            self._record(kind, record)
            logger.debug("%s %s depth=%s", kind, identity, self._depth)
            return "removed"

    def touch(self, identity: str) -> bool:
        with self.lock:
            record = self._entries.get(identity)
            if record is None:
                return False
            # reassigning an existing key keeps its position
            self._entries[identity] = replace(record, last_seen=self._clock())
            self._record("touched", record)
            return True

    def size(self) -> int:
        """Depth snapshot. Does not wait for in-flight mutations."""
        return self._depth

    def position_of(self, identity: str) -> int | None:
        with self.lock:
            for index, queued in enumerate(self._entries, start=1):
                if queued == identity:
                    return index
            return None

    def positions(self) -> dict[str, int]:
        with self.lock:
            return {identity: index for index, identity in enumerate(self._entries, start=1)}

    def snapshot(self) -> list[ParticipantRecord]:
        with self.lock:
            return list(self._entries.values())

    def history(self) -> list[QueueEvent]:
        with self.lock:
            return list(self._history)

    def record_event(self, kind: str, record: ParticipantRecord) -> None:
        with self.lock:
            self._record(kind, record)

    def __contains__(self, identity: object) -> bool:
        with self.lock:
            return identity in self._entries

    def __len__(self) -> int:
        return self._depth

    def _record(self, kind: str, record: ParticipantRecord) -> None:
        self._history.append(
            QueueEvent(kind=kind, identity=record.identity, sequence=record.sequence, at=self._clock())
        )
