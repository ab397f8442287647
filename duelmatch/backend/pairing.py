"""Pairing engine: turns the two front-most queue entries into an Assignment."""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Callable

from .models import Assignment
from .queue import QueueManager
from .security import generate_token

logger = logging.getLogger(__name__)


class PairingEngine:
    def __init__(
        self,
        queue: QueueManager,
        clock: Callable[[], float] = time.monotonic,
        token_factory: Callable[[], str] = generate_token,
        history_size: int = 1000,
    ) -> None:
        self._queue = queue
        self._clock = clock
        self._token_factory = token_factory
        self._issued: deque[Assignment] = deque(maxlen=history_size)

    def try_pair(self) -> Assignment | None:
        """Pair the two front-most participants.

        Both records leave the queue in the same critical section that creates
        the Assignment. When fewer than two records are queued at execution
        time nothing is removed and ``None`` is returned.
        """
        with self._queue.lock:
            pair = self._queue.take_front(2)
            if not pair:
                return None
            first, second = sorted(pair, key=lambda record: record.sequence)
            assignment = Assignment(
                session_id=self._token_factory(),
                host=first.identity,
                guest=second.identity,
                created_at=self._clock(),
            )
            self._queue.record_event("paired", first)
            self._queue.record_event("paired", second)
            self._issued.append(assignment)
        logger.info(
            "paired host=%s guest=%s session=%s", assignment.host, assignment.guest, assignment.session_id
        )
        return assignment

    def sweep(self) -> list[Assignment]:
        assignments: list[Assignment] = []
        while True:
            assignment = self.try_pair()
            if assignment is None:
                return assignments
            assignments.append(assignment)

    def issued(self) -> list[Assignment]:
        with self._queue.lock:
            return list(self._issued)

    def assignment_for(self, identity: str) -> Assignment | None:
        """Most recent assignment that includes ``identity``, if still in history."""
        with self._queue.lock:
            for assignment in reversed(self._issued):
                if identity in (assignment.host, assignment.guest):
                    return assignment
        return None
