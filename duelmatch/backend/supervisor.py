"""Periodic eviction of stale queue entries and stalled handshakes."""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

from .config import BrokerSettings
from .models import SweepReport
from .queue import QueueManager

logger = logging.getLogger(__name__)


class ExpiringHandshake(Protocol):
    session_id: str

    @property
    def pending(self) -> bool:
        """True until the handshake is active or failed."""

    def expire(self, now: float | None = None) -> bool:
        """Fail the handshake if it is overdue and return True when it did."""


class TimeoutSupervisor:
    def __init__(
        self,
        queue: QueueManager,
        settings: BrokerSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._queue = queue
        self._settings = settings
        self._clock = clock
        self._handshakes: dict[str, ExpiringHandshake] = {}

    @property
    def interval_s(self) -> float:
        return self._settings.sweep_interval_s

    def track_handshake(self, handshake: ExpiringHandshake) -> None:
        with self._queue.lock:
            self._handshakes[handshake.session_id] = handshake

    def untrack_handshake(self, session_id: str) -> None:
        with self._queue.lock:
            self._handshakes.pop(session_id, None)

    def sweep(self, now: float | None = None) -> SweepReport:
        now = self._clock() if now is None else now
        with self._queue.lock:
            evicted = self._sweep_queue(now)
            failed = self._sweep_handshakes(now)
        return SweepReport(evicted=evicted, failed_handshakes=failed)

    def _sweep_queue(self, now: float) -> list[str]:
        queue_bound = self._settings.queue_timeout_s
        liveness_bound = self._settings.liveness_timeout_s
        evicted: list[str] = []
        for record in self._queue.snapshot():
            waited = now - record.enqueued_at
            stale = liveness_bound is not None and now - record.last_seen > liveness_bound
            if waited <= queue_bound and not stale:
                continue
            if self._queue.remove_by_identity(record.identity, kind="evicted") == "removed":
                evicted.append(record.identity)
                logger.info("evicted %s after %.1fs (stale=%s)", record.identity, waited, stale)
        return evicted

    def _sweep_handshakes(self, now: float) -> list[str]:
        failed: list[str] = []
        for session_id, handshake in list(self._handshakes.items()):
            if not handshake.pending:
                del self._handshakes[session_id]
                continue
            if handshake.expire(now):
                del self._handshakes[session_id]
                failed.append(session_id)
                logger.info("handshake %s expired", session_id)
        return failed
