"""Broker service: join/leave, pairing, eviction and push notifications."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from .config import BrokerSettings
from .models import Assignment, HealthSnapshot, JoinResult, SweepReport
from .pairing import PairingEngine
from .queue import QueueManager
from .security import generate_token
from .supervisor import TimeoutSupervisor

logger = logging.getLogger(__name__)


class Channel(Protocol):
    async def send_json(self, data: Any) -> None:
        """Push one JSON message to the participant."""


@dataclass(frozen=True)
class Delivery:
    identity: str
    payload: dict[str, Any]
    # unsubscribe after sending; used for matched and timedOut
    final: bool = False


class ChannelHub:
    def __init__(self) -> None:
        self._channels: dict[str, Channel] = {}

    def subscribe(self, identity: str, channel: Channel) -> None:
        self._channels[identity] = channel

    def unsubscribe(self, identity: str, channel: Channel | None = None) -> None:
        if channel is not None and self._channels.get(identity) is not channel:
            return
        self._channels.pop(identity, None)

    def is_subscribed(self, identity: str) -> bool:
        return identity in self._channels

    def is_current(self, identity: str, channel: Channel) -> bool:
        return self._channels.get(identity) is channel

    async def send(self, identity: str, payload: dict[str, Any], final: bool = False) -> bool:
        channel = self._channels.get(identity)
        if channel is None:
            logger.debug("no channel for %s, dropping %s", identity, payload.get("type"))
            return False
        try:
            await channel.send_json(payload)
        except Exception as exc:
            logger.warning("send to %s failed: %s", identity, exc)
            self.unsubscribe(identity, channel)
            return False
        if final:
            self.unsubscribe(identity, channel)
        return True


def position_update(position: int) -> dict[str, Any]:
    return {"type": "positionUpdate", "position": position}


def matched_notice(assignment: Assignment, identity: str) -> dict[str, Any]:
    return {
        "type": "matched",
        "role": assignment.role_of(identity),
        "sessionId": assignment.session_id,
        "peerAddress": assignment.peer_of(identity),
    }


def timed_out_notice() -> dict[str, Any]:
    return {"type": "timedOut"}


class BrokerService:
    """Single owner of the waiting queue.

    Queue mutations happen under ``queue.lock`` and produce an outbox. The
    outbox is delivered after the lock is released; a failed delivery never
    rolls back the mutation.
    """

    def __init__(
        self,
        settings: BrokerSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        token_factory: Callable[[], str] = generate_token,
    ) -> None:
        self.settings = settings if settings is not None else BrokerSettings()
        self.queue = QueueManager(clock=clock, history_size=self.settings.history_size)
        self.pairing = PairingEngine(
            self.queue, clock=clock, token_factory=token_factory, history_size=self.settings.history_size
        )
        self.supervisor = TimeoutSupervisor(self.queue, self.settings, clock=clock)
        self.hub = ChannelHub()
        self.up_since = datetime.now(timezone.utc).isoformat()

    async def join(self, identity: str, channel: Channel | None = None) -> JoinResult:
        outbox: list[Delivery] = []
        with self.queue.lock:
            enqueued = self.queue.enqueue(identity)
            if channel is not None:
                self.hub.subscribe(identity, channel)
            if enqueued.status == "already-queued":
                return JoinResult(
                    identity=identity,
                    status="already-queued",
                    position=self.queue.position_of(identity),
                )
            outbox.extend(self._position_updates())
            assignment = self.pairing.try_pair()
            if assignment is not None:
                outbox.extend(self._matched(assignment))
                outbox.extend(self._position_updates())
            position = self.queue.position_of(identity)

        await self._deliver(outbox)
        if assignment is not None and identity in (assignment.host, assignment.guest):
            return JoinResult(identity=identity, status="matched", position=None, assignment=assignment)
        return JoinResult(identity=identity, status="queued", position=position)

    async def leave(self, identity: str, channel: Channel | None = None) -> bool:
        """Remove ``identity`` from the queue. Leaving twice is a no-op.

        With ``channel`` the leave only applies while that channel is still
        the subscribed one, so a replaced connection cannot dequeue its successor.
        """
        with self.queue.lock:
            if channel is not None and not self.hub.is_current(identity, channel):
                return False
            removed = self.queue.remove_by_identity(identity) == "removed"
            self.hub.unsubscribe(identity, channel)
            outbox = self._position_updates() if removed else []
        await self._deliver(outbox)
        return removed

    def touch(self, identity: str) -> bool:
        return self.queue.touch(identity)

    def position_of(self, identity: str) -> int | None:
        return self.queue.position_of(identity)

    def lookup(self, identity: str) -> JoinResult | None:
        """Queue position, or the assignment once ``identity`` has been paired."""
        with self.queue.lock:
            position = self.queue.position_of(identity)
            if position is not None:
                return JoinResult(identity=identity, status="queued", position=position)
            assignment = self.pairing.assignment_for(identity)
        if assignment is None:
            return None
        return JoinResult(identity=identity, status="matched", position=None, assignment=assignment)

    def query_health(self) -> HealthSnapshot:
        return HealthSnapshot(queue_depth=self.queue.size(), up_since=self.up_since)

    async def sweep(self, now: float | None = None) -> SweepReport:
        outbox: list[Delivery] = []
        with self.queue.lock:
            report = self.supervisor.sweep(now)
            for identity in report.evicted:
                outbox.append(Delivery(identity, timed_out_notice(), final=True))
            assignments = self.pairing.sweep()
            for assignment in assignments:
                outbox.extend(self._matched(assignment))
            if report.evicted or assignments:
                outbox.extend(self._position_updates())
        await self._deliver(outbox)
        return SweepReport(
            evicted=report.evicted,
            failed_handshakes=report.failed_handshakes,
            assignments=assignments,
        )

    async def run_supervisor(self, stop: asyncio.Event) -> None:
        interval = self.supervisor.interval_s
        logger.info("supervisor started, interval=%ss", interval)
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            if stop.is_set():
                break
            try:
                await self.sweep()
            except Exception:
                logger.exception("supervisor sweep failed")
        logger.info("supervisor stopped")

    def _position_updates(self) -> list[Delivery]:
        return [
            Delivery(identity, position_update(position))
            for identity, position in self.queue.positions().items()
        ]

    def _matched(self, assignment: Assignment) -> list[Delivery]:
        return [
            Delivery(assignment.host, matched_notice(assignment, assignment.host), final=True),
            Delivery(assignment.guest, matched_notice(assignment, assignment.guest), final=True),
        ]

    async def _deliver(self, outbox: list[Delivery]) -> None:
        for delivery in outbox:
            await self.hub.send(delivery.identity, delivery.payload, final=delivery.final)
