"""Async driver for one side of a direct session.

The runtime owns a SessionHandshake and, once active, a SessionAuthority. It
talks to the peer through a DirectChannel and always finishes with a
SessionOutcome: either the session ended normally or the participant has to
go back to the broker and join again.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal, Protocol

from pydantic import BaseModel, ValidationError

from duelmatch.backend.config import BrokerSettings
from duelmatch.backend.errors import ActionRejected, ChannelLost
from duelmatch.backend.supervisor import TimeoutSupervisor
from duelmatch.peer.engine import playable_cards
from duelmatch.peer.handshake import HandshakePhase, SessionHandshake
from duelmatch.peer.messages import dump_message, parse_message
from duelmatch.peer.session import RematchState, SessionAuthority, SessionPhase
from duelmatch.peer.state import build_initial_state

logger = logging.getLogger(__name__)

ChooseAction = Callable[[dict[str, Any], str], dict[str, Any]]

_CLOSED = object()


class DirectChannel(Protocol):
    async def send(self, message: dict[str, Any]) -> None:
        """Send one message. Raises ChannelLost when the channel is gone."""

    async def receive(self) -> dict[str, Any]:
        """Wait for the next message. Raises ChannelLost when the channel is gone."""

    async def close(self) -> None:
        """Stop producing messages."""


class LoopbackChannel:
    """In-memory channel pair for tests and same-process play."""

    def __init__(self, inbox: asyncio.Queue, outbox: asyncio.Queue) -> None:
        self._inbox = inbox
        self._outbox = outbox
        self.closed = False

    @classmethod
    def pair(cls) -> tuple["LoopbackChannel", "LoopbackChannel"]:
        first_to_second: asyncio.Queue = asyncio.Queue()
        second_to_first: asyncio.Queue = asyncio.Queue()
        return cls(inbox=second_to_first, outbox=first_to_second), cls(inbox=first_to_second, outbox=second_to_first)

    async def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise ChannelLost("channel closed")
        await self._outbox.put(message)

    async def receive(self) -> dict[str, Any]:
        if self.closed:
            raise ChannelLost("channel closed")
        item = await self._inbox.get()
        if item is _CLOSED:
            self.closed = True
            raise ChannelLost("peer closed the channel")
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            await self._outbox.put(_CLOSED)


@dataclass(frozen=True)
class SessionOutcome:
    status: Literal["ended", "failed", "lost"]
    role: str
    session_id: str
    winner: str | None = None
    reason: str | None = None
    state: dict[str, Any] | None = None

    @property
    def return_to_lobby(self) -> bool:
        return self.status != "ended"


def first_playable_action(state: dict[str, Any], role: str) -> dict[str, Any]:
    candidates = playable_cards(state, role)
    if candidates:
        return {"type": "play", "card": candidates[0]}
    return {"type": "draw"}


class SessionRuntime:
    def __init__(
        self,
        role: str,
        session_id: str,
        channel: DirectChannel,
        choose_action: ChooseAction = first_playable_action,
        *,
        settings: BrokerSettings | None = None,
        seed: int | None = None,
        idle_timeout_s: float | None = None,
        tick_s: float = 0.1,
        supervisor: TimeoutSupervisor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.role = role
        self.session_id = session_id
        self.channel = channel
        self.choose_action = choose_action
        self.settings = settings if settings is not None else BrokerSettings()
        self.idle_timeout_s = idle_timeout_s if idle_timeout_s is not None else self.settings.idle_timeout_s
        self.tick_s = tick_s
        self.supervisor = supervisor
        self._clock = clock
        self.seed = seed if seed is not None else random.SystemRandom().randrange(2**31)

        def initial_state() -> dict[str, Any]:
            return build_initial_state(session_id=session_id, seed=self.seed)

        self.handshake = SessionHandshake(
            role,
            session_id,
            initial_state=initial_state if role == "host" else None,
            timeout_s=self.settings.handshake_timeout_s,
            ack_grace_s=self.settings.ack_grace_s,
            clock=clock,
        )
        self.authority: SessionAuthority | None = None

    async def run(self) -> SessionOutcome:
        try:
            if not await self._run_handshake():
                return SessionOutcome(
                    status="failed",
                    role=self.role,
                    session_id=self.session_id,
                    reason=str(self.handshake.failure),
                )
            await self._run_active()
        except ChannelLost as exc:
            logger.warning("session %s lost: %s", self.session_id, exc)
            return SessionOutcome(status="lost", role=self.role, session_id=self.session_id, reason=str(exc))
        finally:
            if self.supervisor is not None:
                self.supervisor.untrack_handshake(self.session_id)

        assert self.authority is not None
        return SessionOutcome(
            status="ended",
            role=self.role,
            session_id=self.session_id,
            winner=self.authority.winner,
            state=self.authority.state,
        )

    async def negotiate_rematch(self, accept: bool = True) -> "SessionRuntime | None":
        """Agree on a rematch with swapped roles, or return None.

        Not answering is the implicit decline; the peer gives up after the
        rematch bound.
        """
        authority = self.authority
        if authority is None or authority.phase is not SessionPhase.ENDED:
            return None
        if not accept:
            authority.decline_rematch()
            return None
        try:
            await self._send_all(authority.request_rematch())
            while authority.poll() is RematchState.REQUESTED:
                message = await self._receive(self.tick_s)
                if message is not None:
                    await self._send_all(authority.receive(message))
        except ChannelLost as exc:
            logger.warning("session %s: rematch aborted: %s", self.session_id, exc)
            return None
        if authority.rematch is not RematchState.ACCEPTED:
            return None
        logger.info("session %s: rematch accepted, new role %s", self.session_id, authority.next_role())
        return SessionRuntime(
            authority.next_role(),
            authority.next_session_id(),
            self.channel,
            self.choose_action,
            settings=self.settings,
            idle_timeout_s=self.idle_timeout_s,
            tick_s=self.tick_s,
            supervisor=self.supervisor,
            clock=self._clock,
        )

    async def _run_handshake(self) -> bool:
        if self.supervisor is not None:
            self.supervisor.track_handshake(self.handshake)
        await self._send_all(self.handshake.channel_opened())
        while self.handshake.poll() is HandshakePhase.HANDSHAKING:
            deadline = self.handshake.deadline
            remaining = self.tick_s if deadline is None else max(0.0, min(self.tick_s, deadline - self._clock()))
            message = await self._receive(remaining)
            if message is not None:
                await self._send_all(self.handshake.receive(message))
        return self.handshake.phase is HandshakePhase.ACTIVE

    async def _run_active(self) -> None:
        assert self.handshake.authoritative_state is not None
        authority = SessionAuthority(
            self.role,
            self.session_id,
            self.handshake.authoritative_state,
            rematch_timeout_s=self.settings.rematch_timeout_s,
            clock=self._clock,
        )
        self.authority = authority
        for early in self.handshake.early_messages:
            await self._send_all(authority.receive(early))

        seen_rejections = 0
        while authority.phase is SessionPhase.ACTIVE:
            if authority.my_turn and authority.pending_proposal is None:
                if len(authority.rejections) > seen_rejections:
                    seen_rejections = len(authority.rejections)
                    action: dict[str, Any] = {"type": "draw"}
                else:
                    action = self.choose_action(authority.state, self.role)
                try:
                    await self._send_all(authority.act(action))
                except ActionRejected as exc:
                    logger.info("session %s: local action rejected: %s", self.session_id, exc.reason)
                    await self._send_all(authority.act({"type": "draw"}))
                continue
            message = await self._receive(self.idle_timeout_s)
            if message is None:
                raise ChannelLost(f"peer silent for {self.idle_timeout_s}s")
            await self._send_all(authority.receive(message))

    async def _receive(self, timeout: float | None) -> BaseModel | None:
        """Next valid message, or None when ``timeout`` elapses first."""
        while True:
            try:
                raw = await asyncio.wait_for(self.channel.receive(), timeout)
            except asyncio.TimeoutError:
                return None
            try:
                return parse_message(raw)
            except ValidationError as exc:
                logger.warning("session %s: dropping malformed message: %s", self.session_id, exc)

    async def _send_all(self, messages: list[BaseModel]) -> None:
        for message in messages:
            await self.channel.send(dump_message(message))
