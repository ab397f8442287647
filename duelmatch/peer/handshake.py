"""Handshake run by both peers after the broker matched them.

Both sides send ``ready`` once the direct channel is open. When the host has
seen both ready signals it sends the authoritative initial state. The guest
applies it, becomes active and acknowledges. The host becomes active on the
acknowledgment or, if the ack is lost, after a short grace period.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel

from duelmatch.backend.errors import HandshakeTimeout
from duelmatch.peer.messages import BootstrapAck, BootstrapState, ConfirmedAction, Ready

logger = logging.getLogger(__name__)


class HandshakePhase(str, Enum):
    IDLE = "idle"
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    FAILED = "failed"


class SessionHandshake:
    def __init__(
        self,
        role: str,
        session_id: str,
        *,
        initial_state: Callable[[], dict[str, Any]] | None = None,
        timeout_s: float = 15.0,
        ack_grace_s: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if role == "host" and initial_state is None:
            raise ValueError("host handshake needs an initial_state factory")
        self.role = role
        self.session_id = session_id
        self.phase = HandshakePhase.IDLE
        self.timeout_s = timeout_s
        self.ack_grace_s = ack_grace_s
        self.authoritative_state: dict[str, Any] | None = None
        self.acknowledged = False
        self.failure: HandshakeTimeout | None = None
        self.early_messages: list[ConfirmedAction] = []
        self._initial_state = initial_state
        self._clock = clock
        self._started_at: float | None = None
        self._ready_sent = False
        self._peer_ready = False
        self._bootstrap_sent_at: float | None = None

    @property
    def pending(self) -> bool:
        return self.phase in (HandshakePhase.IDLE, HandshakePhase.HANDSHAKING)

    @property
    def deadline(self) -> float | None:
        if self._started_at is None:
            return None
        return self._started_at + self.timeout_s

    def start(self) -> None:
        if self.phase is HandshakePhase.IDLE:
            self.phase = HandshakePhase.HANDSHAKING
            self._started_at = self._clock()

    def channel_opened(self) -> list[BaseModel]:
        self.start()
        if self.phase is not HandshakePhase.HANDSHAKING or self._ready_sent:
            return []
        self._ready_sent = True
        return [Ready(), *self._maybe_bootstrap()]

    def receive(self, message: BaseModel) -> list[BaseModel]:
        if self.phase is HandshakePhase.FAILED:
            return []
        if isinstance(message, Ready):
            self._peer_ready = True
            return self._maybe_bootstrap()
        if isinstance(message, BootstrapState) and self.role == "guest":
            return self._apply_bootstrap(message)
        if isinstance(message, BootstrapAck) and self.role == "host":
            if self._bootstrap_sent_at is not None:
                self.acknowledged = True
                self._activate()
            return []
        if isinstance(message, ConfirmedAction) and self.phase is not HandshakePhase.ACTIVE:
            self.early_messages.append(message)
            return []
        logger.debug("handshake %s ignoring %s in %s", self.session_id, message.type, self.phase.value)
        return []

    def poll(self, now: float | None = None) -> HandshakePhase:
        """Apply the host's ack grace period and the handshake timeout."""
        now = self._clock() if now is None else now
        if (
            self.phase is HandshakePhase.HANDSHAKING
            and self._bootstrap_sent_at is not None
            and now - self._bootstrap_sent_at >= self.ack_grace_s
        ):
            logger.info("handshake %s: no ack after %.1fs, activating", self.session_id, self.ack_grace_s)
            self._activate()
        self.expire(now)
        return self.phase

    def expire(self, now: float | None = None) -> bool:
        if self.phase is not HandshakePhase.HANDSHAKING or self._started_at is None:
            return False
        now = self._clock() if now is None else now
        elapsed = now - self._started_at
        if elapsed <= self.timeout_s:
            return False
        self.phase = HandshakePhase.FAILED
        self.failure = HandshakeTimeout(self.session_id, elapsed)
        logger.warning("handshake %s failed: %s", self.session_id, self.failure)
        return True

    def _maybe_bootstrap(self) -> list[BaseModel]:
        if self.role != "host" or not (self._ready_sent and self._peer_ready):
            return []
        if self._bootstrap_sent_at is not None:
            return []
        assert self._initial_state is not None
        self.authoritative_state = self._initial_state()
        self._bootstrap_sent_at = self._clock()
        return [BootstrapState(session_id=self.session_id, authoritative_state=self.authoritative_state)]

    def _apply_bootstrap(self, message: BootstrapState) -> list[BaseModel]:
        if message.session_id != self.session_id:
            logger.warning("bootstrap for %s ignored in session %s", message.session_id, self.session_id)
            return []
        if self.phase is HandshakePhase.ACTIVE:
            # duplicate bootstrap, re-acknowledge
            return [BootstrapAck(session_id=self.session_id)]
        self.start()
        self.authoritative_state = message.authoritative_state
        self._activate()
        return [BootstrapAck(session_id=self.session_id)]

    def _activate(self) -> None:
        if self.phase is HandshakePhase.HANDSHAKING:
            self.phase = HandshakePhase.ACTIVE
            logger.info("handshake %s active as %s", self.session_id, self.role)
