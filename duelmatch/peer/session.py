"""Host-authoritative state machine for an active session.

Only the host validates actions and originates new authoritative state. The
guest proposes actions and replays the host's confirmations through the same
reducer, so the extra-action rule and the winner are computed locally on both
sides.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel

from duelmatch.backend.errors import ActionRejected, ChannelLost
from duelmatch.peer.engine import ActionResult, apply_action, other_role
from duelmatch.peer.messages import (
    ActionRejectedNotice,
    ConfirmedAction,
    ProposedAction,
    RematchAccept,
    RematchRequest,
)

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


class RematchState(str, Enum):
    NONE = "none"
    REQUESTED = "requested"
    OFFERED = "offered"
    ACCEPTED = "accepted"
    DECLINED = "declined"


def rematch_session_id(session_id: str) -> str:
    base, marker, count = session_id.rpartition("#r")
    if marker and count.isdigit():
        return f"{base}#r{int(count) + 1}"
    return f"{session_id}#r1"


class SessionAuthority:
    def __init__(
        self,
        role: str,
        session_id: str,
        state: dict[str, Any],
        *,
        rematch_timeout_s: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.role = role
        self.session_id = session_id
        self.state = state
        self.phase = SessionPhase.ACTIVE if state.get("status") == "active" else SessionPhase.ENDED
        self.seq = 0
        self.pending_proposal: dict[str, Any] | None = None
        self.rejections: list[str] = []
        self.events: list[dict[str, Any]] = []
        self.desyncs = 0
        self.rematch = RematchState.NONE
        self.rematch_timeout_s = rematch_timeout_s
        self._clock = clock
        self._buffer: dict[int, ConfirmedAction] = {}
        self._rematch_since: float | None = None
        self._early_rematch_request = False

    @property
    def turn(self) -> str:
        return self.state["turn"]

    @property
    def winner(self) -> str | None:
        return self.state.get("winner")

    @property
    def my_turn(self) -> bool:
        return self.phase is SessionPhase.ACTIVE and self.turn == self.role

    def act(self, action: dict[str, Any]) -> list[BaseModel]:
        """Local player's action: confirmed directly on the host, proposed on the guest."""
        if self.phase is SessionPhase.ENDED:
            raise ActionRejected("session has ended")
        if self.role == "host":
            return [self._confirm("host", action)]
        if self.turn != "guest":
            raise ActionRejected("not your turn")
        if self.pending_proposal is not None:
            raise ActionRejected("a proposal is already pending")
        self.pending_proposal = dict(action)
        return [ProposedAction(payload=dict(action))]

    def receive(self, message: BaseModel) -> list[BaseModel]:
        if isinstance(message, ProposedAction):
            return self._on_proposed(message)
        if isinstance(message, ConfirmedAction):
            return self._on_confirmed(message)
        if isinstance(message, ActionRejectedNotice):
            if self.role == "guest":
                self.pending_proposal = None
                self.rejections.append(message.reason)
                logger.info("session %s: proposal rejected: %s", self.session_id, message.reason)
            return []
        if isinstance(message, RematchRequest):
            return self._on_rematch_request()
        if isinstance(message, RematchAccept):
            if self.rematch is RematchState.REQUESTED:
                self.rematch = RematchState.ACCEPTED
            return []
        logger.debug("session %s ignoring %s", self.session_id, getattr(message, "type", message))
        return []

    def request_rematch(self) -> list[BaseModel]:
        if self.phase is not SessionPhase.ENDED:
            raise ActionRejected("session still active")
        if self.rematch is RematchState.OFFERED:
            return self.accept_rematch()
        if self.rematch is not RematchState.NONE:
            return []
        self.rematch = RematchState.REQUESTED
        self._rematch_since = self._clock()
        return [RematchRequest()]

    def accept_rematch(self) -> list[BaseModel]:
        if self.rematch is not RematchState.OFFERED:
            return []
        self.rematch = RematchState.ACCEPTED
        return [RematchAccept()]

    def decline_rematch(self) -> None:
        if self.rematch in (RematchState.OFFERED, RematchState.REQUESTED):
            self.rematch = RematchState.DECLINED

    def poll(self, now: float | None = None) -> RematchState:
        now = self._clock() if now is None else now
        if (
            self.rematch in (RematchState.REQUESTED, RematchState.OFFERED)
            and self._rematch_since is not None
            and now - self._rematch_since > self.rematch_timeout_s
        ):
            logger.info("session %s: rematch not answered, declining", self.session_id)
            self.rematch = RematchState.DECLINED
        return self.rematch

    def next_role(self) -> str:
        return other_role(self.role)

    def next_session_id(self) -> str:
        return rematch_session_id(self.session_id)

    def _on_proposed(self, message: ProposedAction) -> list[BaseModel]:
        if self.role != "host":
            logger.warning("session %s: guest received a proposal, ignoring", self.session_id)
            return []
        try:
            return [self._confirm("guest", message.payload)]
        except ActionRejected as exc:
            logger.info("session %s: rejected guest action: %s", self.session_id, exc.reason)
            return [ActionRejectedNotice(reason=exc.reason)]

    def _confirm(self, actor: str, action: dict[str, Any]) -> ConfirmedAction:
        result = apply_action(self.state, actor, action)
        self.seq += 1
        self._applied(result)
        return ConfirmedAction(seq=self.seq, actor=actor, payload=dict(action), next_turn=result.next_turn)

    def _on_confirmed(self, message: ConfirmedAction) -> list[BaseModel]:
        if self.role != "guest":
            logger.warning("session %s: host received a confirmation, ignoring", self.session_id)
            return []
        if message.seq <= self.seq:
            return []
        self._buffer[message.seq] = message
        while self.seq + 1 in self._buffer:
            confirmed = self._buffer.pop(self.seq + 1)
            try:
                result = apply_action(self.state, confirmed.actor, confirmed.payload)
            except ActionRejected as exc:
                raise ChannelLost(
                    f"session {self.session_id}: confirmed action {confirmed.seq} does not replay: {exc.reason}"
                ) from exc
            if result.next_turn != confirmed.next_turn:
                self.desyncs += 1
                logger.warning(
                    "session %s: peer announced next turn %s, replay says %s",
                    self.session_id,
                    confirmed.next_turn,
                    result.next_turn,
                )
            self.seq = confirmed.seq
            if confirmed.actor == "guest":
                self.pending_proposal = None
            self._applied(result)
        return []

    def _on_rematch_request(self) -> list[BaseModel]:
        if self.phase is not SessionPhase.ENDED:
            # offered once our side has seen the final action too
            logger.debug("session %s: rematch request before end, keeping it", self.session_id)
            self._early_rematch_request = True
            return []
        if self.rematch is RematchState.REQUESTED:
            # both asked at once
            self.rematch = RematchState.ACCEPTED
            return [RematchAccept()]
        if self.rematch is RematchState.NONE:
            self.rematch = RematchState.OFFERED
            self._rematch_since = self._clock()
        return []

    def _applied(self, result: ActionResult) -> None:
        self.state = result.state
        self.events.extend(result.events)
        if self.state.get("status") == "ended" and self.phase is SessionPhase.ACTIVE:
            self.phase = SessionPhase.ENDED
            logger.info("session %s ended, winner=%s", self.session_id, self.winner)
            if self._early_rematch_request and self.rematch is RematchState.NONE:
                self.rematch = RematchState.OFFERED
                self._rematch_since = self._clock()
