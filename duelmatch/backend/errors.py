"""Error taxonomy shared by the broker and the peer protocol.

Every failure resolves to a "return to find match" outcome for the
participant. None of these errors is allowed to take down the broker.
"""

from __future__ import annotations


class DuelmatchError(Exception):
    """Base class for all matchmaking and session errors."""


class QueueTimeout(DuelmatchError):
    """A participant waited longer than the queue bound. Recover by re-joining."""

    def __init__(self, identity: str, waited_s: float) -> None:
        self.identity = identity
        self.waited_s = waited_s
        super().__init__(f"Identity {identity} timed out after {waited_s:.1f}s in queue")


class HandshakeTimeout(DuelmatchError):
    """The direct channel or the bootstrap never completed. Recover by re-joining."""

    def __init__(self, session_id: str, elapsed_s: float) -> None:
        self.session_id = session_id
        self.elapsed_s = elapsed_s
        super().__init__(f"Handshake for session {session_id} timed out after {elapsed_s:.1f}s")


class ActionRejected(DuelmatchError):
    """The host refused a proposed action. Non-fatal."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class ChannelLost(DuelmatchError):
    """The direct channel went away mid-session. Terminal for that session."""


class DuplicateJoin(DuelmatchError):
    """Identity is already queued.

    Only used to describe the idempotent no-op; join never raises it.
    """

    def __init__(self, identity: str) -> None:
        self.identity = identity
        super().__init__(f"Identity {identity} is already queued")
