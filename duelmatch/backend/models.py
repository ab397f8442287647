"""Domain models for the queue, pairing results and broker responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Role = Literal["host", "guest"]


@dataclass(frozen=True)
class ParticipantRecord:
    identity: str
    enqueued_at: float
    last_seen: float
    sequence: int


@dataclass(frozen=True)
class Assignment:
    session_id: str
    host: str
    guest: str
    created_at: float

    def role_of(self, identity: str) -> Role:
        if identity == self.host:
            return "host"
        if identity == self.guest:
            return "guest"
        raise KeyError(identity)

    def peer_of(self, identity: str) -> str:
        return self.guest if self.role_of(identity) == "host" else self.host


@dataclass(frozen=True)
class QueueEvent:
    kind: str
    identity: str
    sequence: int
    at: float


@dataclass(frozen=True)
class EnqueueResult:
    status: Literal["ok", "already-queued"]
    record: ParticipantRecord


@dataclass(frozen=True)
class JoinResult:
    identity: str
    status: Literal["queued", "already-queued", "matched"]
    position: int | None
    assignment: Assignment | None = None


@dataclass(frozen=True)
class HealthSnapshot:
    queue_depth: int
    up_since: str


@dataclass(frozen=True)
class SweepReport:
    evicted: list[str] = field(default_factory=list)
    failed_handshakes: list[str] = field(default_factory=list)
    assignments: list[Assignment] = field(default_factory=list)
