"""Matchmaking broker for two-participant sessions."""

from .broker import BrokerService, ChannelHub
from .config import BrokerSettings, load_settings
from .errors import ActionRejected, ChannelLost, DuelmatchError, DuplicateJoin, HandshakeTimeout, QueueTimeout
from .models import Assignment, HealthSnapshot, JoinResult, ParticipantRecord, SweepReport
from .pairing import PairingEngine
from .queue import QueueManager
from .security import generate_identity, generate_token
from .supervisor import TimeoutSupervisor

__all__ = [
    "ActionRejected",
    "Assignment",
    "BrokerService",
    "BrokerSettings",
    "ChannelHub",
    "ChannelLost",
    "DuelmatchError",
    "DuplicateJoin",
    "generate_identity",
    "generate_token",
    "HandshakeTimeout",
    "HealthSnapshot",
    "JoinResult",
    "load_settings",
    "PairingEngine",
    "ParticipantRecord",
    "QueueManager",
    "QueueTimeout",
    "SweepReport",
    "TimeoutSupervisor",
]
