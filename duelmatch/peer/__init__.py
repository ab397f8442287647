"""Direct-channel session protocol run between two matched participants."""

from .engine import ActionResult, apply_action, is_extra_action
from .handshake import HandshakePhase, SessionHandshake
from .messages import dump_message, parse_message
from .runtime import DirectChannel, LoopbackChannel, SessionOutcome, SessionRuntime, first_playable_action
from .session import RematchState, SessionAuthority, SessionPhase
from .state import build_initial_state

__all__ = [
    "ActionResult",
    "apply_action",
    "build_initial_state",
    "DirectChannel",
    "dump_message",
    "first_playable_action",
    "HandshakePhase",
    "is_extra_action",
    "LoopbackChannel",
    "parse_message",
    "RematchState",
    "SessionAuthority",
    "SessionHandshake",
    "SessionOutcome",
    "SessionPhase",
    "SessionRuntime",
]
