"""Configuration helpers for the broker runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class BrokerSettings:
    host: str = "127.0.0.1"
    port: int = 8000
    queue_timeout_s: float = 120.0
    handshake_timeout_s: float = 15.0
    sweep_interval_s: float = 10.0
    ack_grace_s: float = 3.0
    rematch_timeout_s: float = 15.0
    idle_timeout_s: float = 30.0
    liveness_timeout_s: float | None = None
    history_size: int = 1000


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return float(raw)


def load_settings() -> BrokerSettings:
    liveness_raw = os.getenv("DUELMATCH_LIVENESS_TIMEOUT")
    return BrokerSettings(
        host=os.getenv("DUELMATCH_HOST", "127.0.0.1"),
        port=int(os.getenv("DUELMATCH_PORT", "8000")),
        queue_timeout_s=_float_env("DUELMATCH_QUEUE_TIMEOUT", 120.0),
        handshake_timeout_s=_float_env("DUELMATCH_HANDSHAKE_TIMEOUT", 15.0),
        sweep_interval_s=_float_env("DUELMATCH_SWEEP_INTERVAL", 10.0),
        ack_grace_s=_float_env("DUELMATCH_ACK_GRACE", 3.0),
        rematch_timeout_s=_float_env("DUELMATCH_REMATCH_TIMEOUT", 15.0),
        idle_timeout_s=_float_env("DUELMATCH_IDLE_TIMEOUT", 30.0),
        liveness_timeout_s=float(liveness_raw) if liveness_raw else None,
        history_size=int(os.getenv("DUELMATCH_HISTORY_SIZE", "1000")),
    )
