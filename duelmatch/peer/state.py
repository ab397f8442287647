"""State builders for the authoritative session snapshot."""

from __future__ import annotations

import random
from datetime import datetime, timezone
from typing import Any

SUITS = ("sun", "moon", "star", "wave")
RANKS = tuple(range(1, 10))
HAND_SIZE = 6


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_deck(seed: int, rng: random.Random | None = None) -> list[dict[str, Any]]:
    rng = rng if rng is not None else random.Random(seed)
    deck = [{"suit": suit, "rank": rank} for suit in SUITS for rank in RANKS]
    rng.shuffle(deck)
    return deck


def build_initial_state(session_id: str, seed: int, hand_size: int = HAND_SIZE) -> dict[str, Any]:
    """Return the host's initial authoritative state.

    Cards are dealt alternately, host first, then one card opens the pile.
    The starting counter is drawn from the same seeded generator so the whole
    snapshot is reproducible from ``seed``.
    """
    rng = random.Random(seed)
    deck = build_deck(seed, rng)
    hands: dict[str, list[dict[str, Any]]] = {"host": [], "guest": []}
    for _ in range(hand_size):
        hands["host"].append(deck.pop(0))
        hands["guest"].append(deck.pop(0))
    pile = [deck.pop(0)]
    counter = rng.choice(RANKS)
    return {
        "sessionId": session_id,
        "version": 1,
        "status": "active",
        "turn": "host",
        "counter": counter,
        "pile": pile,
        "deck": deck,
        "hands": hands,
        "passes": 0,
        "winner": None,
        "log": [],
        "meta": {
            "seed": seed,
            "createdAt": _utc_now_iso(),
        },
    }
