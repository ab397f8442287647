"""Deterministic reducer for confirmed session actions.

Host and guest both run ``apply_action`` on the same authoritative state, so
turn order, the extra-action rule and the terminal condition are recomputed
on each side instead of being trusted from the wire.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from duelmatch.backend.errors import ActionRejected
from duelmatch.peer.state import RANKS, SUITS

ROLES = ("host", "guest")


@dataclass(frozen=True)
class ActionResult:
    state: dict[str, Any]
    events: list[dict[str, Any]]
    extra_action: bool
    next_turn: str
    winner: str | None


def other_role(role: str) -> str:
    return "guest" if role == "host" else "host"


def apply_action(state: dict[str, Any], actor: str, action: dict[str, Any]) -> ActionResult:
    """Validate and apply ``action`` by ``actor``. Raises ActionRejected."""
    if state.get("status") != "active":
        raise ActionRejected("session has ended")
    if actor not in ROLES:
        raise ActionRejected(f"unknown actor {actor!r}")
    if state.get("turn") != actor:
        raise ActionRejected("not your turn")

    action_type = str(action.get("type", "")).lower()
    if action_type == "play":
        return _apply_play(state=state, actor=actor, action=action)
    if action_type == "draw":
        return _apply_draw(state=state, actor=actor)
    raise ActionRejected(f"unknown action type {action_type!r}")


def is_extra_action(state: dict[str, Any], action: dict[str, Any]) -> bool:
    if str(action.get("type", "")).lower() != "play":
        return False
    card = _card_or_none(action.get("card"))
    return card is not None and card["rank"] == state.get("counter")


def is_playable(state: dict[str, Any], card: dict[str, Any]) -> bool:
    top = state["pile"][-1]
    return card["suit"] == top["suit"] or card["rank"] == top["rank"] or card["rank"] == state["counter"]


def playable_cards(state: dict[str, Any], role: str) -> list[dict[str, Any]]:
    return [card for card in state["hands"][role] if is_playable(state, card)]


def _card_or_none(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    suit = raw.get("suit")
    rank = raw.get("rank")
    if suit not in SUITS or isinstance(rank, bool) or not isinstance(rank, int) or rank not in RANKS:
        return None
    return {"suit": suit, "rank": rank}


def _advance_counter(counter: int) -> int:
    return RANKS[0] if counter >= RANKS[-1] else counter + 1


def _next_state(state: dict[str, Any], actor: str, action: dict[str, Any]) -> dict[str, Any]:
    next_state = dict(state)
    next_state["version"] = int(state.get("version", 1)) + 1
    next_state["counter"] = _advance_counter(int(state["counter"]))
    next_log = list(state.get("log", []))
    next_log.append({"actor": actor, "action": dict(action)})
    next_state["log"] = next_log
    return next_state


def _apply_play(state: dict[str, Any], actor: str, action: dict[str, Any]) -> ActionResult:
    card = _card_or_none(action.get("card"))
    if card is None:
        raise ActionRejected("malformed card")
    hand = list(state["hands"][actor])
    if card not in hand:
        raise ActionRejected("card not in hand")
    if not is_playable(state, card):
        raise ActionRejected("card does not match suit, rank or counter")

    extra_action = card["rank"] == state["counter"]
    hand.remove(card)

    next_state = _next_state(state, actor, {"type": "play", "card": card})
    hands = dict(state["hands"])
    hands[actor] = hand
    next_state["hands"] = hands
    next_state["pile"] = list(state["pile"]) + [card]
    next_state["passes"] = 0

    next_turn = actor if extra_action else other_role(actor)
    next_state["turn"] = next_turn
    events: list[dict[str, Any]] = [{"kind": "played", "actor": actor, "card": card, "extraAction": extra_action}]

    winner = None
    if not hand:
        winner = actor
        next_state["status"] = "ended"
        next_state["winner"] = winner
        events.append({"kind": "ended", "winner": winner})

    return ActionResult(
        state=next_state, events=events, extra_action=extra_action, next_turn=next_turn, winner=winner
    )


def _apply_draw(state: dict[str, Any], actor: str) -> ActionResult:
    next_state = _next_state(state, actor, {"type": "draw"})
    deck = list(state["deck"])
    events: list[dict[str, Any]]
    if deck:
        card = deck.pop(0)
        hands = dict(state["hands"])
        hands[actor] = list(state["hands"][actor]) + [card]
        next_state["hands"] = hands
        next_state["deck"] = deck
        next_state["passes"] = 0
        events = [{"kind": "drew", "actor": actor}]
    else:
        next_state["passes"] = int(state.get("passes", 0)) + 1
        events = [{"kind": "passed", "actor": actor}]

    next_turn = other_role(actor)
    next_state["turn"] = next_turn
    if next_state["passes"] >= 2:
        next_state["status"] = "ended"
        next_state["winner"] = None
        events.append({"kind": "ended", "winner": None})

    return ActionResult(state=next_state, events=events, extra_action=False, next_turn=next_turn, winner=None)
