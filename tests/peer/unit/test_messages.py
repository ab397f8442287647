import pytest
from pydantic import ValidationError

from duelmatch.peer.messages import (
    BootstrapState,
    ConfirmedAction,
    ProposedAction,
    Ready,
    RematchAccept,
    dump_message,
    parse_message,
)


def test_parse_message_picks_model_from_type() -> None:
    assert isinstance(parse_message({"type": "ready"}), Ready)
    assert isinstance(parse_message({"type": "rematchAccept"}), RematchAccept)

    bootstrap = parse_message({"type": "bootstrapState", "session_id": "s", "authoritative_state": {"turn": "host"}})
    assert isinstance(bootstrap, BootstrapState)
    assert bootstrap.authoritative_state == {"turn": "host"}


def test_confirmed_action_carries_sequence_actor_and_next_turn() -> None:
    message = ConfirmedAction(seq=3, actor="guest", payload={"type": "draw"}, next_turn="host")

    dumped = dump_message(message)

    assert dumped == {
        "type": "confirmedAction",
        "seq": 3,
        "actor": "guest",
        "payload": {"type": "draw"},
        "next_turn": "host",
    }
    assert parse_message(dumped) == message


@pytest.mark.parametrize(
    "raw",
    [
        {"type": "unknown"},
        {"payload": {}},
        {"type": "confirmedAction", "seq": 0, "actor": "host", "payload": {}, "next_turn": "guest"},
        {"type": "confirmedAction", "seq": 1, "actor": "referee", "payload": {}, "next_turn": "guest"},
        {"type": "proposedAction"},
    ],
)
def test_parse_message_rejects_malformed_input(raw: dict) -> None:
    with pytest.raises(ValidationError):
        parse_message(raw)


def test_proposed_action_defaults_type() -> None:
    assert ProposedAction(payload={"type": "draw"}).type == "proposedAction"
