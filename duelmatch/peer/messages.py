"""Messages exchanged over the direct peer channel."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

Role = Literal["host", "guest"]


class Ready(BaseModel):
    type: Literal["ready"] = "ready"


class BootstrapState(BaseModel):
    type: Literal["bootstrapState"] = "bootstrapState"
    session_id: str
    authoritative_state: dict[str, Any]


class BootstrapAck(BaseModel):
    type: Literal["bootstrapAck"] = "bootstrapAck"
    session_id: str


class ProposedAction(BaseModel):
    type: Literal["proposedAction"] = "proposedAction"
    payload: dict[str, Any]


class ConfirmedAction(BaseModel):
    type: Literal["confirmedAction"] = "confirmedAction"
    seq: int = Field(ge=1)
    actor: Role
    payload: dict[str, Any]
    next_turn: Role


class ActionRejectedNotice(BaseModel):
    type: Literal["actionRejected"] = "actionRejected"
    reason: str


class RematchRequest(BaseModel):
    type: Literal["rematchRequest"] = "rematchRequest"


class RematchAccept(BaseModel):
    type: Literal["rematchAccept"] = "rematchAccept"


DirectMessage = Annotated[
    Union[
        Ready,
        BootstrapState,
        BootstrapAck,
        ProposedAction,
        ConfirmedAction,
        ActionRejectedNotice,
        RematchRequest,
        RematchAccept,
    ],
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter[DirectMessage] = TypeAdapter(DirectMessage)


def parse_message(data: dict[str, Any]) -> DirectMessage:
    """Validate a raw JSON object into a typed message. Raises pydantic.ValidationError."""
    return _message_adapter.validate_python(data)


def dump_message(message: BaseModel) -> dict[str, Any]:
    return message.model_dump()
