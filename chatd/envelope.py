"""Message catalogue for the chat protocol.

Each wire message is a JSON object with a ``type`` string and a fixed set of
further fields. Inbound records are decoded to a plain ``dict`` first and then
classified against the catalogue; only a record whose field set and values
match a variant exactly becomes that variant.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constants import VERSION_PATTERN


class Envelope(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, strict=True)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Greeting(Envelope):
    type: Literal["greeting"] = "greeting"
    version: str = Field(pattern=VERSION_PATTERN)
    # Any string is accepted here so the hub can decline with a useful reason.
    display_name: str = Field(alias="displayName")


class GreetingAccept(Envelope):
    type: Literal["greetingResponse"] = "greetingResponse"
    response: Literal["accept"] = "accept"


class GreetingDecline(Envelope):
    type: Literal["greetingResponse"] = "greetingResponse"
    response: Literal["decline"] = "decline"
    reason: str


class JoinRoom(Envelope):
    type: Literal["joinRoom"] = "joinRoom"
    name: str


class LeaveRoom(Envelope):
    type: Literal["leaveRoom"] = "leaveRoom"
    name: str


class RequestRoomList(Envelope):
    type: Literal["requestRoomList"] = "requestRoomList"


class RoomList(Envelope):
    type: Literal["roomList"] = "roomList"
    rooms: list[str]


class RequestRoomMemberList(Envelope):
    type: Literal["requestRoomMemberList"] = "requestRoomMemberList"
    name: str


class RoomMemberList(Envelope):
    type: Literal["roomMemberList"] = "roomMemberList"
    room: str
    members: list[str]


class Say(Envelope):
    type: Literal["say"] = "say"
    room: str
    message: str


class Said(Envelope):
    type: Literal["said"] = "said"
    room: str
    message: str
    sender: str


class Whisper(Envelope):
    type: Literal["whisper"] = "whisper"
    to: str
    message: str


class Whispered(Envelope):
    type: Literal["whispered"] = "whispered"
    to: str
    from_: str = Field(alias="from")
    message: str


class Disconnect(Envelope):
    type: Literal["disconnect"] = "disconnect"


class Success(Envelope):
    type: Literal["success"] = "success"
    message: str


class Error(Envelope):
    type: Literal["error"] = "error"
    message: str


class Notice(Envelope):
    type: Literal["notice"] = "notice"
    message: str


# Protocol order; classify() returns the first variant that matches.
CATALOGUE: tuple[type[Envelope], ...] = (
    Greeting,
    GreetingAccept,
    GreetingDecline,
    JoinRoom,
    RequestRoomList,
    RoomList,
    LeaveRoom,
    RequestRoomMemberList,
    RoomMemberList,
    Say,
    Said,
    Whisper,
    Whispered,
    Disconnect,
    Success,
    Error,
    Notice,
)


def _type_tag(variant: type[Envelope]) -> str:
    return variant.model_fields["type"].default


_BY_TYPE: dict[str, tuple[type[Envelope], ...]] = {}
for _variant in CATALOGUE:
    _BY_TYPE[_type_tag(_variant)] = _BY_TYPE.get(_type_tag(_variant), ()) + (_variant,)


def classify(record: Any) -> Envelope | None:
    """Return the first catalogue variant matching ``record``, or None."""
    if not isinstance(record, dict):
        return None

    t = record.get("type")
    if not isinstance(t, str):
        return None

    # Every variant pins its own type tag, so only same-tag candidates can match.
    for variant in _BY_TYPE.get(t, ()):
        try:
            return variant.model_validate(record)
        except ValidationError:
            continue
    return None


def make_envelope(msg: Envelope) -> dict[str, Any]:
    """Closed wire record for ``msg``, keyed by the on-wire field names."""
    return msg.to_record()


def make_whispered(to: str, sender: str, message: str) -> Whispered:
    return Whispered.model_validate({"to": to, "from": sender, "message": message})
