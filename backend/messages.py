"""Wire schemas for the game socket. Every frame is a JSON object tagged by ``type``."""

from typing import Annotated, Any, Literal, Optional, Union
import re

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator

import config

_TAG_RE = re.compile(r'<[^>]+>')
_CONTROL_RE = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')


def sanitize_name(v: str) -> str:
    v = _CONTROL_RE.sub('', v)
    v = _TAG_RE.sub('', v)
    return v.strip()


class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# --- Inbound ---

class JoinRoom(_Inbound):
    type: Literal["joinRoom"]
    room_id: str = Field(validation_alias=AliasChoices("roomId", "room_id"))
    display_name: str = Field("", validation_alias=AliasChoices("displayName", "name", "playerName"))
    persistent_identity: Optional[str] = Field(
        None, validation_alias=AliasChoices("persistentIdentity", "persistentPlayerId"))

    @field_validator('room_id')
    @classmethod
    def validate_room_id(cls, v: str) -> str:
        v = sanitize_name(v)
        if not v:
            raise ValueError('Room id is required')
        if len(v) > 64:
            raise ValueError('Room id is too long')
        return v

    @field_validator('display_name')
    @classmethod
    def validate_display_name(cls, v: str) -> str:
        v = sanitize_name(v)
        if len(v) > config.MAX_NAME_LENGTH:
            raise ValueError(f'Name must be at most {config.MAX_NAME_LENGTH} characters')
        return v

    @field_validator('persistent_identity')
    @classmethod
    def validate_identity(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v[:128] or None


class SetPlayerName(_Inbound):
    type: Literal["setPlayerName"]
    name: str

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = sanitize_name(v)
        if len(v) > config.MAX_NAME_LENGTH:
            raise ValueError(f'Name must be at most {config.MAX_NAME_LENGTH} characters')
        return v


class SetAvatar(_Inbound):
    type: Literal["setAvatar", "setEmoji"]
    avatar: str = Field(validation_alias=AliasChoices("avatar", "emoji"))

    @field_validator('avatar')
    @classmethod
    def validate_avatar(cls, v: str) -> str:
        return v.strip()[:config.MAX_AVATAR_LENGTH]


class TakeSeat(_Inbound):
    type: Literal["takeSeat"]
    seat_index: int = Field(validation_alias=AliasChoices("seatIndex", "seat_index"))


class StartGame(_Inbound):
    type: Literal["startGame"]
    room_id: Optional[str] = Field(None, validation_alias=AliasChoices("roomId", "room_id"))


class CallName(_Inbound):
    type: Literal["callName", "makeMove"]
    name: str = Field(validation_alias=AliasChoices("name", "calledNameValue"))


class LeaveRoom(_Inbound):
    type: Literal["leaveRoom"]


InboundMessage = Annotated[
    Union[JoinRoom, SetPlayerName, SetAvatar, TakeSeat, StartGame, CallName, LeaveRoom],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundMessage)


def parse_inbound(data: Any):
    """Validate a decoded frame. Raises pydantic.ValidationError on a bad shape."""
    return _inbound_adapter.validate_python(data)


# --- Outbound ---

class Outbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(by_alias=True)


class PlayerJoined(Outbound):
    type: Literal["playerJoined"] = "playerJoined"
    room: dict
    player: dict


class PlayerLeft(Outbound):
    type: Literal["playerLeft"] = "playerLeft"
    room: dict
    player_id: str = Field(serialization_alias="playerId")


class RoomUpdate(Outbound):
    type: Literal["roomUpdate"] = "roomUpdate"
    room: dict


class SeatTaken(Outbound):
    type: Literal["seatTaken"] = "seatTaken"
    room: dict


class PlayerNameChanged(Outbound):
    type: Literal["playerNameChanged"] = "playerNameChanged"
    room: dict
    player_id: str = Field(serialization_alias="playerId")
    name: str


class EmojiChanged(Outbound):
    type: Literal["emojiChanged"] = "emojiChanged"
    room: dict
    player_id: str = Field(serialization_alias="playerId")
    avatar: str


class GameStarted(Outbound):
    type: Literal["gameStarted"] = "gameStarted"
    room: dict


class NameCalled(Outbound):
    type: Literal["nameCalled"] = "nameCalled"
    caller_name: str = Field(serialization_alias="callerName")
    called_name: str = Field(serialization_alias="calledName")


class MoveMade(Outbound):
    type: Literal["moveMade"] = "moveMade"
    room: dict


class GameFinished(Outbound):
    type: Literal["gameFinished"] = "gameFinished"
    winner: str
    room: dict


class Kicked(Outbound):
    type: Literal["kicked"] = "kicked"
    message: str


class Error(Outbound):
    type: Literal["error"] = "error"
    message: str
