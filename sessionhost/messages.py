"""Closed message unions for every direction of host traffic.

Three families cross context boundaries:

* engine requests (host -> engine) and their correlated responses,
* presentation intents (presentation -> host),
* presentation events (host -> presentation).

Every message serializes to a JSON object with a ``type`` discriminator.
Parsing goes through a single dispatch per family so an unknown ``type`` is
rejected at the boundary instead of deep inside a handler.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Mapping

from .player import PlayerOperation, operation_from_dict
from .wire import structured_copy
from .update import GameState, Move, SetupState


class EngineRequestType(str, Enum):
    """Calls the host makes into the engine context."""

    INITIAL_STATE = "initialState"
    PROCESS_MOVE = "processMove"
    GET_PLAYER_STATE = "getPlayerState"


@dataclass(frozen=True)
class InitialStateRequest:
    setup: SetupState
    message_type: ClassVar[EngineRequestType] = EngineRequestType.INITIAL_STATE

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.message_type.value, "setup": self.setup.to_dict()}


@dataclass(frozen=True)
class ProcessMoveRequest:
    previous_state: GameState
    move: Move
    random_seed: str
    message_type: ClassVar[EngineRequestType] = EngineRequestType.PROCESS_MOVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.message_type.value,
            "previousState": self.previous_state.to_dict(),
            "move": self.move.to_dict(),
            "rseed": self.random_seed,
        }


@dataclass(frozen=True)
class GetPlayerStateRequest:
    state: GameState
    position: int
    message_type: ClassVar[EngineRequestType] = EngineRequestType.GET_PLAYER_STATE

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.message_type.value, "state": self.state.to_dict(), "position": self.position}


EngineRequest = InitialStateRequest | ProcessMoveRequest | GetPlayerStateRequest


def result_type(request_type: str) -> str:
    """Return the response discriminator that answers a request discriminator."""
    return f"{request_type}Result"


@dataclass(frozen=True)
class ResponseMessage:
    """Correlated answer from a context: exactly one of ``result`` or ``error`` is meaningful."""

    type: str
    id: str
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "id": self.id, "state": structured_copy(self.result)}
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResponseMessage":
        error = data.get("error")
        return cls(
            type=str(data.get("type", "")),
            id=str(data["id"]),
            result=data.get("state"),
            error=str(error) if error is not None else None,
        )


class IntentType(str, Enum):
    """Messages the presentation sends to the host."""

    READY = "ready"
    MOVE = "move"
    UPDATE_SETTINGS = "updateSettings"
    UPDATE_PLAYERS = "updatePlayers"
    START = "start"
    KEY = "key"


@dataclass(frozen=True)
class ReadyMessage:
    user_id: str | None = None
    message_type: ClassVar[IntentType] = IntentType.READY


@dataclass(frozen=True)
class MoveMessage:
    id: str
    data: Any
    position: int | None = None
    user_id: str | None = None
    message_type: ClassVar[IntentType] = IntentType.MOVE


@dataclass(frozen=True)
class UpdateSettingsMessage:
    id: str
    settings: dict[str, Any]
    seat_count: int | None = None
    user_id: str | None = None
    message_type: ClassVar[IntentType] = IntentType.UPDATE_SETTINGS


@dataclass(frozen=True)
class UpdatePlayersMessage:
    id: str
    operations: tuple[PlayerOperation, ...]
    user_id: str | None = None
    message_type: ClassVar[IntentType] = IntentType.UPDATE_PLAYERS


@dataclass(frozen=True)
class StartMessage:
    id: str
    user_id: str | None = None
    message_type: ClassVar[IntentType] = IntentType.START


@dataclass(frozen=True)
class KeyMessage:
    code: str
    user_id: str | None = None
    message_type: ClassVar[IntentType] = IntentType.KEY


Intent = ReadyMessage | MoveMessage | UpdateSettingsMessage | UpdatePlayersMessage | StartMessage | KeyMessage


def intent_from_dict(data: Mapping[str, Any]) -> Intent:
    """Parse a presentation intent from its wire payload."""
    payload = structured_copy(dict(data))
    raw_type = payload.get("type")
    user_id = payload.get("userID")
    user_id = str(user_id) if user_id is not None else None
    try:
        intent_type = IntentType(raw_type)
    except ValueError as exc:
        raise ValueError(f"Unknown intent type: {raw_type!r}") from exc

    if intent_type is IntentType.READY:
        return ReadyMessage(user_id=user_id)
    if intent_type is IntentType.KEY:
        return KeyMessage(code=str(payload.get("code", "")), user_id=user_id)

    if "id" not in payload:
        raise ValueError(f"Intent {raw_type!r} requires an id.")
    intent_id = str(payload["id"])
    if intent_type is IntentType.MOVE:
        position = payload.get("position")
        return MoveMessage(
            id=intent_id,
            data=payload.get("data"),
            position=int(position) if position is not None else None,
            user_id=user_id,
        )
    if intent_type is IntentType.UPDATE_SETTINGS:
        seat_count = payload.get("seatCount")
        return UpdateSettingsMessage(
            id=intent_id,
            settings=dict(payload.get("settings") or {}),
            seat_count=int(seat_count) if seat_count is not None else None,
            user_id=user_id,
        )
    if intent_type is IntentType.UPDATE_PLAYERS:
        return UpdatePlayersMessage(
            id=intent_id,
            operations=tuple(operation_from_dict(item) for item in payload.get("operations", ())),
            user_id=user_id,
        )
    return StartMessage(id=intent_id, user_id=user_id)


class EventType(str, Enum):
    """Messages the host pushes to the presentation."""

    USERS = "users"
    SETTINGS_UPDATE = "settingsUpdate"
    GAME_UPDATE = "gameUpdate"
    GAME_FINISHED = "gameFinished"
    MESSAGE_PROCESSED = "messageProcessed"


@dataclass(frozen=True)
class UsersEvent:
    users: tuple[dict[str, Any], ...]
    message_type: ClassVar[EventType] = EventType.USERS

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.message_type.value, "users": structured_copy(list(self.users))}


@dataclass(frozen=True)
class SettingsUpdateEvent:
    settings: dict[str, Any]
    seat_count: int
    message_type: ClassVar[EventType] = EventType.SETTINGS_UPDATE

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.message_type.value, "settings": structured_copy(self.settings), "seatCount": self.seat_count}


@dataclass(frozen=True)
class GameUpdateEvent:
    position: int
    state: Any
    current_players: tuple[int, ...]
    read_only: bool = False
    message_type: ClassVar[EventType] = EventType.GAME_UPDATE

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.message_type.value,
            "position": self.position,
            "state": structured_copy(self.state),
            "currentPlayers": list(self.current_players),
            "readOnly": self.read_only,
        }


@dataclass(frozen=True)
class GameFinishedEvent:
    position: int
    state: Any
    winners: tuple[int, ...]
    message_type: ClassVar[EventType] = EventType.GAME_FINISHED

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.message_type.value,
            "position": self.position,
            "state": structured_copy(self.state),
            "winners": list(self.winners),
        }


@dataclass(frozen=True)
class MessageProcessedEvent:
    id: str
    error: str | None = None
    message_type: ClassVar[EventType] = EventType.MESSAGE_PROCESSED

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.message_type.value, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error
        return payload


PresentationEvent = UsersEvent | SettingsUpdateEvent | GameUpdateEvent | GameFinishedEvent | MessageProcessedEvent

