"""Engine-facing wire types: game state, per-player state, and game updates."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Self

from .player import Player
from .wire import digest, structured_copy


class GamePhase(str, Enum):
    """Phase reported by the engine for a running game."""

    STARTED = "started"
    FINISHED = "finished"


@dataclass(frozen=True)
class NarrativeMessage:
    """One narrative log line produced by the engine."""

    body: str
    position: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"body": self.body}
        if self.position is not None:
            payload["position"] = self.position
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        position = data.get("position")
        return cls(body=str(data.get("body", "")), position=int(position) if position is not None else None)


@dataclass(frozen=True)
class GameState:
    """Engine-owned game state plus the turn/winner information the host relies on."""

    phase: GamePhase
    state: Any
    current_players: tuple[int, ...] = ()
    winners: tuple[int, ...] = ()

    @property
    def is_finished(self) -> bool:
        return self.phase is GamePhase.FINISHED

    def to_dict(self) -> dict[str, Any]:
        """Return the wire shape; started and finished states carry different keys."""
        if self.is_finished:
            return {"phase": self.phase.value, "winners": list(self.winners), "state": structured_copy(self.state)}
        return {
            "phase": self.phase.value,
            "currentPlayers": list(self.current_players),
            "state": structured_copy(self.state),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        phase = GamePhase(str(data["phase"]))
        return cls(
            phase=phase,
            state=structured_copy(data.get("state")),
            current_players=tuple(int(position) for position in data.get("currentPlayers", ())),
            winners=tuple(int(position) for position in data.get("winners", ())),
        )


@dataclass(frozen=True)
class PlayerState:
    """Engine projection of the game for one seat."""

    position: int
    state: Any
    summary: str | None = None
    score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"position": self.position, "state": structured_copy(self.state)}
        if self.summary is not None:
            payload["summary"] = self.summary
        if self.score is not None:
            payload["score"] = self.score
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        score = data.get("score")
        return cls(
            position=int(data["position"]),
            state=structured_copy(data.get("state")),
            summary=data.get("summary"),
            score=float(score) if score is not None else None,
        )


@dataclass(frozen=True)
class GameUpdate:
    """Result of initializing a game or applying a move."""

    game: GameState
    players: tuple[PlayerState, ...] = ()
    messages: tuple[NarrativeMessage, ...] = field(default_factory=tuple)

    def player_state(self, position: int) -> PlayerState | None:
        for player_state in self.players:
            if player_state.position == position:
                return player_state
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "game": self.game.to_dict(),
            "players": [player.to_dict() for player in self.players],
            "messages": [message.to_dict() for message in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            game=GameState.from_dict(data["game"]),
            players=tuple(PlayerState.from_dict(item) for item in data.get("players", ())),
            messages=tuple(NarrativeMessage.from_dict(item) for item in data.get("messages", ())),
        )

    def update_digest(self) -> str:
        """Return a deterministic digest used to compare replays."""
        return digest(self.to_dict())


@dataclass(frozen=True)
class Move:
    """A move as submitted to the engine: the mover's seat plus opaque data."""

    position: int
    data: Any

    def to_dict(self) -> dict[str, Any]:
        return {"position": self.position, "data": structured_copy(self.data)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(position=int(data["position"]), data=structured_copy(data.get("data")))


@dataclass(frozen=True)
class SetupState:
    """Everything the engine needs to build the genesis state."""

    random_seed: str
    players: tuple[Player, ...]
    settings: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "randomSeed": self.random_seed,
            "players": [player.engine_view() for player in self.players],
            "settings": structured_copy(self.settings),
        }
