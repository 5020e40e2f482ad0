"""Append-only history log with time travel and deterministic replay."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Self, Sequence

from .errors import HistoryRangeError, HostError, NotYourTurnError, PhaseError, ReplayHaltedError
from .player import Player
from .wire import structured_copy
from .update import GameState, GameUpdate, Move

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    """One accepted move and the engine update it produced."""

    seq: int
    position: int
    move: Any
    update: GameUpdate

    @property
    def state(self) -> GameState:
        return self.update.game

    @property
    def messages(self):
        return self.update.messages

    def as_move(self) -> Move:
        return Move(position=self.position, data=structured_copy(self.move))

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "position": self.position,
            "data": structured_copy(self.move),
            "state": self.update.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        move = data["data"] if "data" in data else data.get("move")
        return cls(
            seq=int(data["seq"]),
            position=int(data["position"]),
            move=structured_copy(move),
            update=GameUpdate.from_dict(data["state"]),
        )


@dataclass(frozen=True)
class InitialStateRecord:
    """Genesis snapshot: the state before any move, plus who played and how."""

    update: GameUpdate
    players: tuple[Player, ...]
    settings: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.update.to_dict(),
            "players": [player.to_dict() for player in self.players],
            "settings": structured_copy(self.settings),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            update=GameUpdate.from_dict(data["state"]),
            players=tuple(Player.from_dict(item) for item in data.get("players", ())),
            settings=dict(data.get("settings") or {}),
        )


def require_turn(game: GameState, position: int) -> None:
    """Raise unless ``position`` may move against ``game``."""
    if game.is_finished:
        raise PhaseError("The game is finished; no further moves are accepted.")
    if position not in game.current_players:
        raise NotYourTurnError(position, list(game.current_players))


class HistoryLog:
    """Ordered moves addressed by 0-based ``seq``; removal only from the tail."""

    def __init__(self, genesis: GameUpdate | None = None, entries: Sequence[HistoryEntry] = ()):
        self.genesis = genesis
        self._entries: list[HistoryEntry] = []
        for entry in entries:
            self.append(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self._entries)

    def __getitem__(self, seq: int) -> HistoryEntry:
        return self._entries[seq]

    @property
    def entries(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._entries)

    def append(self, entry: HistoryEntry) -> None:
        if entry.seq != len(self._entries):
            raise ValueError(f"History entry seq {entry.seq} does not follow length {len(self._entries)}.")
        current = self.current_state()
        if current is not None and current.game.is_finished:
            raise PhaseError("The game is finished; no further moves are accepted.")
        self._entries.append(entry)

    def truncate(self, k: int) -> None:
        """Drop every entry with ``seq > k``; ``k = -1`` empties the log."""
        self.check_index(k)
        del self._entries[k + 1 :]

    def check_index(self, k: int) -> None:
        if k < -1 or k >= len(self._entries):
            raise HistoryRangeError(k, len(self._entries))

    def current_state(self, pin: int | None = None) -> GameUpdate | None:
        if pin is not None and 0 <= pin < len(self._entries):
            return self._entries[pin].update
        if pin == -1 or not self._entries:
            return self.genesis
        return self._entries[-1].update

    def moves(self) -> list[Move]:
        return [entry.as_move() for entry in self._entries]


@dataclass(frozen=True)
class ReplayResult:
    """Successfully replayed prefix, plus the error that stopped replay (if any)."""

    entries: tuple[HistoryEntry, ...]
    error: ReplayHaltedError | None = None

    @property
    def halted(self) -> bool:
        return self.error is not None


async def replay(genesis: GameUpdate, moves: Sequence[Move], adapter: Any, random_seed: str) -> ReplayResult:
    """Re-apply ``moves`` from ``genesis``, stopping at the first failure.

    The prefix before the failing move is kept; later moves are not attempted.
    """
    entries: list[HistoryEntry] = []
    current = genesis
    for index, move in enumerate(moves):
        try:
            require_turn(current.game, move.position)
            current = await adapter.apply_move(current.game, move, random_seed)
        except HostError as exc:
            error = ReplayHaltedError(index, str(exc))
            logger.warning("%s (%d move(s) kept)", error, len(entries))
            return ReplayResult(entries=tuple(entries), error=error)
        entries.append(HistoryEntry(seq=index, position=move.position, move=structured_copy(move.data), update=current))
    return ReplayResult(entries=tuple(entries))
