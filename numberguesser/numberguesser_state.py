"""State model for Number Guesser."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Mapping

LOWEST_NUMBER = 1
HIGHEST_NUMBER = 10


def possible_guesses(even_only: bool) -> tuple[int, ...]:
    numbers = range(LOWEST_NUMBER, HIGHEST_NUMBER + 1)
    return tuple(number for number in numbers if not even_only or number % 2 == 0)


def target_number(random_seed: str, even_only: bool) -> int:
    """Draw the hidden number; the same seed and settings always draw the same number."""
    return random.Random(random_seed).choice(possible_guesses(even_only))


@dataclass(frozen=True)
class NumberGuesserState:
    """Engine-owned game data. `number` never leaves the engine in a player view."""

    players: tuple[dict[str, Any], ...]
    number: int
    move: int
    possible_guesses: tuple[int, ...]

    def positions(self) -> list[int]:
        return sorted(int(player["position"]) for player in self.players)

    def player_name(self, position: int) -> str:
        for player in self.players:
            if int(player["position"]) == position:
                return str(player.get("name") or f"Player {position}")
        return f"Player {position}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "players": [dict(player) for player in self.players],
            "number": self.number,
            "move": self.move,
            "possibleGuesses": list(self.possible_guesses),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NumberGuesserState":
        return cls(
            players=tuple(dict(player) for player in data.get("players", ())),
            number=int(data["number"]),
            move=int(data.get("move", 0)),
            possible_guesses=tuple(int(number) for number in data.get("possibleGuesses", ())),
        )
