"""Move definitions for Number Guesser."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Guess:
    """A player names the number they think was drawn."""

    number: int

    def to_dict(self) -> dict[str, Any]:
        return {"number": self.number}

    @classmethod
    def from_dict(cls, data: Any) -> "Guess":
        if not isinstance(data, dict) or "number" not in data:
            raise ValueError("A guess must look like {\"number\": <int>}.")
        number = data["number"]
        if isinstance(number, bool) or not isinstance(number, int):
            raise ValueError(f"Guess.number must be an integer; received {number!r}.")
        return cls(number=number)
