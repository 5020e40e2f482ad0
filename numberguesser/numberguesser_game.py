"""Number Guesser engine: players take turns naming the seeded hidden number."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Mapping, Sequence

from sessionhost.engine import Engine
from sessionhost.update import GamePhase, GameState, GameUpdate, Move, NarrativeMessage, PlayerState

from .numberguesser_moves import Guess
from .numberguesser_state import NumberGuesserState, possible_guesses, target_number


class NumberGuesserEngine(Engine):
    """Seated players guess in position order; the first correct guess wins."""

    engine_name = "numberguesser"

    def initial_state(
        self,
        players: Sequence[Mapping[str, Any]],
        settings: Mapping[str, Any],
        random_seed: str,
    ) -> GameUpdate:
        if not players:
            raise ValueError("Number Guesser needs at least one player.")
        even_only = bool(settings.get("evenOnly", False))
        state = NumberGuesserState(
            players=tuple({"position": int(p["position"]), "name": p.get("name"), "color": p.get("color")} for p in players),
            number=target_number(random_seed, even_only),
            move=0,
            possible_guesses=possible_guesses(even_only),
        )
        first = state.positions()[0]
        return self._update(GameState(phase=GamePhase.STARTED, state=state.to_dict(), current_players=(first,)), state)

    def process_move(self, previous_state: GameState, move: Move, random_seed: str) -> GameUpdate:
        if previous_state.is_finished:
            raise ValueError("game is already finished")
        if move.position not in previous_state.current_players:
            raise ValueError("not your turn")
        state = NumberGuesserState.from_dict(previous_state.state)
        guess = Guess.from_dict(move.data)
        if guess.number not in state.possible_guesses:
            raise ValueError(f"{guess.number} is not one of the possible guesses")

        name = state.player_name(move.position)
        next_state = replace(state, move=state.move + 1)
        if guess.number == state.number:
            game = GameState(phase=GamePhase.FINISHED, state=next_state.to_dict(), winners=(move.position,))
            message = NarrativeMessage(body=f"{name} guessed {guess.number} and got it!", position=move.position)
            return self._update(game, next_state, message)

        positions = state.positions()
        following = positions[(positions.index(move.position) + 1) % len(positions)]
        game = GameState(phase=GamePhase.STARTED, state=next_state.to_dict(), current_players=(following,))
        message = NarrativeMessage(body=f"{name} guessed {guess.number}. Not it.", position=move.position)
        return self._update(game, next_state, message)

    def get_player_state(self, state: GameState, position: int) -> Any:
        return self._player_view(NumberGuesserState.from_dict(state.state))

    def _player_view(self, state: NumberGuesserState) -> dict[str, Any]:
        return {"possibleGuesses": list(state.possible_guesses), "move": state.move}

    def _update(self, game: GameState, state: NumberGuesserState, *messages: NarrativeMessage) -> GameUpdate:
        return GameUpdate(
            game=game,
            players=tuple(PlayerState(position=position, state=self._player_view(state)) for position in state.positions()),
            messages=messages,
        )
