"""History log invariants and replay semantics."""

from __future__ import annotations

import asyncio

import pytest

from numberguesser.numberguesser_game import NumberGuesserEngine
from numberguesser.numberguesser_state import target_number
from sessionhost.engine import running_engine
from sessionhost.errors import EngineRejectedError, HistoryRangeError, PhaseError
from sessionhost.history import HistoryEntry, HistoryLog, replay
from sessionhost.player import Player
from sessionhost.update import GamePhase, GameState, GameUpdate, Move, SetupState


def _update(step: int, *, current: tuple[int, ...] = (1,), finished: bool = False) -> GameUpdate:
    if finished:
        return GameUpdate(game=GameState(phase=GamePhase.FINISHED, state={"step": step}, winners=current))
    return GameUpdate(game=GameState(phase=GamePhase.STARTED, state={"step": step}, current_players=current))


def _log(length: int) -> HistoryLog:
    log = HistoryLog(genesis=_update(-1))
    for seq in range(length):
        log.append(HistoryEntry(seq=seq, position=1, move={"n": seq}, update=_update(seq)))
    return log


class _ScriptedAdapter:
    """Counts steps and rejects any move whose data says so."""

    def __init__(self) -> None:
        self.calls = 0

    async def apply_move(self, previous_state: GameState, move: Move, random_seed: str) -> GameUpdate:
        self.calls += 1
        if move.data.get("reject"):
            raise EngineRejectedError("rules changed")
        return _update(previous_state.state["step"] + 1)


def test_append_requires_contiguous_seq() -> None:
    log = _log(2)
    with pytest.raises(ValueError):
        log.append(HistoryEntry(seq=5, position=1, move={}, update=_update(5)))
    assert [entry.seq for entry in log] == [0, 1]


def test_append_is_refused_once_finished() -> None:
    log = _log(1)
    log.append(HistoryEntry(seq=1, position=1, move={}, update=_update(1, finished=True)))
    with pytest.raises(PhaseError):
        log.append(HistoryEntry(seq=2, position=1, move={}, update=_update(2)))
    assert len(log) == 2


def test_truncate_then_current_state_matches_kept_entry() -> None:
    log = _log(4)
    kept = log[1].update
    log.truncate(1)
    assert len(log) == 2
    assert log.current_state() == kept
    assert all(entry.seq <= 1 for entry in log)


def test_truncate_to_genesis_empties_log() -> None:
    log = _log(3)
    log.truncate(-1)
    assert len(log) == 0
    assert log.current_state() == log.genesis


def test_truncate_rejects_out_of_range_index() -> None:
    log = _log(2)
    with pytest.raises(HistoryRangeError):
        log.truncate(2)
    with pytest.raises(HistoryRangeError):
        log.truncate(-2)


def test_current_state_honors_pin() -> None:
    log = _log(3)
    assert log.current_state(0) == log[0].update
    assert log.current_state(-1) == log.genesis
    assert log.current_state() == log[2].update
    assert HistoryLog().current_state() is None


def test_entry_accepts_legacy_move_key() -> None:
    entry = HistoryEntry.from_dict({"seq": 0, "position": 2, "move": {"number": 4}, "state": _update(0).to_dict()})
    assert entry.move == {"number": 4}
    assert entry.to_dict()["data"] == {"number": 4}


def test_replay_halts_at_first_failure_and_keeps_prefix() -> None:
    adapter = _ScriptedAdapter()
    moves = [
        Move(position=1, data={}),
        Move(position=1, data={}),
        Move(position=1, data={"reject": True}),
        Move(position=1, data={}),
    ]
    result = asyncio.run(replay(_update(0), moves, adapter, "seed"))

    assert result.halted
    assert result.error is not None
    assert result.error.index == 2
    assert "rules changed" in result.error.reason
    assert [entry.seq for entry in result.entries] == [0, 1]
    assert adapter.calls == 3


def test_replay_applies_turn_guard() -> None:
    result = asyncio.run(replay(_update(0, current=(1,)), [Move(position=2, data={})], _ScriptedAdapter(), "seed"))
    assert result.error is not None
    assert result.error.index == 0
    assert "Not your turn" in result.error.reason
    assert result.entries == ()


def test_replay_is_deterministic_for_fixed_inputs() -> None:
    seed = "replay-seed"
    misses = [number for number in range(1, 11) if number != target_number(seed, False)]
    players = (
        Player(id="1", position=1, name="Ada", color="#d50000"),
        Player(id="2", position=2, name="Bo", color="#00695c"),
    )
    moves = [Move(position=1, data={"number": misses[0]}), Move(position=2, data={"number": misses[1]})]

    async def scenario() -> tuple[list[str], list[str]]:
        async with running_engine(NumberGuesserEngine) as adapter:
            setup = SetupState(random_seed=seed, players=players, settings={})
            first = await replay(await adapter.initialize(setup), moves, adapter, seed)
            second = await replay(await adapter.initialize(setup), moves, adapter, seed)
        return (
            [entry.update.update_digest() for entry in first.entries],
            [entry.update.update_digest() for entry in second.entries],
        )

    first, second = asyncio.run(scenario())
    assert len(first) == 2
    assert first == second
