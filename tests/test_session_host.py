"""End-to-end session host behavior against the Number Guesser engine."""

from __future__ import annotations

import asyncio
from collections import Counter

import pytest

from numberguesser.numberguesser_game import NumberGuesserEngine
from numberguesser.numberguesser_state import target_number
from sessionhost.config import HostConfig
from sessionhost.errors import SeatingError
from sessionhost.events import NoticeType
from sessionhost.messages import KeyMessage, MoveMessage, ReadyMessage
from sessionhost.player import Player
from sessionhost.reload import ReloadCoordinator
from sessionhost.session import SessionHost, SessionPhase
from sessionhost.snapshot import SnapshotData, SnapshotStore

SEED = "scenario-seed"
HOST = "0"
TARGET = target_number(SEED, False)
MISSES = [number for number in range(1, 11) if number != TARGET]


def _seat(position: int, user_id: str, name: str) -> dict:
    return {"type": "seat", "position": position, "userID": user_id, "name": name, "color": "#d50000"}


async def _host(loader=NumberGuesserEngine, **overrides) -> SessionHost:
    config = HostConfig(call_timeout_sec=5.0, **overrides)
    host = SessionHost(config, loader, random_seed=SEED)
    await host.start()
    return host


async def _seated_host(loader=NumberGuesserEngine, **overrides) -> SessionHost:
    host = await _host(loader, **overrides)
    ack = await host.dispatch_payload(
        {"type": "updatePlayers", "id": "seat", "userID": HOST, "operations": [_seat(1, "1", "Ada"), _seat(2, "2", "Bo")]}
    )
    assert ack is not None and ack.error is None
    return host


async def _started_host(loader=NumberGuesserEngine, **overrides) -> SessionHost:
    host = await _seated_host(loader, **overrides)
    ack = await host.dispatch_payload({"type": "start", "id": "start", "userID": HOST})
    assert ack is not None and ack.error is None
    return host


def _move(intent_id: str, position: int, number: int) -> MoveMessage:
    return MoveMessage(id=intent_id, data={"number": number}, position=position)


def test_number_guesser_scenario_start_move_finish_revert() -> None:
    async def scenario() -> None:
        host = await _seated_host()
        try:
            ack = await host.dispatch_payload(
                {"type": "updateSettings", "id": "settings", "userID": HOST, "settings": {"evenOnly": False}}
            )
            assert ack is not None and ack.error is None
            await host.dispatch_payload({"type": "start", "id": "start", "userID": HOST})
            session = host.session
            assert session.phase is SessionPhase.STARTED
            assert len(session.history) == 0
            assert session.current_update().game.current_players == (1,)

            ack = await host.dispatch(_move("m1", 1, MISSES[0]))
            assert ack is not None and ack.error is None
            assert len(session.history) == 1
            assert session.history[0].seq == 0
            assert session.current_update().game.current_players == (2,)
            after_first_move = session.current_update()

            await host.dispatch(_move("m2", 2, TARGET))
            assert session.phase is SessionPhase.FINISHED
            assert session.current_update().game.winners == (2,)
            finished = host.feed.of_type("gameFinished")
            assert finished[-1]["winners"] == [2]

            ack = await host.dispatch(_move("m3", 1, TARGET))
            assert ack is not None and ack.error is not None
            assert len(session.history) == 2

            await host.revert_to(0)
            assert len(session.history) == 1
            assert session.current_update() == after_first_move
            assert session.phase is SessionPhase.STARTED
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_engine_reload_that_rejects_first_move_falls_back_to_new() -> None:
    class _StricterEngine(NumberGuesserEngine):
        def process_move(self, previous_state, move, random_seed):
            if move.data.get("number") == MISSES[0]:
                raise ValueError(f"{MISSES[0]} is no longer allowed")
            return super().process_move(previous_state, move, random_seed)

    loads: list[str] = []

    def loader() -> NumberGuesserEngine:
        loads.append("load")
        return NumberGuesserEngine() if len(loads) == 1 else _StricterEngine()

    async def scenario() -> None:
        host = await _started_host(loader)
        coordinator = ReloadCoordinator(host)
        try:
            await host.dispatch(_move("m1", 1, MISSES[0]))
            assert len(host.session.history) == 1

            notice = await coordinator.handle_signal({"type": "reload", "target": "engine"})
            assert notice is not None
            assert notice.notice_type is NoticeType.REPLAY_HALTED
            assert notice.payload["index"] == 0
            assert coordinator.banner is notice

            assert len(host.session.history) == 0
            assert host.session.phase is SessionPhase.NEW
            assert host.session.initial_state is None
            assert [player.id for player in host.session.players] == ["1", "2"]
            assert host.feed.events[-1]["type"] == "users"
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_engine_reload_keeps_prefix_that_still_replays() -> None:
    class _StricterEngine(NumberGuesserEngine):
        def process_move(self, previous_state, move, random_seed):
            if move.data.get("number") == MISSES[1]:
                raise ValueError("rule change")
            return super().process_move(previous_state, move, random_seed)

    loads: list[str] = []

    def loader() -> NumberGuesserEngine:
        loads.append("load")
        return NumberGuesserEngine() if len(loads) == 1 else _StricterEngine()

    async def scenario() -> None:
        host = await _started_host(loader)
        try:
            await host.dispatch(_move("m1", 1, MISSES[0]))
            await host.dispatch(_move("m2", 2, MISSES[1]))
            await host.dispatch(_move("m3", 1, MISSES[2]))
            kept = host.session.history[0].update

            result = await host.reload_engine()
            assert result.error is not None
            assert result.error.index == 1
            assert len(host.session.history) == 1
            assert host.session.history[0].update == kept
            assert host.session.phase is SessionPhase.STARTED
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_reprocess_with_unchanged_engine_reproduces_history() -> None:
    async def scenario() -> None:
        host = await _started_host()
        try:
            await host.dispatch(_move("m1", 1, MISSES[0]))
            await host.dispatch(_move("m2", 2, MISSES[1]))
            before = [entry.update.update_digest() for entry in host.session.history]
            events_before = len(host.feed.events)

            result = await host.reprocess()
            assert not result.halted
            assert [entry.update.update_digest() for entry in host.session.history] == before
            assert len(host.feed.events) == events_before + 1
            assert host.outlet.dropped == 0
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_move_out_of_turn_is_rejected_and_not_appended() -> None:
    async def scenario() -> None:
        host = await _started_host()
        try:
            ack = await host.dispatch(_move("early", 2, TARGET))
            assert ack is not None
            assert ack.error is not None and ack.error.startswith("Not your turn")
            assert len(host.session.history) == 0
            assert host.session.phase is SessionPhase.STARTED
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_engine_rejection_is_acked_and_leaves_session_unchanged() -> None:
    async def scenario() -> None:
        host = await _started_host()
        try:
            ack = await host.dispatch(_move("bad", 1, 99))
            assert ack is not None
            assert ack.error is not None and "not one of the possible guesses" in ack.error
            assert len(host.session.history) == 0
            assert host.session.current_update().game.current_players == (1,)
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_every_acknowledged_intent_gets_exactly_one_ack() -> None:
    async def scenario() -> None:
        host = await _seated_host()
        try:
            intents = [
                {"type": "move", "id": "too-early", "position": 1, "data": {"number": 1}},
                {"type": "updateSettings", "id": "not-host", "userID": "1", "settings": {}},
                {"type": "start", "id": "go", "userID": HOST},
                {"type": "start", "id": "again", "userID": HOST},
                {"type": "move", "id": "miss", "position": 1, "data": {"number": MISSES[0]}},
                {"type": "move", "id": "illegal", "position": 2, "data": {"number": 42}},
                {"type": "updatePlayers", "id": "late-seat", "userID": HOST, "operations": [_seat(3, "3", "Cy")]},
            ]
            for payload in intents:
                await host.dispatch_payload(payload)

            acks = host.feed.of_type("messageProcessed")
            counts = Counter(event["id"] for event in acks)
            expected_ids = ["seat"] + [payload["id"] for payload in intents]
            assert dict(counts) == {intent_id: 1 for intent_id in expected_ids}
            errors = {event["id"]: event.get("error") for event in acks}
            assert errors["go"] is None
            assert errors["miss"] is None
            for failed in ("too-early", "not-host", "again", "illegal", "late-seat"):
                assert errors[failed]
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_move_ack_precedes_game_update() -> None:
    async def scenario() -> None:
        host = await _started_host()
        try:
            offset = len(host.feed.events)
            await host.dispatch(_move("m1", 1, MISSES[0]))
            types = [event["type"] for event in host.feed.since(offset)]
            assert types == ["messageProcessed", "gameUpdate"]
            update = host.feed.events[-1]
            assert update["currentPlayers"] == [2]
            assert "number" not in update["state"]
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_seat_batch_is_atomic_and_privileged() -> None:
    async def scenario() -> None:
        host = await _seated_host()
        try:
            ack = await host.dispatch_payload(
                {
                    "type": "updatePlayers",
                    "id": "clash",
                    "userID": HOST,
                    "operations": [_seat(3, "3", "Cy"), _seat(3, "4", "Di")],
                }
            )
            assert ack is not None and ack.error is not None
            assert [player.id for player in host.session.players] == ["1", "2"]

            ack = await host.dispatch_payload(
                {
                    "type": "updatePlayers",
                    "id": "reserve",
                    "userID": "1",
                    "operations": [{"type": "reserve", "position": 5, "name": "Bot", "color": "#000000"}],
                }
            )
            assert ack is not None and ack.error is not None and "host" in ack.error

            ack = await host.dispatch_payload(
                {
                    "type": "updatePlayers",
                    "id": "rename",
                    "userID": "1",
                    "operations": [{"type": "update", "userID": "1", "name": "Ada L."}],
                }
            )
            assert ack is not None and ack.error is None
            assert host.session.player_for_user("1").name == "Ada L."
            users = host.feed.of_type("users")[-1]["users"]
            assert users[0]["playerDetails"]["position"] == 1
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_host_seat_starts_not_ready_and_gates_start() -> None:
    async def scenario() -> None:
        host = await _host()
        try:
            await host.dispatch_payload(
                {"type": "updatePlayers", "id": "seat", "userID": HOST, "operations": [_seat(1, HOST, "Host"), _seat(2, "2", "Bo")]}
            )
            assert host.session.player_for_user(HOST).ready is False

            ack = await host.dispatch_payload({"type": "start", "id": "blocked", "userID": HOST})
            assert ack is not None and ack.error is not None and "ready" in ack.error
            assert host.session.phase is SessionPhase.NEW

            await host.dispatch_payload(
                {"type": "updatePlayers", "id": "ready", "userID": HOST, "operations": [{"type": "update", "userID": HOST, "ready": True}]}
            )
            ack = await host.dispatch_payload({"type": "start", "id": "go", "userID": HOST})
            assert ack is not None and ack.error is None
            assert host.session.phase is SessionPhase.STARTED
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_player_count_bounds_gate_start() -> None:
    async def scenario() -> None:
        host = await _seated_host(min_players=3, max_players=4)
        try:
            ack = await host.dispatch_payload({"type": "start", "id": "go", "userID": HOST})
            assert ack is not None and ack.error is not None and "between 3 and 4" in ack.error
            assert host.session.phase is SessionPhase.NEW
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_auto_start_once_seats_fill() -> None:
    async def scenario() -> None:
        host = await _host(auto_start=True)
        try:
            await host.dispatch_payload({"type": "updateSettings", "id": "s", "userID": HOST, "settings": {}, "seatCount": 2})
            await host.dispatch_payload({"type": "updatePlayers", "id": "p1", "userID": HOST, "operations": [_seat(1, "1", "Ada")]})
            assert host.session.phase is SessionPhase.NEW
            await host.dispatch_payload({"type": "updatePlayers", "id": "p2", "userID": HOST, "operations": [_seat(2, "2", "Bo")]})
            assert host.session.phase is SessionPhase.STARTED
            assert host.feed.events[-1]["type"] == "gameUpdate"
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_auto_switch_follows_current_player_unless_overridden() -> None:
    async def scenario() -> None:
        host = await _started_host()
        try:
            assert host.active_user_id == HOST
            await host.dispatch(_move("m1", 1, MISSES[0]))
            assert host.active_user_id == "2"

            await host.dispatch(KeyMessage(code="Digit1"))
            assert host.active_user_id == "1"
            assert host.view_override is True

            await host.dispatch(_move("m2", 2, MISSES[1]))
            assert host.active_user_id == "1"
            assert host.view_override is False

            await host.dispatch(_move("m3", 1, MISSES[2]))
            assert host.active_user_id == "2"

            await host.dispatch(KeyMessage(code="KeyQ"))
            assert host.active_user_id == "2"
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_auto_switch_can_be_disabled() -> None:
    async def scenario() -> None:
        host = await _started_host(auto_switch=False)
        try:
            await host.dispatch(_move("m1", 1, MISSES[0]))
            assert host.active_user_id == HOST
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_mover_defaults_to_active_user_seat() -> None:
    async def scenario() -> None:
        host = await _started_host()
        try:
            await host.select_user("1")
            ack = await host.dispatch(MoveMessage(id="implicit", data={"number": MISSES[0]}))
            assert ack is not None and ack.error is None
            assert host.session.history[0].position == 1

            ack = await host.dispatch(MoveMessage(id="impostor", data={"number": MISSES[1]}, position=2, user_id="1"))
            assert ack is not None and ack.error is not None
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_view_history_is_read_only_until_unpinned() -> None:
    async def scenario() -> None:
        host = await _started_host()
        try:
            await host.dispatch(_move("m1", 1, MISSES[0]))
            await host.dispatch(_move("m2", 2, MISSES[1]))

            await host.view_history(0)
            assert host.session.history_pin == 0
            assert host.feed.events[-1]["readOnly"] is True
            assert host.feed.events[-1]["currentPlayers"] == [2]

            ack = await host.dispatch(_move("m3", 1, MISSES[2]))
            assert ack is not None and ack.error is not None
            assert len(host.session.history) == 2

            await host.view_history(1)
            assert host.session.history_pin is None
            assert host.feed.events[-1]["readOnly"] is False

            await host.view_history(-1)
            assert host.session.history_pin == -1
            assert host.feed.events[-1]["currentPlayers"] == [1]
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_reset_game_and_reset_seed() -> None:
    async def scenario() -> None:
        host = await _started_host()
        try:
            await host.dispatch(_move("m1", 1, MISSES[0]))
            await host.reset_game()
            assert host.session.phase is SessionPhase.NEW
            assert host.session.players == []
            assert len(host.session.history) == 0
            assert host.session.random_seed == SEED
            assert host.active_user_id == HOST

            seed = await host.reset_random_seed()
            assert seed != SEED
            assert host.session.random_seed == seed
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_ready_intent_sends_lobby_then_game_view() -> None:
    async def scenario() -> None:
        host = await _seated_host()
        try:
            offset = len(host.feed.events)
            assert await host.dispatch(ReadyMessage()) is None
            assert [event["type"] for event in host.feed.since(offset)] == ["settingsUpdate", "users"]

            await host.dispatch_payload({"type": "start", "id": "start", "userID": HOST})
            offset = len(host.feed.events)
            await host.dispatch(ReadyMessage())
            assert [event["type"] for event in host.feed.since(offset)] == ["gameUpdate"]
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_snapshot_save_and_load_replays_moves(tmp_path) -> None:
    async def scenario() -> None:
        host = await _started_host()
        coordinator = ReloadCoordinator(host, SnapshotStore(tmp_path))
        try:
            await host.dispatch(_move("m1", 1, MISSES[0]))
            await host.dispatch(_move("m2", 2, MISSES[1]))
            await coordinator.save_snapshot("checkpoint")
            saved = [entry.update for entry in host.session.history]

            await host.reset_game()
            assert host.session.phase is SessionPhase.NEW

            result, notice = await coordinator.load_snapshot("checkpoint")
            assert not result.halted
            assert notice.notice_type is NoticeType.RELOADED
            assert [entry.update for entry in host.session.history] == saved
            assert host.session.phase is SessionPhase.STARTED
            assert host.session.random_seed == SEED
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_build_error_banner_clears_on_presentation_reload() -> None:
    async def scenario() -> None:
        host = await _started_host()
        coordinator = ReloadCoordinator(host)
        try:
            notice = await coordinator.handle_signal({"type": "buildError", "out": "", "err": "SyntaxError: oops"})
            assert notice is not None and notice.notice_type is NoticeType.BUILD_ERROR
            assert coordinator.banner is notice

            assert await coordinator.handle_signal({"type": "ping"}) is None

            offset = len(host.feed.events)
            await coordinator.handle_signal({"type": "reload", "target": "presentation"})
            assert coordinator.banner is None
            assert [event["type"] for event in host.feed.since(offset)] == ["gameUpdate"]
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_unencodable_engine_view_does_not_stop_the_engine() -> None:
    class _NanViewEngine(NumberGuesserEngine):
        def get_player_state(self, state, position):
            return {"score": float("nan")}

    async def scenario() -> None:
        host = await _started_host(_NanViewEngine)
        try:
            ack = await host.dispatch(_move("m1", 1, MISSES[0]))
            assert ack is not None and ack.error is None
            ack = await host.dispatch(_move("m2", 2, MISSES[1]))
            assert ack is not None and ack.error is None
            assert len(host.session.history) == 2
            assert host.feed.of_type("gameUpdate") == []
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_malformed_engine_update_is_acked_as_rejection() -> None:
    class _NoGame:
        def to_dict(self):
            return {"players": []}

    class _MalformedEngine(NumberGuesserEngine):
        def process_move(self, previous_state, move, random_seed):
            return _NoGame()

    async def scenario() -> None:
        host = await _started_host(_MalformedEngine)
        try:
            ack = await host.dispatch(_move("m1", 1, MISSES[0]))
            assert ack is not None
            assert ack.error is not None and ack.error.startswith("Malformed engine update")
            assert len(host.session.history) == 0
            assert [event["id"] for event in host.feed.of_type("messageProcessed")].count("m1") == 1
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_snapshot_waits_for_the_move_in_flight() -> None:
    async def scenario() -> None:
        host = await _started_host()
        try:
            move = asyncio.create_task(host.dispatch(_move("m1", 1, MISSES[0])))
            await asyncio.sleep(0)
            snapshot = await host.take_snapshot()
            ack = await move
            assert ack is not None and ack.error is None
            assert len(snapshot.history) == 1
            assert snapshot.history[0].update == host.session.history[0].update
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_rederive_leaves_the_session_alone() -> None:
    async def scenario() -> None:
        host = await _started_host()
        try:
            await host.dispatch(_move("m1", 1, MISSES[0]))
            snapshot = await host.take_snapshot()
            await host.reset_game()

            derived = await host.rederive(snapshot)
            assert len(derived.history) == 1
            assert derived.history[0].update == snapshot.history[0].update
            assert host.session.phase is SessionPhase.NEW
            assert len(host.session.history) == 0
        finally:
            await host.stop()

    asyncio.run(scenario())


def test_snapshot_with_too_many_players_is_refused() -> None:
    crowd = tuple(Player(id=str(position), position=position, name=f"P{position}", color="#d50000") for position in (1, 2, 3))

    async def scenario() -> None:
        host = await _host(max_players=2)
        try:
            with pytest.raises(SeatingError, match="at most 2"):
                await host.load_snapshot(SnapshotData(random_seed=SEED, players=crowd))
            assert host.session.players == []
            assert host.session.seat_count <= 2
        finally:
            await host.stop()

    asyncio.run(scenario())
