"""Session model and the single event loop that owns it.

Every presentation intent and every operator command is queued and handled
one at a time by ``SessionHost``. A handler may suspend while it waits on the
engine, but no other handler starts until it finishes, so moves are applied
in the order they were accepted.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from .channel import Channel
from .config import HostConfig
from .engine import EngineAdapter, EngineLoader, EngineWorker, engine_loader_from_spec
from .errors import HostError, PermissionDeniedError, PhaseError, SeatingError
from .history import HistoryEntry, HistoryLog, InitialStateRecord, ReplayResult, require_turn
from .messages import (
    GameFinishedEvent,
    GameUpdateEvent,
    Intent,
    KeyMessage,
    MessageProcessedEvent,
    MoveMessage,
    ReadyMessage,
    SettingsUpdateEvent,
    StartMessage,
    UpdatePlayersMessage,
    UpdateSettingsMessage,
    UsersEvent,
    intent_from_dict,
)
from .player import Player, apply_seat_operations
from .presentation import PresentationFeed, PresentationOutlet
from .wire import structured_copy
from .snapshot import SnapshotData, reprocess_snapshot
from .update import GameState, GameUpdate, Move, SetupState

logger = logging.getLogger(__name__)

KEY_DIGITS = ("Digit1", "Digit2", "Digit3", "Digit4", "Digit5", "Digit6", "Digit7", "Digit8", "Digit9", "Digit0")


class SessionPhase(str, Enum):
    """Lifecycle of a hosted game."""

    NEW = "new"
    STARTED = "started"
    FINISHED = "finished"


def phase_for(game: GameState) -> SessionPhase:
    return SessionPhase.FINISHED if game.is_finished else SessionPhase.STARTED


def new_random_seed() -> str:
    return secrets.token_hex(8)


@dataclass
class Session:
    """The one authoritative in-memory session of a running game."""

    random_seed: str
    seat_count: int = 1
    phase: SessionPhase = SessionPhase.NEW
    settings: dict[str, Any] = field(default_factory=dict)
    players: list[Player] = field(default_factory=list)
    history: HistoryLog = field(default_factory=HistoryLog)
    history_pin: int | None = None
    initial_state: InitialStateRecord | None = None

    def player_for_user(self, user_id: str | None) -> Player | None:
        for player in self.players:
            if player.id == user_id:
                return player
        return None

    def player_at(self, position: int) -> Player | None:
        for player in self.players:
            if player.position == position:
                return player
        return None

    def current_update(self) -> GameUpdate | None:
        """State being shown: the pinned entry when time-travelling, else the latest."""
        return self.history.current_state(self.history_pin)

    def users(self) -> list[dict[str, Any]]:
        return [
            {
                "id": player.id,
                "name": player.name,
                "playerDetails": {
                    "color": player.color,
                    "position": player.position,
                    "ready": player.ready,
                    "settings": structured_copy(player.settings),
                },
            }
            for player in self.players
        ]

    def to_snapshot(self) -> SnapshotData:
        return SnapshotData(
            random_seed=self.random_seed,
            settings=structured_copy(self.settings),
            players=tuple(self.players),
            history=self.history.entries,
            initial_state=self.initial_state,
        )

    def apply_snapshot(self, data: SnapshotData) -> None:
        """Adopt a (re-derived) snapshot; the phase follows its last state."""
        self.random_seed = data.random_seed
        self.settings = structured_copy(data.settings)
        self.players = sorted(data.players, key=lambda player: player.position)
        self.seat_count = max(self.seat_count, len(self.players))
        self.initial_state = data.initial_state
        genesis = data.initial_state.update if data.initial_state is not None else None
        self.history = HistoryLog(genesis=genesis, entries=data.history)
        self.history_pin = None
        current = self.history.current_state()
        self.phase = phase_for(current.game) if current is not None else SessionPhase.NEW

    def summary(self) -> dict[str, Any]:
        current = self.current_update()
        return {
            "phase": self.phase.value,
            "randomSeed": self.random_seed,
            "settings": structured_copy(self.settings),
            "seatCount": self.seat_count,
            "players": [player.to_dict() for player in self.players],
            "history": [
                {"seq": entry.seq, "position": entry.position, "data": structured_copy(entry.move)}
                for entry in self.history
            ],
            "historyPin": self.history_pin,
            "game": current.game.to_dict() if current is not None else None,
        }


AutoSwitchPolicy = Callable[[Session, GameUpdate], "str | None"]


def follow_current_player(session: Session, update: GameUpdate) -> str | None:
    """Default auto-switch: show whoever moves next."""
    if update.game.is_finished or not update.game.current_players:
        return None
    player = session.player_at(update.game.current_players[0])
    return player.id if player is not None else None


_WorkItem = tuple[Callable[..., Awaitable[Any]], tuple[Any, ...], "asyncio.Future[Any]"]


class SessionHost:
    """Owns the session, the engine context and the presentation outlet."""

    def __init__(
        self,
        config: HostConfig | None = None,
        engine_loader: EngineLoader | None = None,
        *,
        random_seed: str | None = None,
        auto_switch_policy: AutoSwitchPolicy | None = follow_current_player,
    ):
        self.config = config or HostConfig()
        self.channel = Channel(call_timeout_sec=self.config.call_timeout_sec)
        self.engine_worker = EngineWorker(engine_loader or engine_loader_from_spec(self.config.engine))
        self.adapter = EngineAdapter(self.channel)
        self.feed = PresentationFeed()
        self.outlet = PresentationOutlet(self.channel, target=self.feed.name)
        self.session = Session(
            random_seed=random_seed or new_random_seed(),
            seat_count=self.config.initial_seat_count,
        )
        self.active_user_id = self.config.host_user_id
        self.view_override = False
        self.auto_switch_policy = auto_switch_policy
        self._queue: asyncio.Queue[_WorkItem | None] | None = None
        self._worker: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None

    async def start(self) -> None:
        if self._worker is not None:
            return
        await self.engine_worker.start()
        self.channel.attach(self.engine_worker)
        self.channel.attach(self.feed)
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run(), name="session-host")
        logger.info("Session host started (seed %s)", self.session.random_seed)

    async def stop(self) -> None:
        if self._worker is None or self._queue is None:
            return
        self._queue.put_nowait(None)
        await self._worker
        self._worker = None
        self._queue = None
        await self.channel.detach(self.engine_worker.name)
        await self.channel.detach(self.feed.name)
        logger.info("Session host stopped")

    async def __aenter__(self) -> "SessionHost":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def _submit(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        if self._queue is None:
            raise RuntimeError("Session host is not running.")
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((func, args, future))
        return await future

    async def _run(self) -> None:
        queue = self._queue
        assert queue is not None
        while True:
            item = await queue.get()
            if item is None:
                return
            func, args, future = item
            try:
                result = await func(*args)
            except Exception as exc:
                # Hand the failure back to whoever submitted the work item.
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)

    # Public API: every call is serialized through the event loop.

    async def dispatch(self, intent: Intent) -> MessageProcessedEvent | None:
        """Handle one presentation intent; returns its acknowledgment, if it gets one."""
        return await self._submit(self._handle_intent, intent)

    async def dispatch_payload(self, payload: Mapping[str, Any]) -> MessageProcessedEvent | None:
        return await self.dispatch(intent_from_dict(payload))

    async def view_history(self, k: int) -> None:
        await self._submit(self._view_history, k)

    async def revert_to(self, k: int) -> None:
        await self._submit(self._revert_to, k)

    async def reset_game(self) -> None:
        await self._submit(self._reset_game)

    async def reset_random_seed(self) -> str:
        return await self._submit(self._reset_random_seed)

    async def select_user(self, user_id: str) -> None:
        await self._submit(self._select_user, user_id)

    async def resend_view(self) -> None:
        await self._submit(self._send_current_view)

    async def reprocess(self) -> ReplayResult:
        """Rebuild the history by replaying every stored move from a fresh genesis."""
        return await self._submit(self._reprocess_snapshot, None)

    async def load_snapshot(self, data: SnapshotData) -> ReplayResult:
        return await self._submit(self._reprocess_snapshot, data)

    async def reload_engine(self) -> ReplayResult:
        """Tear down the engine context, rebuild it from its loader, then reprocess.

        Teardown happens immediately so a call in flight is rejected; the
        reprocess itself waits its turn behind work already queued.
        """
        await self.channel.detach(self.engine_worker.name)
        await self.engine_worker.start()
        self.channel.attach(self.engine_worker)
        return await self.reprocess()

    async def take_snapshot(self) -> SnapshotData:
        """Capture the session between work items, never halfway through one."""
        return await self._submit(self._take_snapshot)

    async def rederive(self, data: SnapshotData) -> SnapshotData:
        """Re-derive a stored snapshot with the current engine without adopting it."""
        return await self._submit(self._rederive, data)

    def describe(self) -> dict[str, Any]:
        payload = self.session.summary()
        payload["activeUserID"] = self.active_user_id
        payload["viewOverride"] = self.view_override
        return payload

    # Intent handling

    async def _handle_intent(self, intent: Intent) -> MessageProcessedEvent | None:
        if isinstance(intent, ReadyMessage):
            await self._send_current_view()
            return None
        if isinstance(intent, KeyMessage):
            await self._on_key(intent)
            return None

        try:
            if isinstance(intent, MoveMessage):
                await self._on_move(intent)
            elif isinstance(intent, UpdateSettingsMessage):
                self._on_update_settings(intent)
            elif isinstance(intent, UpdatePlayersMessage):
                self._on_update_players(intent)
            elif isinstance(intent, StartMessage):
                await self._on_start(intent)
            else:
                raise TypeError(f"Unsupported intent: {intent!r}")
        except HostError as exc:
            logger.warning("Rejected %s %s: %s", intent.message_type.value, intent.id, exc)
            ack = MessageProcessedEvent(id=intent.id, error=str(exc))
            self.outlet.push(ack)
            return ack

        ack = MessageProcessedEvent(id=intent.id)
        self.outlet.push(ack)
        if isinstance(intent, UpdateSettingsMessage):
            self._push_settings()
        elif isinstance(intent, UpdatePlayersMessage):
            self._push_users()
            await self._maybe_auto_start()
        else:
            await self._broadcast_view()
        return ack

    async def _on_move(self, intent: MoveMessage) -> None:
        session = self.session
        if session.phase is SessionPhase.NEW:
            raise PhaseError("The game has not started yet.")
        if session.phase is SessionPhase.FINISHED:
            raise PhaseError("The game is finished; no further moves are accepted.")
        if session.history_pin is not None:
            raise PhaseError("Moves are disabled while viewing history.")

        position = self._mover_position(intent)
        current = session.history.current_state()
        if current is None:
            raise PhaseError("The game has not started yet.")
        require_turn(current.game, position)

        update = await self.adapter.apply_move(current.game, Move(position=position, data=intent.data), session.random_seed)
        entry = HistoryEntry(
            seq=len(session.history),
            position=position,
            move=structured_copy(intent.data),
            update=update,
        )
        session.history.append(entry)
        session.phase = phase_for(update.game)
        logger.info("Accepted move %d from position %d", entry.seq, position)
        if session.phase is SessionPhase.FINISHED:
            logger.info("Game finished; winners %s", list(update.game.winners))
        self._apply_auto_switch(update)

    def _mover_position(self, intent: MoveMessage) -> int:
        session = self.session
        if intent.position is not None:
            actor = intent.user_id
            if actor is not None and actor != self.config.host_user_id:
                player = session.player_for_user(actor)
                if player is None or player.position != intent.position:
                    raise PermissionDeniedError(f"User {actor!r} cannot move for position {intent.position}.")
            return intent.position
        user_id = intent.user_id if intent.user_id is not None else self.active_user_id
        player = session.player_for_user(user_id)
        if player is None:
            raise SeatingError(f"User {user_id!r} is not seated.")
        return player.position

    def _apply_auto_switch(self, update: GameUpdate) -> None:
        if self.config.auto_switch and not self.view_override and self.auto_switch_policy is not None:
            user_id = self.auto_switch_policy(self.session, update)
            if user_id is not None:
                self.active_user_id = user_id
        self.view_override = False

    def _on_update_settings(self, intent: UpdateSettingsMessage) -> None:
        self._require_host(intent.user_id, "change settings")
        self._require_unstarted("Settings")
        if intent.seat_count is not None:
            if not self.config.min_players <= intent.seat_count <= self.config.max_players:
                raise SeatingError(
                    f"Seat count must be between {self.config.min_players} and {self.config.max_players}."
                )
            self.session.seat_count = intent.seat_count
        self.session.settings = structured_copy(intent.settings)

    def _on_update_players(self, intent: UpdatePlayersMessage) -> None:
        self._require_unstarted("Seats")
        session = self.session
        actor = intent.user_id if intent.user_id is not None else self.active_user_id
        host_id = self.config.host_user_id
        roster = apply_seat_operations(
            session.players,
            intent.operations,
            actor_id=actor,
            is_host=actor == host_id,
        )
        if len(roster) > self.config.max_players:
            raise SeatingError(f"At most {self.config.max_players} players may be seated.")
        seated_before = {player.id for player in session.players}
        session.players = [
            replace(player, ready=False) if player.id == host_id and player.id not in seated_before else player
            for player in roster
        ]

    async def _on_start(self, intent: StartMessage) -> None:
        self._require_host(intent.user_id, "start the game")
        self._require_unstarted("The game")
        self._check_startable()
        await self._start_game()

    async def _on_key(self, intent: KeyMessage) -> None:
        if intent.code not in KEY_DIGITS:
            return
        index = KEY_DIGITS.index(intent.code)
        if index >= len(self.session.players):
            return
        self.active_user_id = self.session.players[index].id
        self.view_override = True
        if self.session.phase is not SessionPhase.NEW:
            await self._broadcast_view()

    def _require_host(self, user_id: str | None, action: str) -> None:
        actor = user_id if user_id is not None else self.active_user_id
        if actor != self.config.host_user_id:
            raise PermissionDeniedError(f"Only the host may {action}.")

    def _require_unstarted(self, subject: str) -> None:
        if self.session.phase is not SessionPhase.NEW:
            raise PhaseError(f"{subject} can only change before the game starts.")

    def _check_startable(self) -> None:
        count = len(self.session.players)
        low, high = self.config.min_players, self.config.max_players
        if not low <= count <= high:
            raise SeatingError(f"Need between {low} and {high} seated players; {count} seated.")
        if self.config.require_ready:
            waiting = [player.name for player in self.session.players if not player.ready]
            if waiting:
                raise SeatingError(f"Waiting for players to be ready: {', '.join(waiting)}.")

    async def _start_game(self) -> None:
        session = self.session
        setup = SetupState(
            random_seed=session.random_seed,
            players=tuple(session.players),
            settings=structured_copy(session.settings),
        )
        genesis = await self.adapter.initialize(setup)
        session.initial_state = InitialStateRecord(update=genesis, players=setup.players, settings=setup.settings)
        session.history = HistoryLog(genesis=genesis)
        session.history_pin = None
        session.phase = phase_for(genesis.game)
        logger.info("Game started with %d player(s)", len(setup.players))

    async def _maybe_auto_start(self) -> None:
        session = self.session
        if not self.config.auto_start or session.phase is not SessionPhase.NEW:
            return
        if len(session.players) != session.seat_count:
            return
        try:
            self._check_startable()
            await self._start_game()
        except HostError as exc:
            logger.info("Not auto-starting: %s", exc)
            return
        await self._broadcast_view()

    # Operator commands

    def _require_game(self) -> None:
        if self.session.initial_state is None:
            raise PhaseError("No game is in progress.")

    async def _view_history(self, k: int) -> None:
        self._require_game()
        history = self.session.history
        history.check_index(k)
        self.session.history_pin = None if k == len(history) - 1 else k
        await self._broadcast_view()

    async def _revert_to(self, k: int) -> None:
        self._require_game()
        session = self.session
        session.history.truncate(k)
        session.history_pin = None
        current = session.history.current_state()
        if current is not None:
            session.phase = phase_for(current.game)
        logger.info("Reverted to seq %d; %d move(s) remain", k, len(session.history))
        await self._broadcast_view()

    async def _reset_game(self) -> None:
        self.session = Session(random_seed=self.session.random_seed, seat_count=self.config.initial_seat_count)
        self.active_user_id = self.config.host_user_id
        self.view_override = False
        logger.info("Game reset")
        await self._send_current_view()

    async def _reset_random_seed(self) -> str:
        self.session.random_seed = new_random_seed()
        await self._reset_game()
        return self.session.random_seed

    async def _select_user(self, user_id: str) -> None:
        self.active_user_id = user_id
        self.view_override = True
        if self.session.phase is not SessionPhase.NEW:
            await self._broadcast_view()

    async def _take_snapshot(self) -> SnapshotData:
        return self.session.to_snapshot()

    async def _rederive(self, data: SnapshotData) -> SnapshotData:
        derived, _ = await reprocess_snapshot(data, self.adapter)
        return derived

    async def _reprocess_snapshot(self, data: SnapshotData | None) -> ReplayResult:
        source = data if data is not None else self.session.to_snapshot()
        if len(source.players) > self.config.max_players:
            raise SeatingError(
                f"Snapshot seats {len(source.players)} players; at most {self.config.max_players} are allowed."
            )
        with self.outlet.paused():
            derived, result = await reprocess_snapshot(source, self.adapter)
            self.session.apply_snapshot(derived)
        if result.error is not None:
            logger.warning("Reprocess kept %d move(s): %s", len(result.entries), result.error)
        else:
            logger.info("Reprocessed %d move(s)", len(result.entries))
        await self._send_current_view()
        return result

    # Broadcasting

    async def _send_current_view(self) -> None:
        if self.session.phase is SessionPhase.NEW:
            self._push_settings()
            self._push_users()
            return
        await self._broadcast_view()

    def _push_settings(self) -> None:
        self.outlet.push(SettingsUpdateEvent(settings=structured_copy(self.session.settings), seat_count=self.session.seat_count))

    def _push_users(self) -> None:
        self.outlet.push(UsersEvent(users=tuple(self.session.users())))

    def _view_position(self, update: GameUpdate) -> int | None:
        player = self.session.player_for_user(self.active_user_id)
        if player is not None:
            return player.position
        if update.game.current_players:
            return update.game.current_players[0]
        if self.session.players:
            return self.session.players[0].position
        return None

    async def _broadcast_view(self) -> None:
        update = self.session.current_update()
        if update is None:
            return
        position = self._view_position(update)
        if position is None:
            return
        try:
            view = await self.adapter.project_view(update.game, position)
        except HostError as exc:
            logger.warning("Could not project view for position %d: %s", position, exc)
            return
        if update.game.is_finished:
            self.outlet.push(GameFinishedEvent(position=position, state=view, winners=update.game.winners))
        else:
            self.outlet.push(
                GameUpdateEvent(
                    position=position,
                    state=view,
                    current_players=update.game.current_players,
                    read_only=self.session.history_pin is not None,
                )
            )
