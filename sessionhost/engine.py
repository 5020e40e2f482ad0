"""Engine interface, the engine context that hosts it, and the host-side adapter."""

from __future__ import annotations

import asyncio
import importlib
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Mapping, Sequence

from .channel import Channel, Context
from .errors import ContextClosedError, EngineRejectedError, SessionConfigurationError
from .messages import (
    EngineRequestType,
    GetPlayerStateRequest,
    InitialStateRequest,
    ProcessMoveRequest,
    ResponseMessage,
    result_type,
)
from .wire import encode, decode
from .update import GameState, GameUpdate, Move, SetupState

logger = logging.getLogger(__name__)

ENGINE_CONTEXT = "engine"


class Engine(ABC):
    """Pure rules evaluator. Implementations must not keep state between calls."""

    engine_name: str = "engine"

    @abstractmethod
    def initial_state(
        self,
        players: Sequence[Mapping[str, Any]],
        settings: Mapping[str, Any],
        random_seed: str,
    ) -> GameUpdate:
        """Build the genesis update for seated players and settings."""

    @abstractmethod
    def process_move(self, previous_state: GameState, move: Move, random_seed: str) -> GameUpdate:
        """Apply one move, raising with a readable reason when it is rejected."""

    @abstractmethod
    def get_player_state(self, state: GameState, position: int) -> Any:
        """Project the state down to what one position may see."""


EngineLoader = Callable[[], Engine]


def engine_loader_from_spec(spec: str) -> EngineLoader:
    """Build a loader for ``"package.module:ClassName"``.

    The first call imports the module; later calls re-import it so a reload
    signal picks up edited engine code.
    """
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise SessionConfigurationError(f"Engine spec must look like 'module:Class'; received {spec!r}.")
    loaded: dict[str, Any] = {}

    def _load() -> Engine:
        if "module" in loaded:
            module = importlib.reload(loaded["module"])
        else:
            module = importlib.import_module(module_name)
        loaded["module"] = module
        factory = getattr(module, attr, None)
        if factory is None:
            raise SessionConfigurationError(f"Module {module_name!r} has no attribute {attr!r}.")
        return factory()

    return _load


class EngineWorker(Context):
    """Engine context: drains serialized requests one at a time and answers each by id."""

    def __init__(self, loader: EngineLoader, name: str = ENGINE_CONTEXT):
        super().__init__(name)
        self.loader = loader
        self.engine: Engine | None = None
        self._inbox: asyncio.Queue[str | None] | None = None
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        self.engine = self.loader()
        self._inbox = asyncio.Queue()
        self._task = asyncio.create_task(self._run(self._inbox), name=f"{self.name}-worker")
        logger.info("Engine context %r started with %s", self.name, self.engine.engine_name)

    def post(self, raw: str) -> None:
        if self._inbox is None:
            raise ContextClosedError(self.name)
        self._inbox.put_nowait(raw)

    async def close(self) -> None:
        if self._inbox is None or self._task is None:
            return
        inbox, task = self._inbox, self._task
        self._inbox = None
        self._task = None
        inbox.put_nowait(None)
        await task

    async def _run(self, inbox: asyncio.Queue[str | None]) -> None:
        while True:
            raw = await inbox.get()
            if raw is None:
                return
            try:
                answer = self._handle(raw)
                if answer is not None:
                    self.reply(answer)
            except Exception:
                # One bad request must not stop the context from serving the next.
                logger.exception("Engine context %r could not answer a request", self.name)

    def _handle(self, raw: str) -> str | None:
        data = decode(raw)
        request_type = str(data.get("type", ""))
        request_id = data.get("id")
        try:
            result = self._dispatch(request_type, data)
            if request_id is None:
                return None
            return encode(ResponseMessage(type=result_type(request_type), id=str(request_id), result=result))
        except Exception as exc:
            # Engine faults become a rejected call; they never reach the host loop.
            reason = str(exc) or exc.__class__.__name__
            logger.debug("Engine rejected %s: %s", request_type, reason)
            if request_id is None:
                return None
            return encode(ResponseMessage(type=result_type(request_type), id=str(request_id), error=reason))

    def _dispatch(self, request_type: str, data: Mapping[str, Any]) -> Any:
        engine = self.engine
        if engine is None:
            raise RuntimeError("Engine is not loaded.")
        if request_type == EngineRequestType.INITIAL_STATE.value:
            setup = data["setup"]
            update = engine.initial_state(
                players=list(setup.get("players", ())),
                settings=dict(setup.get("settings") or {}),
                random_seed=str(setup.get("randomSeed", "")),
            )
            return update.to_dict()
        if request_type == EngineRequestType.PROCESS_MOVE.value:
            update = engine.process_move(
                GameState.from_dict(data["previousState"]),
                Move.from_dict(data["move"]),
                str(data.get("rseed", "")),
            )
            return update.to_dict()
        if request_type == EngineRequestType.GET_PLAYER_STATE.value:
            return engine.get_player_state(GameState.from_dict(data["state"]), int(data["position"]))
        raise ValueError(f"Unknown engine request type: {request_type!r}")


def _parse_update(raw: Any) -> GameUpdate:
    try:
        return GameUpdate.from_dict(raw)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise EngineRejectedError(f"Malformed engine update: {exc!r}") from exc


class EngineAdapter:
    """Host-side facade: three engine operations that read like plain async calls.

    Calls are never retried; moves are not idempotent.
    """

    def __init__(self, channel: Channel, target: str = ENGINE_CONTEXT):
        self.channel = channel
        self.target = target

    async def initialize(self, setup: SetupState) -> GameUpdate:
        raw = await self.channel.call(self.target, InitialStateRequest(setup=setup))
        return _parse_update(raw)

    async def apply_move(self, previous_state: GameState, move: Move, random_seed: str) -> GameUpdate:
        raw = await self.channel.call(
            self.target,
            ProcessMoveRequest(previous_state=previous_state, move=move, random_seed=random_seed),
        )
        return _parse_update(raw)

    async def project_view(self, state: GameState, position: int) -> Any:
        return await self.channel.call(self.target, GetPlayerStateRequest(state=state, position=position))


@asynccontextmanager
async def running_engine(loader: EngineLoader, *, call_timeout_sec: float | None = None) -> AsyncIterator[EngineAdapter]:
    """Run an engine context outside a session, for headless reprocessing."""
    channel = Channel(call_timeout_sec=call_timeout_sec)
    worker = EngineWorker(loader)
    await worker.start()
    channel.attach(worker)
    try:
        yield EngineAdapter(channel, target=worker.name)
    finally:
        await channel.detach(worker.name)
