"""Snapshot documents, the JSON file store behind them, and headless reprocessing."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Self
from urllib.parse import unquote

from .errors import HostError, PersistenceFailureError, ReplayHaltedError
from .history import HistoryEntry, InitialStateRecord, ReplayResult, replay
from .player import Player
from .wire import structured_copy
from .update import Move, SetupState

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".json"


@dataclass(frozen=True)
class SnapshotData:
    """Everything needed to rebuild a session: seed, roster, settings, moves, genesis."""

    random_seed: str
    settings: dict[str, Any] = field(default_factory=dict)
    players: tuple[Player, ...] = ()
    history: tuple[HistoryEntry, ...] = ()
    initial_state: InitialStateRecord | None = None

    def moves(self) -> list[Move]:
        return [entry.as_move() for entry in self.history]

    def setup(self) -> SetupState:
        """Return the engine setup that produced (or will produce) the genesis state."""
        if self.initial_state is not None:
            return SetupState(
                random_seed=self.random_seed,
                players=self.initial_state.players,
                settings=dict(self.initial_state.settings),
            )
        return SetupState(random_seed=self.random_seed, players=self.players, settings=dict(self.settings))

    def to_dict(self) -> dict[str, Any]:
        return {
            "randomSeed": self.random_seed,
            "settings": structured_copy(self.settings),
            "players": [player.to_dict() for player in self.players],
            "history": [entry.to_dict() for entry in self.history],
            "initialState": self.initial_state.to_dict() if self.initial_state is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        initial_state = data.get("initialState")
        return cls(
            random_seed=str(data.get("randomSeed", "")),
            settings=dict(data.get("settings") or {}),
            players=tuple(Player.from_dict(item) for item in data.get("players", ())),
            history=tuple(HistoryEntry.from_dict(item) for item in data.get("history", ())),
            initial_state=InitialStateRecord.from_dict(initial_state) if initial_state else None,
        )


async def reprocess_snapshot(data: SnapshotData, adapter: Any) -> tuple[SnapshotData, ReplayResult]:
    """Re-derive every stored state from the seed and the move list.

    Stored states are never trusted. When replay halts before keeping any
    move the genesis is dropped as well, returning the snapshot to an
    unstarted game with its seats and settings intact.
    """
    moves = data.moves()
    setup = data.setup()
    if data.initial_state is None and not moves:
        return data, ReplayResult(entries=())

    try:
        genesis = await adapter.initialize(setup)
    except HostError as exc:
        error = ReplayHaltedError(0, f"initial state failed: {exc}")
        logger.warning("%s", error)
        return replace(data, history=(), initial_state=None), ReplayResult(entries=(), error=error)

    result = await replay(genesis, moves, adapter, data.random_seed)
    if result.halted and not result.entries:
        return replace(data, history=(), initial_state=None), result
    initial_state = InitialStateRecord(update=genesis, players=setup.players, settings=dict(setup.settings))
    return replace(data, history=result.entries, initial_state=initial_state), result


@dataclass
class SnapshotStore:
    """Named snapshots kept as JSON files in one directory."""

    directory: Path

    def __post_init__(self) -> None:
        self.directory = Path(self.directory)

    def path_for(self, name: str) -> Path:
        """Resolve a (possibly URL-quoted) snapshot name to a file inside the directory."""
        decoded = unquote(name).strip()
        if not decoded or decoded.startswith(".") or "/" in decoded or "\\" in decoded:
            raise PersistenceFailureError(name, f"Invalid snapshot name: {name!r}", missing=True)
        root = self.directory.resolve()
        path = (root / f"{decoded}{SNAPSHOT_SUFFIX}").resolve()
        if path.parent != root:
            raise PersistenceFailureError(name, f"Invalid snapshot name: {name!r}", missing=True)
        return path

    def list(self) -> list[dict[str, Any]]:
        if not self.directory.exists():
            return []
        try:
            entries = [
                {"name": path.stem, "ctime": int(path.stat().st_ctime * 1000)}
                for path in self.directory.iterdir()
                if path.is_file() and path.suffix == SNAPSHOT_SUFFIX
            ]
        except OSError as exc:
            raise PersistenceFailureError(None, f"Could not list snapshots: {exc}") from exc
        return sorted(entries, key=lambda entry: (-entry["ctime"], entry["name"]))

    def save(self, name: str, data: SnapshotData) -> None:
        path = self.path_for(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp = path.with_suffix(path.suffix + ".tmp")
            temp.write_text(json.dumps(data.to_dict(), sort_keys=True, indent=2), encoding="utf-8")
            temp.replace(path)
        except OSError as exc:
            raise PersistenceFailureError(name, f"Could not save snapshot {name!r}: {exc}") from exc
        logger.info("Saved snapshot %r (%d move(s))", name, len(data.history))

    def load(self, name: str) -> SnapshotData:
        path = self.path_for(name)
        if not path.exists():
            raise PersistenceFailureError(name, f"Snapshot {name!r} does not exist", missing=True)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return SnapshotData.from_dict(raw)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise PersistenceFailureError(name, f"Could not load snapshot {name!r}: {exc}") from exc

    def delete(self, name: str) -> None:
        path = self.path_for(name)
        if not path.exists():
            raise PersistenceFailureError(name, f"Snapshot {name!r} does not exist", missing=True)
        try:
            path.unlink()
        except OSError as exc:
            raise PersistenceFailureError(name, f"Could not delete snapshot {name!r}: {exc}") from exc
        logger.info("Deleted snapshot %r", name)
