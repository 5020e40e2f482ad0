"""Session host exports: engine interface, session loop, history, snapshots and reload handling."""

from .channel import Channel, Context
from .config import HostConfig
from .engine import Engine, EngineAdapter, EngineWorker, engine_loader_from_spec, running_engine
from .history import HistoryEntry, HistoryLog, InitialStateRecord, ReplayResult, replay
from .player import Player
from .registry import CorrelationRegistry
from .reload import ReloadCoordinator
from .session import Session, SessionHost, SessionPhase
from .snapshot import SnapshotData, SnapshotStore, reprocess_snapshot
from .update import GamePhase, GameState, GameUpdate, Move, NarrativeMessage, PlayerState

__all__ = [
    "Channel",
    "Context",
    "CorrelationRegistry",
    "Engine",
    "EngineAdapter",
    "EngineWorker",
    "GamePhase",
    "GameState",
    "GameUpdate",
    "HistoryEntry",
    "HistoryLog",
    "HostConfig",
    "InitialStateRecord",
    "Move",
    "NarrativeMessage",
    "Player",
    "PlayerState",
    "ReloadCoordinator",
    "ReplayResult",
    "Session",
    "SessionHost",
    "SessionPhase",
    "SnapshotData",
    "SnapshotStore",
    "engine_loader_from_spec",
    "replay",
    "reprocess_snapshot",
    "running_engine",
]
