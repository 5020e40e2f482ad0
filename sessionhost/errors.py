"""Structured exceptions used across the session host."""

from __future__ import annotations

from typing import Any


class HostError(Exception):
    """Base class for host-level exceptions."""

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable error payload."""
        return {"type": self.__class__.__name__, "message": str(self)}


class SessionConfigurationError(HostError):
    """Raised when the host or a session is configured incorrectly."""


class PhaseError(HostError):
    """Raised when an intent is not valid in the current session phase."""


class PermissionDeniedError(HostError):
    """Raised when a privileged intent comes from a non-host user."""


class SeatingError(HostError):
    """Raised when a seat operation cannot be applied."""


class NotYourTurnError(HostError):
    """Raised when a position moves while not among the current players."""

    def __init__(self, position: int, current_players: list[int]):
        self.position = position
        self.current_players = list(current_players)
        super().__init__(f"Not your turn: position {position} is not in {self.current_players}")

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update({"position": self.position, "current_players": self.current_players})
        return payload


class EngineRejectedError(HostError):
    """Raised when the engine context rejects a call with a reason string."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ReplayHaltedError(HostError):
    """Raised (or surfaced) when a replay stops at a failing move."""

    def __init__(self, index: int, reason: str):
        self.index = index
        self.reason = reason
        super().__init__(f"Replay halted at move {index}: {reason}")

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update({"index": self.index, "reason": self.reason})
        return payload


class PersistenceFailureError(HostError):
    """Raised when a snapshot cannot be listed, saved, loaded, or deleted."""

    def __init__(self, name: str | None, message: str, *, missing: bool = False):
        self.name = name
        self.missing = missing
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["name"] = self.name
        return payload


class OrphanResponseError(HostError):
    """Describes a response whose correlation id has no pending call."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"No pending call for correlation id {request_id!r}")


class ContextClosedError(HostError):
    """Raised for pending calls whose target context was torn down."""

    def __init__(self, context_name: str):
        self.context_name = context_name
        super().__init__(f"Context {context_name!r} was closed before responding")


class CallTimeoutError(HostError):
    """Raised when a context does not answer a call in time."""

    def __init__(self, context_name: str, timeout_sec: float):
        self.context_name = context_name
        self.timeout_sec = timeout_sec
        super().__init__(f"Context {context_name!r} did not respond within {timeout_sec:.1f}s")


class HistoryRangeError(HostError):
    """Raised when a history index is outside ``-1 <= k < len(history)``."""

    def __init__(self, index: int, length: int):
        self.index = index
        self.length = length
        super().__init__(f"History index {index} is out of range for {length} entries")
