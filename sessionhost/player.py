"""Seated players and the seat operations that mutate them."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, ClassVar, Mapping, Sequence, Self

from .errors import PermissionDeniedError, SeatingError
from .wire import structured_copy

DEFAULT_COLORS: tuple[str, ...] = (
    "#d50000",
    "#00695c",
    "#304ffe",
    "#ff6f00",
    "#7c4dff",
    "#ffa825",
    "#f2d330",
    "#43a047",
    "#004d40",
    "#795a4f",
)


@dataclass(frozen=True)
class Player:
    """A seated participant. `position` is the stable seat index used by engine and history."""

    id: str
    position: int
    name: str
    color: str
    settings: Any = None
    ready: bool = True
    reserved: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "position": self.position,
            "name": self.name,
            "color": self.color,
            "ready": self.ready,
        }
        if self.settings is not None:
            payload["settings"] = structured_copy(self.settings)
        if self.reserved:
            payload["reserved"] = True
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            position=int(data["position"]),
            name=str(data.get("name", "")),
            color=str(data.get("color", DEFAULT_COLORS[0])),
            settings=structured_copy(data.get("settings")),
            ready=bool(data.get("ready", True)),
            reserved=bool(data.get("reserved", False)),
        )

    def engine_view(self) -> dict[str, Any]:
        """Return the subset of player fields the engine receives."""
        payload: dict[str, Any] = {"position": self.position, "name": self.name, "color": self.color}
        if self.settings is not None:
            payload["settings"] = structured_copy(self.settings)
        return payload


class SeatOperationType(str, Enum):
    """Supported seat operation discriminators."""

    SEAT = "seat"
    UNSEAT = "unseat"
    UPDATE = "update"
    RESERVE = "reserve"


@dataclass(frozen=True)
class SeatOperation:
    """Seat a user at a position."""

    position: int
    user_id: str
    name: str
    color: str
    settings: Any = None
    op_type: ClassVar[SeatOperationType] = SeatOperationType.SEAT


@dataclass(frozen=True)
class UnseatOperation:
    """Remove a user from their seat."""

    user_id: str
    op_type: ClassVar[SeatOperationType] = SeatOperationType.UNSEAT


@dataclass(frozen=True)
class UpdateOperation:
    """Change a seated user's name, color, readiness, or per-player settings."""

    user_id: str
    name: str | None = None
    color: str | None = None
    ready: bool | None = None
    settings: Any = None
    op_type: ClassVar[SeatOperationType] = SeatOperationType.UPDATE


@dataclass(frozen=True)
class ReserveOperation:
    """Hold a position for a player who has not joined yet."""

    position: int
    name: str
    color: str
    settings: Any = None
    op_type: ClassVar[SeatOperationType] = SeatOperationType.RESERVE


PlayerOperation = SeatOperation | UnseatOperation | UpdateOperation | ReserveOperation


def operation_from_dict(data: Mapping[str, Any]) -> PlayerOperation:
    """Parse one seat operation from its wire payload."""
    op_type = data.get("type")
    try:
        if op_type == SeatOperationType.SEAT.value:
            return SeatOperation(
                position=int(data["position"]),
                user_id=str(data["userID"]),
                name=str(data["name"]),
                color=str(data["color"]),
                settings=data.get("settings"),
            )
        if op_type == SeatOperationType.UNSEAT.value:
            return UnseatOperation(user_id=str(data["userID"]))
        if op_type == SeatOperationType.UPDATE.value:
            ready = data.get("ready")
            return UpdateOperation(
                user_id=str(data["userID"]),
                name=data.get("name"),
                color=data.get("color"),
                ready=bool(ready) if ready is not None else None,
                settings=data.get("settings"),
            )
        if op_type == SeatOperationType.RESERVE.value:
            return ReserveOperation(
                position=int(data["position"]),
                name=str(data["name"]),
                color=str(data["color"]),
                settings=data.get("settings"),
            )
    except KeyError as exc:
        raise SeatingError(f"Seat operation {op_type!r} is missing field {exc.args[0]!r}") from exc
    raise SeatingError(f"Unknown seat operation type: {op_type!r}")


def reserved_user_id(position: int) -> str:
    return f"reserved-{position}"


def apply_seat_operations(
    players: Sequence[Player],
    operations: Sequence[PlayerOperation],
    *,
    actor_id: str,
    is_host: bool,
) -> list[Player]:
    """Apply a batch of seat operations, returning the new roster or raising without side effects."""
    roster = list(players)
    for operation in operations:
        if isinstance(operation, SeatOperation):
            if not is_host and operation.user_id != actor_id:
                raise PermissionDeniedError("Only the host may seat other users.")
            _require_free_position(roster, operation.position)
            if any(player.id == operation.user_id for player in roster):
                raise SeatingError(f"User {operation.user_id!r} is already seated.")
            roster.append(
                Player(
                    id=operation.user_id,
                    position=operation.position,
                    name=operation.name,
                    color=operation.color,
                    settings=structured_copy(operation.settings),
                )
            )
        elif isinstance(operation, UnseatOperation):
            if not is_host and operation.user_id != actor_id:
                raise PermissionDeniedError("Only the host may unseat other users.")
            if not any(player.id == operation.user_id for player in roster):
                raise SeatingError(f"User {operation.user_id!r} is not seated.")
            roster = [player for player in roster if player.id != operation.user_id]
        elif isinstance(operation, UpdateOperation):
            if not is_host and operation.user_id != actor_id:
                raise PermissionDeniedError("Players may only update their own seat.")
            roster = _update_player(roster, operation)
        elif isinstance(operation, ReserveOperation):
            if not is_host:
                raise PermissionDeniedError("Only the host may reserve seats.")
            _require_free_position(roster, operation.position)
            roster.append(
                Player(
                    id=reserved_user_id(operation.position),
                    position=operation.position,
                    name=operation.name,
                    color=operation.color,
                    settings=structured_copy(operation.settings),
                    reserved=True,
                )
            )
        else:  # pragma: no cover - closed union
            raise SeatingError(f"Unsupported seat operation: {operation!r}")
    return sorted(roster, key=lambda player: player.position)


def _require_free_position(roster: Sequence[Player], position: int) -> None:
    if position < 1:
        raise SeatingError(f"Seat positions start at 1; received {position}.")
    if any(player.position == position for player in roster):
        raise SeatingError(f"Position {position} is already taken.")


def _update_player(roster: list[Player], operation: UpdateOperation) -> list[Player]:
    updated: list[Player] = []
    found = False
    for player in roster:
        if player.id != operation.user_id:
            updated.append(player)
            continue
        found = True
        changes: dict[str, Any] = {}
        if operation.name:
            changes["name"] = operation.name
        if operation.color:
            changes["color"] = operation.color
        if operation.ready is not None:
            changes["ready"] = operation.ready
        if operation.settings is not None:
            changes["settings"] = structured_copy(operation.settings)
        updated.append(replace(player, **changes))
    if not found:
        raise SeatingError(f"User {operation.user_id!r} is not seated.")
    return updated
