"""Pydantic request schemas for the development host API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


IntentKind = Literal["ready", "move", "updateSettings", "updatePlayers", "start", "key"]


class IntentRequest(BaseModel):
    """One presentation-to-host message; type-specific fields pass through untouched."""

    model_config = ConfigDict(extra="allow")

    type: IntentKind
    id: str | None = None
    userID: str | None = None


class SignalRequest(BaseModel):
    """Live-reload signal from the build watcher."""

    type: Literal["reload", "buildError", "ping"]
    target: Literal["engine", "presentation"] | None = None
    out: str | None = None
    err: str | None = None


class SelectUserRequest(BaseModel):
    """Operator request to change the active viewing user."""

    user_id: str
