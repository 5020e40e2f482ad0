"""Host configuration."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .env_utils import getenv_any, getenv_bool, getenv_float, getenv_int
from .errors import SessionConfigurationError

DEFAULT_ENGINE = "numberguesser:NumberGuesserEngine"
ENV_PREFIX = "SESSIONHOST_"


@dataclass(frozen=True)
class HostConfig:
    """Runtime configuration for one session host."""

    min_players: int = 1
    max_players: int = 10
    default_players: int | None = None
    host_user_id: str = "0"
    auto_switch: bool = True
    require_ready: bool = True
    auto_start: bool = False
    call_timeout_sec: float | None = 30.0
    save_states_dir: str | Path = ".save-states"
    engine: str = DEFAULT_ENGINE
    log_level: str = "INFO"
    log_file: str | Path | None = None

    def __post_init__(self) -> None:
        if self.min_players < 1:
            raise SessionConfigurationError("min_players must be at least 1.")
        if self.min_players > self.max_players:
            raise SessionConfigurationError(
                f"min_players ({self.min_players}) cannot exceed max_players ({self.max_players})."
            )
        if not self.min_players <= self.initial_seat_count <= self.max_players:
            raise SessionConfigurationError(
                f"default_players must be between {self.min_players} and {self.max_players}."
            )
        if self.call_timeout_sec is not None and self.call_timeout_sec <= 0:
            raise SessionConfigurationError("call_timeout_sec must be positive or None.")

    @property
    def initial_seat_count(self) -> int:
        return self.default_players if self.default_players is not None else self.min_players

    @classmethod
    def from_env(cls) -> "HostConfig":
        """Build configuration from ``SESSIONHOST_*`` variables (and .env)."""
        defaults = cls()

        def name(key: str) -> str:
            return f"{ENV_PREFIX}{key}"

        return cls(
            min_players=getenv_int(name("MIN_PLAYERS"), defaults.min_players),
            max_players=getenv_int(name("MAX_PLAYERS"), defaults.max_players),
            default_players=getenv_int(name("DEFAULT_PLAYERS"), None),
            host_user_id=getenv_any(name("HOST_USER_ID"), default=defaults.host_user_id) or defaults.host_user_id,
            auto_switch=getenv_bool(name("AUTO_SWITCH"), defaults.auto_switch),
            require_ready=getenv_bool(name("REQUIRE_READY"), defaults.require_ready),
            auto_start=getenv_bool(name("AUTO_START"), defaults.auto_start),
            call_timeout_sec=getenv_float(name("CALL_TIMEOUT_SEC"), defaults.call_timeout_sec),
            save_states_dir=getenv_any(name("SAVE_STATES_DIR"), default=str(defaults.save_states_dir))
            or str(defaults.save_states_dir),
            engine=getenv_any(name("ENGINE"), default=defaults.engine) or defaults.engine,
            log_level=(getenv_any(name("LOG_LEVEL"), default=defaults.log_level) or defaults.log_level).upper(),
            log_file=getenv_any(name("LOG_FILE")),
        )
