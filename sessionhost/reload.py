"""Reload coordinator: turns live-reload signals into reprocess runs and operator notices."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping

from .errors import HostError, PersistenceFailureError
from .events import NoticeType, OperatorNotice
from .history import ReplayResult
from .session import SessionHost
from .snapshot import SnapshotStore

logger = logging.getLogger(__name__)


class SignalType(str, Enum):
    RELOAD = "reload"
    BUILD_ERROR = "buildError"
    PING = "ping"


class ReloadTarget(str, Enum):
    ENGINE = "engine"
    PRESENTATION = "presentation"


class ReloadCoordinator:
    """Reacts to "context reloaded" signals and keeps the operator informed.

    A build error stays up as a banner until the next successful reload.
    """

    def __init__(self, host: SessionHost, store: SnapshotStore | None = None):
        self.host = host
        self.store = store
        self.notices: list[OperatorNotice] = []
        self.banner: OperatorNotice | None = None

    def record(self, notice: OperatorNotice) -> OperatorNotice:
        self.notices.append(notice)
        return notice

    async def handle_signal(self, signal: Mapping[str, Any]) -> OperatorNotice | None:
        raw_type = signal.get("type")
        try:
            signal_type = SignalType(raw_type)
        except ValueError as exc:
            raise ValueError(f"Unknown reload signal type: {raw_type!r}") from exc

        if signal_type is SignalType.PING:
            logger.debug("Reload stream ping")
            return None
        if signal_type is SignalType.BUILD_ERROR:
            return self.build_error(str(signal.get("out") or ""), str(signal.get("err") or ""))

        try:
            target = ReloadTarget(signal.get("target"))
        except ValueError as exc:
            raise ValueError(f"Unknown reload target: {signal.get('target')!r}") from exc
        if target is ReloadTarget.ENGINE:
            return await self.reload_engine()
        return await self.reload_presentation()

    def build_error(self, out: str, err: str) -> OperatorNotice:
        message = err.strip() or out.strip() or "Build failed"
        logger.warning("Build error: %s", message)
        self.banner = self.record(OperatorNotice.create(NoticeType.BUILD_ERROR, message, {"out": out, "err": err}))
        return self.banner

    async def reload_engine(self) -> OperatorNotice:
        logger.warning("Engine reloaded; reprocessing history")
        try:
            result = await self.host.reload_engine()
        except Exception as exc:
            # A broken engine module must surface as a banner, not take the host down.
            logger.exception("Engine reload failed")
            return self.build_error("", f"Engine reload failed: {exc}")
        self.banner = None
        return self._after_reprocess(result, {"target": ReloadTarget.ENGINE.value})

    async def reload_presentation(self) -> OperatorNotice:
        logger.warning("Presentation reloaded; resending current view")
        self.banner = None
        await self.host.resend_view()
        return self.record(
            OperatorNotice.create(
                NoticeType.RELOADED,
                "Presentation reloaded",
                {"target": ReloadTarget.PRESENTATION.value},
            )
        )

    async def reprocess(self) -> OperatorNotice:
        result = await self.host.reprocess()
        return self._after_reprocess(result, {"target": "session"})

    async def load_snapshot(self, name: str) -> tuple[ReplayResult, OperatorNotice]:
        store = self._require_store()
        try:
            data = store.load(name)
        except PersistenceFailureError as exc:
            self.persistence_failure(exc)
            raise
        result = await self.host.load_snapshot(data)
        return result, self._after_reprocess(result, {"target": "snapshot", "name": name})

    async def save_snapshot(self, name: str) -> None:
        store = self._require_store()
        data = await self.host.take_snapshot()
        try:
            store.save(name, data)
        except PersistenceFailureError as exc:
            self.persistence_failure(exc)
            raise

    def persistence_failure(self, error: PersistenceFailureError) -> OperatorNotice:
        logger.warning("Persistence failure: %s", error)
        return self.record(OperatorNotice.create(NoticeType.PERSISTENCE_FAILURE, str(error), error.to_dict()))

    def _require_store(self) -> SnapshotStore:
        if self.store is None:
            raise HostError("No snapshot store is configured.")
        return self.store

    def _after_reprocess(self, result: ReplayResult, payload: dict[str, Any]) -> OperatorNotice:
        payload = {**payload, "kept": len(result.entries)}
        if result.error is not None:
            self.banner = self.record(
                OperatorNotice.create(NoticeType.REPLAY_HALTED, str(result.error), {**payload, **result.error.to_dict()})
            )
            return self.banner
        return self.record(
            OperatorNotice.create(NoticeType.RELOADED, f"Reprocessed {len(result.entries)} move(s)", payload)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "banner": self.banner.to_dict() if self.banner is not None else None,
            "notices": [notice.to_dict() for notice in self.notices],
        }
