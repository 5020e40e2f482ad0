"""FastAPI development host: intent intake, event polling, time travel, snapshots and reload signals."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from server.schemas import IntentRequest, SelectUserRequest, SignalRequest
from sessionhost.config import HostConfig
from sessionhost.engine import EngineLoader
from sessionhost.errors import HostError, PersistenceFailureError
from sessionhost.reload import ReloadCoordinator
from sessionhost.session import SessionHost
from sessionhost.snapshot import SnapshotStore

logger = logging.getLogger(__name__)


def _http_error(exc: HostError) -> HTTPException:
    if isinstance(exc, PersistenceFailureError):
        return HTTPException(status_code=404 if exc.missing else 500, detail=exc.to_dict())
    return HTTPException(status_code=400, detail=exc.to_dict())


def create_app(config: HostConfig | None = None, engine_loader: EngineLoader | None = None) -> FastAPI:
    """Build an app that owns one session host for its whole lifetime."""
    resolved = config or HostConfig.from_env()
    host = SessionHost(resolved, engine_loader)
    store = SnapshotStore(Path(resolved.save_states_dir))
    coordinator = ReloadCoordinator(host, store)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await host.start()
        try:
            yield
        finally:
            await host.stop()

    app = FastAPI(title="Session Host Dev API", version="0.1.0", lifespan=lifespan)
    app.state.host = host
    app.state.store = store
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health() -> dict[str, str]:
        """Healthcheck endpoint."""
        return {"status": "ok"}

    @app.post("/api/intents")
    async def post_intent(request: IntentRequest) -> dict[str, Any]:
        """Queue one presentation intent and answer once it has been handled."""
        try:
            ack = await host.dispatch_payload(request.model_dump(exclude_none=True))
        except HostError as exc:
            raise _http_error(exc) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"ack": ack.to_dict() if ack is not None else None}

    @app.get("/api/events")
    async def get_events(after: int = Query(default=0, ge=0)) -> dict[str, Any]:
        """Presentation events delivered after offset ``after``."""
        return {"events": host.feed.since(after), "next": len(host.feed.events)}

    @app.get("/api/session")
    async def get_session() -> dict[str, Any]:
        return host.describe()

    @app.post("/api/history/{k}/view")
    async def view_history(k: int) -> dict[str, Any]:
        try:
            await host.view_history(k)
        except HostError as exc:
            raise _http_error(exc) from exc
        return host.describe()

    @app.post("/api/history/{k}/revert")
    async def revert_history(k: int) -> dict[str, Any]:
        try:
            await host.revert_to(k)
        except HostError as exc:
            raise _http_error(exc) from exc
        return host.describe()

    @app.post("/api/reset")
    async def reset_game() -> dict[str, Any]:
        await host.reset_game()
        return host.describe()

    @app.post("/api/reset-seed")
    async def reset_seed() -> dict[str, Any]:
        seed = await host.reset_random_seed()
        return {"randomSeed": seed}

    @app.post("/api/active-user")
    async def select_user(request: SelectUserRequest) -> dict[str, Any]:
        await host.select_user(request.user_id)
        return host.describe()

    @app.post("/api/signals")
    async def post_signal(request: SignalRequest) -> dict[str, Any]:
        """Live-reload signal intake (reload / buildError / ping)."""
        try:
            notice = await coordinator.handle_signal(request.model_dump(exclude_none=True))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"notice": notice.to_dict() if notice is not None else None}

    @app.get("/api/notices")
    async def get_notices() -> dict[str, Any]:
        return coordinator.to_dict()

    @app.get("/states")
    async def list_states() -> dict[str, Any]:
        try:
            return {"entries": store.list()}
        except PersistenceFailureError as exc:
            coordinator.persistence_failure(exc)
            raise _http_error(exc) from exc

    @app.get("/states/{name}")
    async def get_state(name: str) -> dict[str, Any]:
        """Return a stored snapshot with every state re-derived by the current engine."""
        try:
            derived = await host.rederive(store.load(name))
        except HostError as exc:
            raise _http_error(exc) from exc
        return derived.to_dict()

    @app.post("/states/{name}")
    async def save_state(name: str) -> dict[str, Any]:
        try:
            await coordinator.save_snapshot(name)
        except HostError as exc:
            raise _http_error(exc) from exc
        return {"status": "saved", "name": name}

    @app.post("/states/{name}/load")
    async def load_state(name: str) -> dict[str, Any]:
        try:
            result, notice = await coordinator.load_snapshot(name)
        except HostError as exc:
            raise _http_error(exc) from exc
        return {
            "kept": len(result.entries),
            "halted": result.error.to_dict() if result.error is not None else None,
            "notice": notice.to_dict(),
            "session": host.describe(),
        }

    @app.delete("/states/{name}")
    async def delete_state(name: str) -> dict[str, Any]:
        try:
            store.delete(name)
        except PersistenceFailureError as exc:
            coordinator.persistence_failure(exc)
            raise _http_error(exc) from exc
        return {"status": "deleted", "name": name}

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server.main:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
