"""Command-line entrypoint: list and reprocess snapshots, or serve the dev host."""

from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

from .config import HostConfig
from .engine import engine_loader_from_spec, running_engine
from .errors import HostError
from .events import NoticeType, OperatorNotice, write_jsonl
from .logging_config import setup_logging
from .wire import encode
from .snapshot import SnapshotStore, reprocess_snapshot

logger = logging.getLogger(__name__)


async def _reprocess_named(config: HostConfig, store: SnapshotStore, name: str, write: bool) -> tuple[dict[str, Any], list[OperatorNotice]]:
    data = store.load(name)
    async with running_engine(engine_loader_from_spec(config.engine), call_timeout_sec=config.call_timeout_sec) as adapter:
        derived, result = await reprocess_snapshot(data, adapter)

    summary: dict[str, Any] = {
        "name": name,
        "moves": len(data.history),
        "kept": len(result.entries),
        "started": derived.initial_state is not None,
        "halted": None,
    }
    notices: list[OperatorNotice] = []
    if result.error is not None:
        summary["halted"] = {"index": result.error.index, "reason": result.error.reason}
        notices.append(OperatorNotice.create(NoticeType.REPLAY_HALTED, str(result.error), result.error.to_dict()))
    else:
        notices.append(OperatorNotice.create(NoticeType.RELOADED, f"Reprocessed {len(result.entries)} move(s)", {"name": name}))
    if write:
        store.save(name, derived)
        summary["written"] = True
    return summary, notices


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    parser = argparse.ArgumentParser(description="Turn-based game session host.")
    parser.add_argument("--states-dir", type=str, default=None, help="Snapshot directory (overrides config).")
    parser.add_argument("--engine", type=str, default=None, help="Engine import spec, e.g. numberguesser:NumberGuesserEngine.")
    parser.add_argument("--log-level", type=str, default=None)
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List saved snapshots.")

    reprocess_parser = subparsers.add_parser("reprocess", help="Replay a saved snapshot against the engine.")
    reprocess_parser.add_argument("name")
    reprocess_parser.add_argument("--write", action="store_true", help="Save the re-derived snapshot back.")
    reprocess_parser.add_argument("--notices", type=str, default=None, help="Write operator notices as JSONL.")

    serve_parser = subparsers.add_parser("serve", help="Run the development HTTP host.")
    serve_parser.add_argument("--host", type=str, default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args(argv)

    config = HostConfig.from_env()
    overrides: dict[str, Any] = {}
    if args.states_dir:
        overrides["save_states_dir"] = args.states_dir
    if args.engine:
        overrides["engine"] = args.engine
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if overrides:
        config = replace(config, **overrides)
    setup_logging(config.log_level, config.log_file)

    store = SnapshotStore(Path(config.save_states_dir))
    try:
        if args.command == "list":
            print(encode({"entries": store.list()}, indent=2))
            return 0

        if args.command == "reprocess":
            summary, notices = asyncio.run(_reprocess_named(config, store, args.name, args.write))
            print(encode(summary, indent=2))
            if args.notices:
                write_jsonl(args.notices, notices)
            return 0 if summary["halted"] is None else 2
    except HostError as exc:
        logger.error("%s", exc)
        print(encode({"error": exc.to_dict()}, indent=2))
        return 1

    import uvicorn

    from server.main import create_app

    uvicorn.run(create_app(config), host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
