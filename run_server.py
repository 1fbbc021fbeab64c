"""Run the command center API with uvicorn."""
from __future__ import annotations

import argparse
import logging
import os

import uvicorn

from commandcenter.client import CommandCenter
from commandcenter.config import Settings
from commandcenter.dashboard.app import create_app
from commandcenter.storage.memory_storage import MemoryStore
from commandcenter.storage.sql_storage import SqlStore


def create_center(storage: str, settings: Settings) -> CommandCenter:
    storage = storage.strip().lower()
    if storage == "memory":
        return CommandCenter(MemoryStore(), settings=settings)
    if storage != "sql":
        raise ValueError("storage must be 'sql' or 'memory'")
    return CommandCenter(SqlStore(connection_url=settings.database_url), settings=settings)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the command center API")
    parser.add_argument(
        "--storage",
        choices=["sql", "memory"],
        default=os.getenv("COMMANDCENTER_STORAGE", "sql"),
        help="Record store to use (env: COMMANDCENTER_STORAGE).",
    )
    parser.add_argument(
        "--no-worker",
        action="store_true",
        help="Serve the API only; do not run the background worker in-process.",
    )
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default=os.getenv("COMMANDCENTER_LOG_LEVEL", "INFO"))
    return parser


if __name__ == "__main__":
    args = build_arg_parser().parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = Settings.from_env()
    center = create_center(args.storage, settings)
    center.scheduler.sync_rituals()
    app = create_app(center, run_worker=not args.no_worker)
    uvicorn.run(app, host=args.host, port=args.port)
