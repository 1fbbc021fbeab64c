"""FastAPI integration helpers for the command center."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

try:
    from fastapi import FastAPI
except ImportError as exc:  # pragma: no cover - optional dependency
    raise ImportError(
        "FastAPI integration requires 'fastapi'. Install with `pip install fastapi`."
    ) from exc

from commandcenter.client import CommandCenter
from commandcenter.server.worker import Worker
from commandcenter.storage.base import RecordStore


class CommandCenterFastAPIPlugin:
    """
    Attaches a CommandCenter to a FastAPI app: exposes it on `app.state`,
    optionally mounts the JSON API and runs the worker inside the app's lifespan.
    """

    def __init__(self, app: FastAPI, store: RecordStore, **options):
        self.app = app
        self.center = CommandCenter(store, **options)
        self.worker: Optional[Worker] = None
        self._worker_task: Optional[asyncio.Task] = None

        app.state.command_center = self.center
        self._wrap_lifespan()

    def _wrap_lifespan(self) -> None:
        inner = self.app.router.lifespan_context

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.startup()
            try:
                async with inner(app) as state:
                    yield state
            finally:
                await self.shutdown()

        self.app.router.lifespan_context = lifespan

    def get_command_center(self) -> CommandCenter:
        return self.center

    def include_api(self, path: str = "/command-center", debug: bool = False) -> None:
        from commandcenter.dashboard.app import create_app

        self.app.mount(path, create_app(self.center, debug=debug))

    def run_worker_in_background(self, **worker_options) -> "CommandCenterFastAPIPlugin":
        self.worker = self.center.create_worker(**worker_options)
        return self

    async def startup(self) -> None:
        if self.worker is not None:
            self._worker_task = asyncio.create_task(self.worker.run())

    async def shutdown(self) -> None:
        if self.worker is not None and self._worker_task is not None:
            self.worker.stop()
            await self._worker_task
            self._worker_task = None
        else:
            await self.center.queue.close()


def add_command_center_to_fastapi(
    app: FastAPI, store: RecordStore, **options
) -> CommandCenterFastAPIPlugin:
    return CommandCenterFastAPIPlugin(app, store, **options)
