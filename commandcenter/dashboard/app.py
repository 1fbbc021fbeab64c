"""Litestar application factory for the command center API."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from litestar import Litestar
from litestar.di import Provide
from litestar.datastructures import State

from commandcenter.client import CommandCenter
from .controllers.core import CoreController
from .controllers.jobs import JobsController
from .controllers.monitor import MonitorController
from .controllers.rituals import RitualsController
from .controllers.tasks import TasksController
from .responses import EXCEPTION_HANDLERS

logger = logging.getLogger(__name__)


async def get_center(state: State) -> CommandCenter:
    return state.center


def create_app(center: CommandCenter, run_worker: bool = False, debug: bool = False) -> Litestar:
    """Create the Litestar application.

    Args:
        center: The wired command center the routes operate on.
        run_worker: Also run the background worker for the app's lifetime.
        debug: Litestar debug mode.

    Returns:
        A Litestar application.
    """

    @asynccontextmanager
    async def lifespan(app: Litestar) -> AsyncIterator[None]:
        worker_task = None
        if run_worker:
            worker = center.create_worker()
            worker_task = asyncio.create_task(worker.run())
            logger.info("Background worker attached to the API")
        try:
            yield
        finally:
            if worker_task is not None:
                worker.stop()
                await worker_task
            else:
                await center.queue.close()

    return Litestar(
        route_handlers=[
            CoreController,
            JobsController,
            RitualsController,
            TasksController,
            MonitorController,
        ],
        state=State({"center": center}),
        dependencies={"center": Provide(get_center)},
        exception_handlers=EXCEPTION_HANDLERS,
        lifespan=[lifespan],
        debug=debug,
    )
