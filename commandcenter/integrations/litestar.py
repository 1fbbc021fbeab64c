"""Litestar integration helpers for the command center."""

from __future__ import annotations

try:
    from litestar import Litestar
    from litestar.datastructures import State
    from litestar.di import Provide
except ImportError as exc:  # pragma: no cover - optional dependency
    raise ImportError(
        "Litestar integration requires 'litestar'. Install with `pip install litestar`."
    ) from exc

from commandcenter.client import CommandCenter
from commandcenter.storage.base import RecordStore


def get_command_center(state: State) -> CommandCenter:
    return state.command_center


def command_center_dependency() -> Provide:
    return Provide(get_command_center, sync_to_thread=False)


def configure_command_center(app: Litestar, store: RecordStore, **options) -> CommandCenter:
    center = CommandCenter(store, **options)
    app.state.command_center = center
    return center
