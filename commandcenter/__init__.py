from .client import CommandCenter
from .config import Settings, configure as _configure, get_settings, get_store
from .server.queue import JobQueue

_center: CommandCenter | None = None


def configure(store, settings: Settings | None = None) -> None:
    _configure(store, settings)
    global _center
    _center = None


def get_command_center() -> CommandCenter:
    global _center
    if _center is None:
        _center = CommandCenter(get_store(), settings=get_settings())
    return _center


__all__ = [
    "CommandCenter",
    "JobQueue",
    "Settings",
    "configure",
    "get_command_center",
    "get_settings",
    "get_store",
]
