from .base import RecordStore
from .memory_storage import MemoryStore
from .sql_storage import SqlStore

__all__ = ["RecordStore", "MemoryStore", "SqlStore"]
