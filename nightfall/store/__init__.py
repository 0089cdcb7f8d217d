"""Record store collaborators."""

from nightfall.store.base import RecordStore
from nightfall.store.memory import InMemoryRecordStore
from nightfall.store.sqlite import SqliteRecordStore

__all__ = [
    "InMemoryRecordStore",
    "RecordStore",
    "SqliteRecordStore",
]
