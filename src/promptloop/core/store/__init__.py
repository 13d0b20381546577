"""
Versioned Store -- typed records over a minimal key-value contract.
"""

from promptloop.core.store.kv import KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore
from promptloop.core.store.versioned import VersionedStore

__all__ = ["KeyValueStore", "MemoryKeyValueStore", "SqliteKeyValueStore", "VersionedStore"]
