# PromptLoop
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of PromptLoop.
#
# PromptLoop is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
#    You may use, modify, and distribute this file under AGPL-3.0.
#    See LICENSE for the full text.
#
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#    For proprietary use, SaaS deployment, or enterprise licensing.
#    See LICENSE-ENTERPRISE.md or contact info@phoenixlink.co.za
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
PromptLoop -- Key-Value Store Backends

The core only needs four operations from its store:

    get(key)                 -> value or None
    set(key, value, ttl)     -> None (ttl in seconds, optional)
    delete(key)              -> None
    list_keys(prefix)        -> list of live keys

No transactions, last write wins. Values are JSON-serialisable dicts.

BACKENDS:
    MemoryKeyValueStore   process-local, for tests and dry runs
    SqliteKeyValueStore   ~/.promptloop/promptloop.db by default
"""

import json
import logging
import sqlite3
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from promptloop.core.errors import StoreUnavailable

logger = logging.getLogger("promptloop.store.kv")

DEFAULT_DB_PATH = Path.home() / ".promptloop" / "promptloop.db"


class KeyValueStore(ABC):
    """Minimal key-value contract used by the versioned store."""

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def list_keys(self, prefix: str = "") -> List[str]: ...


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store with lazy TTL expiry."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _alive(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return False
        return True

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        if not self._alive(key):
            return None
        return json.loads(self._data[key][0])

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        # Stored serialised so callers never share a mutable dict with the store
        self._data[key] = (json.dumps(value), expires_at)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def list_keys(self, prefix: str = "") -> List[str]:
        return [k for k in list(self._data) if k.startswith(prefix) and self._alive(k)]

    def ttl_of(self, key: str) -> Optional[float]:
        """Seconds until expiry, or None for keys without a TTL."""
        if not self._alive(key):
            return None
        expires_at = self._data[key][1]
        return None if expires_at is None else expires_at - self._clock()


# =============================================================================
# SQLITE BACKEND
# =============================================================================


class SqliteKeyValueStore(KeyValueStore):
    """
    SQLite-backed store.

    One table, one row per key. Expired rows are filtered on read and purged
    opportunistically on write.
    """

    def __init__(self, db_path: Optional[str] = None, clock: Callable[[], float] = time.time):
        self._db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._clock = clock
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"Cannot create store directory: {e}") from e
        self._init_db()

    @property
    def db_path(self) -> str:
        return str(self._db_path)

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(self._db_path)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open {self._db_path}: {e}") from e

    def _init_db(self):
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv(expires_at)")
            conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot initialise store: {e}") from e
        finally:
            conn.close()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT value FROM kv WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
                (key, self._clock()),
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Read failed for {key}: {e}") from e
        finally:
            conn.close()
        return json.loads(row[0]) if row else None

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        now = self._clock()
        expires_at = now + ttl if ttl else None
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT OR REPLACE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), expires_at),
            )
            cursor.execute(
                "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?", (now,)
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Write failed for {key}: {e}") from e
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Delete failed for {key}: {e}") from e
        finally:
            conn.close()

    def list_keys(self, prefix: str = "") -> List[str]:
        # substr() rather than LIKE: keys contain '_' which LIKE treats as a wildcard
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? "
                "AND (expires_at IS NULL OR expires_at > ?)",
                (len(prefix), prefix, self._clock()),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Key scan failed for {prefix!r}: {e}") from e
        finally:
            conn.close()
        return [r[0] for r in rows]
