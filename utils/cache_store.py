"""
CASCADE - Local cache store.
Versioned key-value store on a DuckDB file. Values are JSON-serialized on put and
deserialized on get, so callers never share mutable state with the store.
Failures are logged and degrade to a cache miss or a no-op; nothing here raises to callers.
"""

import asyncio
import json
import logging
import os
import threading
from typing import Any, Optional

import duckdb

from utils.errors import SerializationError

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 2

# Raised opening or using the cache file; caught and logged, never raised to callers
CACHE_ERRORS = (duckdb.Error, OSError)

_SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS meta_schema_version (
    store_name       TEXT NOT NULL,
    version          INTEGER NOT NULL,
    applied_at       TIMESTAMP NOT NULL DEFAULT current_timestamp,
    description      TEXT
);

CREATE TABLE IF NOT EXISTS kv_store (
    store_name       TEXT NOT NULL,
    cache_key        TEXT NOT NULL,
    payload          TEXT NOT NULL,
    updated_at       TIMESTAMP NOT NULL DEFAULT current_timestamp,
    PRIMARY KEY (store_name, cache_key)
);
"""


_PATH_LOCKS = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(db_path: str) -> threading.Lock:
    """One lock per cache file, shared by every store that lives in it."""
    key = db_path if db_path == ":memory:" else os.path.abspath(db_path)
    with _PATH_LOCKS_GUARD:
        return _PATH_LOCKS.setdefault(key, threading.Lock())


def serialize(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Value is not JSON-serializable: {e}") from e


def deserialize(payload: str) -> Any:
    try:
        return json.loads(payload)
    except ValueError as e:
        raise SerializationError(f"Stored payload is not valid JSON: {e}") from e


class CacheStore:
    """One named store inside a shared DuckDB cache file.

    The connection is opened lazily on first use. Each store records its own schema
    version in meta_schema_version; bumping the version clears only this store's rows,
    other stores in the same file keep their data.
    A stored value of None is indistinguishable from a miss.
    """

    def __init__(self, db_path: str, store_name: str, version: int = CACHE_SCHEMA_VERSION):
        self.db_path = db_path
        self.store_name = store_name
        self.version = version
        self._con = None
        self._lock = _lock_for(db_path)

    # ------------------------------------------------------------------
    # Connection and schema
    # ------------------------------------------------------------------

    def _connection(self):
        if self._con is None:
            if self.db_path != ":memory:":
                parent = os.path.dirname(os.path.abspath(self.db_path))
                os.makedirs(parent, exist_ok=True)
            con = duckdb.connect(self.db_path)
            try:
                self._init_schema(con)
            except duckdb.Error:
                con.close()
                raise
            self._con = con
        return self._con

    def _init_schema(self, con):
        con.execute(_SCHEMA_DDL)
        row = con.execute(
            "SELECT MAX(version) FROM meta_schema_version WHERE store_name = ?",
            [self.store_name],
        ).fetchone()
        current_version = row[0] if row and row[0] else 0

        if current_version < self.version:
            if current_version:
                logger.info(
                    "Upgrading cache store %s from v%d to v%d, dropping its entries",
                    self.store_name, current_version, self.version,
                )
            con.execute("DELETE FROM kv_store WHERE store_name = ?", [self.store_name])
            con.execute(
                "INSERT INTO meta_schema_version (store_name, version, description) VALUES (?, ?, ?)",
                [self.store_name, self.version, "JSON key-value payloads"],
            )
        elif current_version > self.version:
            logger.warning(
                "Cache store %s is at v%d, newer than this build (v%d); entries kept as-is",
                self.store_name, current_version, self.version,
            )

    # ------------------------------------------------------------------
    # Blocking operations (run in a worker thread)
    # ------------------------------------------------------------------

    def _get(self, key: str) -> Optional[Any]:
        try:
            with self._lock:
                row = self._connection().execute(
                    "SELECT payload FROM kv_store WHERE store_name = ? AND cache_key = ?",
                    [self.store_name, key],
                ).fetchone()
        except CACHE_ERRORS as e:
            logger.error("Cache get failed for %s/%s: %s", self.store_name, key, e)
            return None
        if row is None:
            logger.debug("Cache miss %s/%s", self.store_name, key)
            return None
        try:
            return deserialize(row[0])
        except SerializationError as e:
            logger.error("Cache entry %s/%s unreadable: %s", self.store_name, key, e)
            return None

    def _put(self, key: str, value: Any) -> bool:
        try:
            payload = serialize(value)
        except SerializationError as e:
            logger.error("Cache put skipped for %s/%s: %s", self.store_name, key, e)
            return False
        try:
            with self._lock:
                self._connection().execute(
                    "INSERT OR REPLACE INTO kv_store (store_name, cache_key, payload, updated_at) "
                    "VALUES (?, ?, ?, current_timestamp)",
                    [self.store_name, key, payload],
                )
        except CACHE_ERRORS as e:
            logger.error("Cache put failed for %s/%s: %s", self.store_name, key, e)
            return False
        logger.debug("Cache put %s/%s (%d bytes)", self.store_name, key, len(payload))
        return True

    def _delete(self, key: str) -> None:
        try:
            with self._lock:
                self._connection().execute(
                    "DELETE FROM kv_store WHERE store_name = ? AND cache_key = ?",
                    [self.store_name, key],
                )
        except CACHE_ERRORS as e:
            logger.error("Cache delete failed for %s/%s: %s", self.store_name, key, e)

    def _clear(self) -> None:
        try:
            with self._lock:
                self._connection().execute(
                    "DELETE FROM kv_store WHERE store_name = ?", [self.store_name]
                )
        except CACHE_ERRORS as e:
            logger.error("Cache clear failed for %s: %s", self.store_name, e)

    def _close(self) -> None:
        with self._lock:
            if self._con is not None:
                try:
                    self._con.close()
                except duckdb.Error as e:
                    logger.error("Cache close failed for %s: %s", self.store_name, e)
                self._con = None

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        """Return a fresh copy of the stored value, or None on miss or failure."""
        return await asyncio.to_thread(self._get, key)

    async def put(self, key: str, value: Any) -> bool:
        """Store a value. Returns False (after logging) when the write did not happen."""
        return await asyncio.to_thread(self._put, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear)

    async def close(self) -> None:
        """Release the connection. Safe to call when nothing was ever opened."""
        await asyncio.to_thread(self._close)
