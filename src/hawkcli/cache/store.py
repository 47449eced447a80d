"""Persistent response cache: one SQLite table plus a blob directory.

On-disk layout under the cache directory::

    cache.db                      -- table ``cache_entries`` + indexes
    blobs/<hh>/<cache_key>.json   -- payloads larger than INLINE_THRESHOLD

Payloads up to :data:`INLINE_THRESHOLD` bytes are stored in the row's
``data`` column; larger ones are written to the blob store and the row
records the relative ``blob_path``. Exactly one of the two is set.

Expired rows are invisible to :meth:`CacheStore.get` but still counted by
:meth:`CacheStore.stats` until :meth:`CacheStore.clear_all` removes them.

The database's ``user_version`` pragma holds :data:`SCHEMA_VERSION`. When
:meth:`CacheStore.open` finds a different non-zero version, or a file SQLite
cannot read at all, it deletes the database and the blobs and starts over;
cached responses are disposable.

All methods are blocking. The store holds a single connection guarded by a
lock, so it may be shared by worker threads (the async facade calls it via
:func:`asyncio.to_thread`). Every failure surfaces as a
:class:`~hawkcli.exceptions.CacheError` subclass.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel

from hawkcli.cache.blobs import BlobStore
from hawkcli.exceptions import CacheDatabaseError, CacheIOError
from hawkcli.output import debug

SCHEMA_VERSION = 1
"""Bump when the table layout changes; mismatching caches are rebuilt."""

INLINE_THRESHOLD = 10 * 1024
"""Largest payload (in bytes) stored inline in the database row."""

DB_FILENAME = "cache.db"
BLOBS_DIRNAME = "blobs"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    cache_key TEXT PRIMARY KEY NOT NULL,
    org_id TEXT,
    endpoint TEXT NOT NULL,
    data TEXT,
    blob_path TEXT,
    created_at INTEGER NOT NULL,
    expires_at INTEGER NOT NULL,
    size_bytes INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_expires_at ON cache_entries(expires_at);
CREATE INDEX IF NOT EXISTS idx_org_id ON cache_entries(org_id);
CREATE INDEX IF NOT EXISTS idx_endpoint ON cache_entries(endpoint);
"""


class CacheStats(BaseModel):
    """Snapshot of the whole cache table.

    ``oldest_entry`` and ``newest_entry`` are ``created_at`` values (epoch
    seconds) of valid entries only.
    """

    total_entries: int = 0
    valid_entries: int = 0
    expired_entries: int = 0
    total_size_bytes: int = 0
    oldest_entry: Optional[int] = None
    newest_entry: Optional[int] = None


class ClearStats(BaseModel):
    entries_removed: int = 0


class CacheStore:
    """SQLite-backed store of serialized API responses.

    Use :meth:`open` rather than the constructor.

    Args:
        directory: Cache directory holding ``cache.db`` and ``blobs/``.
        conn: Open connection to ``cache.db`` with the schema in place.
        clock: Returns the current time in epoch seconds.

    Example::

        store = CacheStore.open(get_cache_dir())
        store.put(key, body, "list_apps", org_id, ttl_seconds=3600)
        body = store.get(key)
    """

    def __init__(
        self,
        directory: Path,
        conn: sqlite3.Connection,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._directory = directory
        self._conn = conn
        self._clock = clock
        self._lock = threading.Lock()
        self._blobs = BlobStore(directory / BLOBS_DIRNAME)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @classmethod
    def open(
        cls,
        directory: Path,
        clock: Callable[[], float] = time.time,
    ) -> CacheStore:
        """Open (creating or rebuilding as needed) the cache in *directory*.

        Raises:
            CacheIOError: If the directories cannot be created or removed.
            CacheDatabaseError: If the database cannot be opened or migrated.
        """
        db_path = directory / DB_FILENAME
        blobs = BlobStore(directory / BLOBS_DIRNAME)
        try:
            blobs.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheIOError(f"Cannot create cache directory {directory}: {exc}") from exc

        conn = _connect(db_path)
        try:
            version = conn.execute("PRAGMA user_version").fetchone()[0]
            stale = None if version in (0, SCHEMA_VERSION) else f"schema version {version}"
        except sqlite3.DatabaseError as exc:
            stale = f"unreadable database ({exc})"

        if stale is not None:
            debug(f"Cache has {stale}; rebuilding {directory}")
            conn.close()
            try:
                db_path.unlink(missing_ok=True)
            except OSError as exc:
                raise CacheIOError(f"Cannot remove stale cache {db_path}: {exc}") from exc
            blobs.reset()
            conn = _connect(db_path)

        try:
            conn.executescript(_SCHEMA)
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            conn.commit()
        except sqlite3.Error as exc:
            conn.close()
            raise CacheDatabaseError(f"Cannot initialise cache database {db_path}: {exc}") from exc

        return cls(directory, conn, clock)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> CacheStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def directory(self) -> Path:
        """The cache directory."""
        return self._directory

    # ------------------------------------------------------------------ #
    # Reads and writes
    # ------------------------------------------------------------------ #

    def get(self, key: str) -> Optional[bytes]:
        """Return the payload for *key* if present and not expired.

        A row whose blob file has disappeared is deleted and reported as a
        miss.
        """
        now = int(self._clock())
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT data, blob_path FROM cache_entries "
                    "WHERE cache_key = ? AND expires_at > ?",
                    (key, now),
                ).fetchone()
            except sqlite3.Error as exc:
                raise CacheDatabaseError(f"Cache lookup failed: {exc}") from exc

            if row is None:
                return None

            data, blob_path = row
            if data is not None:
                return data.encode("utf-8") if isinstance(data, str) else bytes(data)

            if blob_path is not None:
                payload = self._blobs.read(blob_path)
                if payload is not None:
                    return payload
                debug(f"Cache blob {blob_path} is missing; dropping entry")
                try:
                    with self._conn:
                        self._conn.execute(
                            "DELETE FROM cache_entries WHERE cache_key = ?", (key,)
                        )
                except sqlite3.Error as exc:
                    raise CacheDatabaseError(f"Cache delete failed: {exc}") from exc

            return None

    def put(
        self,
        key: str,
        data: bytes,
        endpoint: str,
        org_id: Optional[str],
        ttl_seconds: float,
    ) -> None:
        """Insert or replace the entry for *key*.

        Payloads up to :data:`INLINE_THRESHOLD` bytes go into the row; larger
        ones go to the blob store. When an entry that used a blob is replaced
        by an inline one, the stale blob is removed.

        Args:
            key: Cache key from :func:`~hawkcli.cache.key.cache_key`.
            data: Serialized response.
            endpoint: Operation label, used by :meth:`delete_by_endpoint`.
            org_id: Organization scope, if any.
            ttl_seconds: Lifetime; ``0`` stores an already-expired entry.
        """
        created_at = int(self._clock())
        expires_at = created_at + max(int(ttl_seconds), 0)
        size = len(data)

        with self._lock:
            inline: Optional[object] = None
            blob_path: Optional[str] = None
            if size <= INLINE_THRESHOLD:
                inline = _inline_value(data)
            else:
                blob_path = self._blobs.write(key, data)

            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT OR REPLACE INTO cache_entries "
                        "(cache_key, org_id, endpoint, data, blob_path, "
                        "created_at, expires_at, size_bytes) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        (key, org_id, endpoint, inline, blob_path, created_at, expires_at, size),
                    )
            except sqlite3.Error as exc:
                raise CacheDatabaseError(f"Cache write failed: {exc}") from exc

            if blob_path is None:
                self._blobs.remove(BlobStore.relpath_for(key))

    # ------------------------------------------------------------------ #
    # Invalidation
    # ------------------------------------------------------------------ #

    def delete_by_key(self, key: str) -> bool:
        """Delete one entry. Returns ``True`` if it existed."""
        with self._lock:
            try:
                with self._conn:
                    row = self._conn.execute(
                        "SELECT blob_path FROM cache_entries WHERE cache_key = ?", (key,)
                    ).fetchone()
                    cursor = self._conn.execute(
                        "DELETE FROM cache_entries WHERE cache_key = ?", (key,)
                    )
            except sqlite3.Error as exc:
                raise CacheDatabaseError(f"Cache delete failed: {exc}") from exc

            if row is not None and row[0] is not None:
                self._blobs.remove(row[0])
            return cursor.rowcount > 0

    def delete_by_endpoint(self, endpoint: str, org_id: Optional[str] = None) -> int:
        """Delete every entry for an operation label, optionally within one org.

        Returns:
            Number of entries removed.
        """
        if org_id is None:
            where, args = "endpoint = ?", (endpoint,)
        else:
            where, args = "endpoint = ? AND org_id = ?", (endpoint, org_id)

        with self._lock:
            try:
                with self._conn:
                    blob_paths = [
                        r[0]
                        for r in self._conn.execute(
                            f"SELECT blob_path FROM cache_entries "
                            f"WHERE {where} AND blob_path IS NOT NULL",
                            args,
                        )
                    ]
                    cursor = self._conn.execute(
                        f"DELETE FROM cache_entries WHERE {where}", args
                    )
            except sqlite3.Error as exc:
                raise CacheDatabaseError(f"Cache invalidation failed: {exc}") from exc

            for relpath in blob_paths:
                self._blobs.remove(relpath)
            return cursor.rowcount

    def clear_all(self) -> ClearStats:
        """Delete every entry and every blob."""
        with self._lock:
            try:
                with self._conn:
                    count = self._conn.execute(
                        "SELECT COUNT(*) FROM cache_entries"
                    ).fetchone()[0]
                    self._conn.execute("DELETE FROM cache_entries")
            except sqlite3.Error as exc:
                raise CacheDatabaseError(f"Cache clear failed: {exc}") from exc

            self._blobs.reset()
            return ClearStats(entries_removed=count)

    # ------------------------------------------------------------------ #
    # Statistics
    # ------------------------------------------------------------------ #

    def stats(self) -> CacheStats:
        """Return entry counts, total size, and the age range of valid entries."""
        now = int(self._clock())
        with self._lock:
            try:
                total, total_size = self._conn.execute(
                    "SELECT COUNT(*), COALESCE(SUM(size_bytes), 0) FROM cache_entries"
                ).fetchone()
                valid, oldest, newest = self._conn.execute(
                    "SELECT COUNT(*), MIN(created_at), MAX(created_at) "
                    "FROM cache_entries WHERE expires_at > ?",
                    (now,),
                ).fetchone()
            except sqlite3.Error as exc:
                raise CacheDatabaseError(f"Cache statistics failed: {exc}") from exc

        return CacheStats(
            total_entries=total,
            valid_entries=valid,
            expired_entries=total - valid,
            total_size_bytes=total_size,
            oldest_entry=oldest,
            newest_entry=newest,
        )


def _connect(db_path: Path) -> sqlite3.Connection:
    """Open *db_path* for use from any thread (access is serialized by the store)."""
    try:
        return sqlite3.connect(str(db_path), check_same_thread=False)
    except sqlite3.Error as exc:
        raise CacheDatabaseError(f"Cannot open cache database {db_path}: {exc}") from exc


def _inline_value(data: bytes) -> object:
    """Return *data* as text when it is valid UTF-8, otherwise as a BLOB value."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data
