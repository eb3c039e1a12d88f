"""
SQLite database handle, schema and the store-wide lock.

This module owns the single SQLite connection shared by every storage
component. It creates the schema, bootstraps the public domain, and
serializes access through one asyncio lock.

Invariants:
    - Exactly one connection per Database
    - Every public storage operation runs inside ``locked()`` for its whole
      duration, not per statement, so multi-statement writes are never
      observed half-done by another operation
    - The lock is released on every exit path, including errors
    - The public domain always exists after initialize()
    - FTS5 is mandatory; initialize() fails without it

How to change safely:
    - Only add tables and columns with CREATE ... IF NOT EXISTS / defaults
    - Never call into another component's public (locking) method while
      holding the lock; use the lock-held helpers instead

Table schema:
    fs:
        - id TEXT PRIMARY KEY (opaque file id)
        - domainid INTEGER
        - slug TEXT
        - created TEXT (ISO-8601 UTC)
        - modified TEXT (ISO-8601 UTC)
        - history TEXT (VersionedText JSON)
        - views INTEGER

    fts:
        - FTS5 virtual table (id UNINDEXED, data)

    domains:
        - id INTEGER PRIMARY KEY
        - name TEXT (lower-cased, unique)
        - hashed_pass TEXT (bcrypt)
        - ispublic INTEGER
        - options BLOB (DomainOptions JSON)

    keys:
        - id INTEGER PRIMARY KEY
        - domainid INTEGER
        - key TEXT
        - lastused TEXT

    blobs, cached_images:
        - id TEXT PRIMARY KEY
        - name TEXT
        - data BLOB
        - views INTEGER
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from pathlib import Path

from ..errors import StorageFailure
from ..security import hash_password
from .models import PUBLIC_DOMAIN, DomainOptions, parse_ts, utcnow

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS fs (
        id TEXT NOT NULL PRIMARY KEY,
        domainid INTEGER NOT NULL,
        slug TEXT NOT NULL DEFAULT '',
        created TEXT NOT NULL,
        modified TEXT NOT NULL,
        history TEXT,
        views INTEGER NOT NULL DEFAULT 0
    );

    CREATE VIRTUAL TABLE IF NOT EXISTS fts USING fts5(id UNINDEXED, data);

    CREATE TABLE IF NOT EXISTS domains (
        id INTEGER NOT NULL PRIMARY KEY,
        name TEXT NOT NULL,
        hashed_pass TEXT,
        ispublic INTEGER NOT NULL DEFAULT 0,
        options BLOB
    );

    CREATE TABLE IF NOT EXISTS keys (
        id INTEGER NOT NULL PRIMARY KEY,
        domainid INTEGER NOT NULL,
        key TEXT NOT NULL,
        lastused TEXT
    );

    CREATE TABLE IF NOT EXISTS blobs (
        id TEXT NOT NULL PRIMARY KEY,
        name TEXT,
        data BLOB,
        views INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS cached_images (
        id TEXT NOT NULL PRIMARY KEY,
        name TEXT,
        data BLOB,
        views INTEGER NOT NULL DEFAULT 0
    );

    CREATE INDEX IF NOT EXISTS fsslugs ON fs(slug, domainid);
    CREATE UNIQUE INDEX IF NOT EXISTS domainsname ON domains(name);
    CREATE INDEX IF NOT EXISTS keyskey ON keys(key);
"""


class Database:
    """The single SQLite connection and its exclusive lock.

    Thread safety:
        All access goes through ``locked()``, which holds one asyncio.Lock
        for the duration of a public operation. Waiters block (no timeout)
        until the current holder finishes.

    Example:
        >>> db = Database("/var/lib/rwtxt/rwtxt.db")
        >>> await db.initialize()
        >>> async with db.locked() as conn:
        ...     conn.execute("SELECT COUNT(*) FROM fs").fetchone()
        >>> await db.close()
    """

    def __init__(
        self,
        path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        bcrypt_rounds: int = 10,
    ) -> None:
        """Initialize the database handle.

        Args:
            path: SQLite file path (":memory:" for a private in-memory db)
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            bcrypt_rounds: Work factor for the bootstrap password hash
        """
        self.path = path
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.bcrypt_rounds = bcrypt_rounds
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def initialize(self) -> None:
        """Open the connection, create the schema and the public domain.

        Idempotent: calling it on an open database does nothing.

        Raises:
            StorageFailure: If the schema can't be created (fatal at startup)
        """
        async with self._lock:
            if self._conn is not None:
                return

            conn: sqlite3.Connection | None = None
            try:
                if self.path != ":memory:":
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)

                conn = sqlite3.connect(
                    self.path,
                    timeout=self.busy_timeout_ms / 1000.0,
                    isolation_level=None,  # Autocommit by default, explicit transactions
                    check_same_thread=False,
                )
                conn.row_factory = sqlite3.Row

                conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
                if self.wal_mode:
                    conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")

                conn.executescript(SCHEMA_SQL)
                self._bootstrap_public_domain(conn)
            except (sqlite3.Error, OSError) as e:
                if conn is not None:
                    conn.close()
                raise StorageFailure(
                    f"Could not initialize database {self.path}: {e}", step="initialize"
                ) from e

            self._conn = conn

        logger.info("Initialized database", extra={"path": self.path})

    def _bootstrap_public_domain(self, conn: sqlite3.Connection) -> None:
        row = conn.execute(
            "SELECT id FROM domains WHERE name = ?", (PUBLIC_DOMAIN,)
        ).fetchone()
        if row:
            return
        conn.execute(
            "INSERT INTO domains (name, hashed_pass, ispublic, options) VALUES (?, ?, 1, ?)",
            (
                PUBLIC_DOMAIN,
                hash_password("", rounds=self.bcrypt_rounds),
                DomainOptions().to_json(),
            ),
        )
        logger.info("Created public domain")

    async def close(self) -> None:
        """Close the connection. Safe to call twice."""
        async with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
        logger.info("Closed database", extra={"path": self.path})

    @staticmethod
    def now() -> datetime:
        return utcnow()

    @asynccontextmanager
    async def locked(self) -> AsyncIterator[sqlite3.Connection]:
        """Hold the store-wide lock and yield the connection.

        Raises:
            StorageFailure: If the database is not open
        """
        async with self._lock:
            if self._conn is None:
                raise StorageFailure("Database is not open", step="connect")
            yield self._conn

    async def last_modified(self) -> datetime | None:
        """Newest modification time over all files, or None if empty."""
        async with self.locked() as conn:
            with translate_errors("last_modified"):
                row = conn.execute("SELECT MAX(modified) FROM fs").fetchone()
        if row is None or row[0] is None:
            return None
        return parse_ts(row[0])


@contextmanager
def translate_errors(step: str) -> Iterator[None]:
    """Re-raise sqlite3 errors as StorageFailure naming ``step``."""
    try:
        yield
    except sqlite3.Error as e:
        raise StorageFailure(f"{step} failed: {e}", step=step) from e


@contextmanager
def transaction(conn: sqlite3.Connection, step: str) -> Iterator[sqlite3.Connection]:
    """Run a block in its own committed transaction.

    Rolls back on any error. sqlite3 errors surface as StorageFailure
    naming ``step``; other exceptions propagate unchanged.
    """
    with translate_errors(step):
        conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        _rollback(conn)
        raise StorageFailure(f"{step} failed: {e}", step=step) from e
    except BaseException:
        _rollback(conn)
        raise


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")
