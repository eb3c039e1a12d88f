"""
Unit tests for the Database handle.

Tests cover:
- Schema bootstrap and the public domain
- Lock discipline
- Transactions and error translation
"""

import asyncio
import os
import sqlite3

import pytest

from notes.rwtxt_store.errors import StorageFailure
from notes.rwtxt_store.security import check_password
from notes.rwtxt_store.storage.database import Database, transaction


class TestDatabase:
    """Tests for Database."""

    @pytest.fixture
    def db(self, data_dir):
        """Create database handle (not yet initialized)."""
        return Database(os.path.join(data_dir, "rwtxt.db"), bcrypt_rounds=4)

    @pytest.mark.asyncio
    async def test_initialize_creates_schema(self, db):
        """All tables and indexes exist after initialize()."""
        await db.initialize()
        try:
            async with db.locked() as conn:
                names = {
                    row["name"]
                    for row in conn.execute("SELECT name FROM sqlite_master WHERE type IN ('table', 'index')")
                }
        finally:
            await db.close()

        for name in ("fs", "fts", "domains", "keys", "blobs", "cached_images", "fsslugs", "domainsname"):
            assert name in names

    @pytest.mark.asyncio
    async def test_public_domain_bootstrapped(self, db):
        """The public domain exists, is public and has no password."""
        await db.initialize()
        try:
            async with db.locked() as conn:
                row = conn.execute(
                    "SELECT hashed_pass, ispublic FROM domains WHERE name = 'public'"
                ).fetchone()
        finally:
            await db.close()

        assert row["ispublic"] == 1
        assert check_password(row["hashed_pass"], "")

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, db):
        """Re-opening an existing database doesn't duplicate the public domain."""
        await db.initialize()
        await db.initialize()
        await db.close()

        await db.initialize()
        try:
            async with db.locked() as conn:
                count = conn.execute("SELECT COUNT(*) FROM domains WHERE name = 'public'").fetchone()[0]
        finally:
            await db.close()
        assert count == 1

    @pytest.mark.asyncio
    async def test_initialize_failure_is_storage_failure(self, data_dir):
        """An unusable path fails initialization with StorageFailure."""
        db = Database(data_dir, bcrypt_rounds=4)  # a directory, not a file
        with pytest.raises(StorageFailure) as exc_info:
            await db.initialize()
        assert exc_info.value.step == "initialize"
        assert db.is_open is False

    @pytest.mark.asyncio
    async def test_locked_requires_open(self, db):
        """Using a closed database raises StorageFailure."""
        with pytest.raises(StorageFailure):
            async with db.locked():
                pass

    @pytest.mark.asyncio
    async def test_close_twice(self, db):
        """close() is idempotent."""
        await db.initialize()
        await db.close()
        await db.close()
        assert db.is_open is False

    @pytest.mark.asyncio
    async def test_lock_is_exclusive(self, db):
        """Only one holder at a time; the lock is released after errors."""
        await db.initialize()
        active = 0
        peak = 0

        async def hold():
            nonlocal active, peak
            async with db.locked():
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        async def fail():
            async with db.locked():
                raise RuntimeError("boom")

        try:
            results = await asyncio.gather(hold(), fail(), hold(), hold(), return_exceptions=True)
        finally:
            await db.close()

        assert peak == 1
        assert isinstance(results[1], RuntimeError)

    @pytest.mark.asyncio
    async def test_transaction_rolls_back(self, db):
        """sqlite errors roll back and surface as StorageFailure with the step."""
        await db.initialize()
        try:
            async with db.locked() as conn:
                with pytest.raises(StorageFailure) as exc_info:
                    with transaction(conn, "upsert"):
                        conn.execute(
                            "INSERT INTO blobs (id, name, data) VALUES ('a', 'n', x'00')"
                        )
                        conn.execute("INSERT INTO no_such_table VALUES (1)")
                assert exc_info.value.step == "upsert"
                assert isinstance(exc_info.value.__cause__, sqlite3.Error)
                assert conn.execute("SELECT COUNT(*) FROM blobs").fetchone()[0] == 0
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_last_modified_empty(self, db):
        """An empty store has no last-modified time."""
        await db.initialize()
        try:
            assert await db.last_modified() is None
        finally:
            await db.close()
