"""
Binary payload cache: uploads and resized image renditions.

Two tables with the same shape, ``blobs`` and ``cached_images``. Every
successful fetch bumps the row's view counter; a failing bump is logged
and the payload is still returned.

Invariants:
    - Re-saving an id replaces name and data but keeps the view counter
    - Fetch-time counter failures never fail the fetch
"""

from __future__ import annotations

import logging
import sqlite3

from ..errors import NotFoundError
from ..security import tagged_hash
from .database import Database, transaction, translate_errors
from .models import Blob

logger = logging.getLogger(__name__)

BLOBS_TABLE = "blobs"
IMAGES_TABLE = "cached_images"

ID_LENGTH = 32


class BlobCache:
    """Store and fetch binary payloads."""

    def __init__(self, db: Database) -> None:
        self.db = db

    @staticmethod
    def content_id(data: bytes) -> str:
        """Content-derived id for an upload."""
        return tagged_hash("rwtxt upload content id", data)[:ID_LENGTH]

    @staticmethod
    def resized_image_id(blob_id: str, width: int) -> str:
        """Id of the ``width``-pixel rendition of an uploaded image."""
        return tagged_hash("rwtxt resized image id", f"{blob_id}:{width}")[:ID_LENGTH]

    async def save_blob(self, blob_id: str, name: str, data: bytes) -> None:
        """Insert or replace an upload.

        Raises:
            StorageFailure: On database errors
        """
        await self._save(BLOBS_TABLE, blob_id, name, data)

    async def get_blob(self, blob_id: str) -> Blob:
        """Fetch an upload and count the view.

        Raises:
            NotFoundError: If there is no such upload
        """
        return await self._get(BLOBS_TABLE, "blob", blob_id)

    async def save_resized_image(self, image_id: str, name: str, data: bytes) -> None:
        """Insert or replace a resized rendition."""
        await self._save(IMAGES_TABLE, image_id, name, data)

    async def get_resized_image(self, image_id: str) -> Blob:
        """Fetch a resized rendition and count the view.

        Raises:
            NotFoundError: If there is no such rendition
        """
        return await self._get(IMAGES_TABLE, "image", image_id)

    async def list_blob_ids(self) -> list[str]:
        """Ids of every upload."""
        async with self.db.locked() as conn:
            with translate_errors("list_blob_ids"):
                rows = conn.execute(f"SELECT id FROM {BLOBS_TABLE} ORDER BY id").fetchall()
        return [row["id"] for row in rows]

    async def _save(self, table: str, blob_id: str, name: str, data: bytes) -> None:
        step = f"save_{table}"
        async with self.db.locked() as conn:
            with transaction(conn, step):
                conn.execute(
                    f"""
                    INSERT INTO {table} (id, name, data) VALUES (?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET name = excluded.name, data = excluded.data
                    """,
                    (blob_id, name, data),
                )
        logger.debug("Saved payload", extra={"table": table, "id": blob_id, "size": len(data)})

    async def _get(self, table: str, kind: str, blob_id: str) -> Blob:
        async with self.db.locked() as conn:
            with translate_errors(f"get_{kind}"):
                row = conn.execute(
                    f"SELECT id, name, data, views FROM {table} WHERE id = ?", (blob_id,)
                ).fetchone()
            if row is not None:
                try:
                    conn.execute(f"UPDATE {table} SET views = views + 1 WHERE id = ?", (blob_id,))
                except sqlite3.Error as e:
                    logger.warning(f"Could not update views: {e}", extra={"table": table, "id": blob_id})

        if row is None:
            raise NotFoundError(kind, blob_id)
        return Blob(id=row["id"], name=row["name"] or "", data=bytes(row["data"] or b""), views=row["views"])
