"""
File repository: document lifecycle, history merging and lookups.

A save touches two tables: the ``fs`` row (slug, timestamps, serialized
history) and the ``fts`` row mirroring the current text. Both writes run
under one acquisition of the store-wide lock, each in its own committed
transaction:

    upsert  INSERT ... ON CONFLICT(id) DO UPDATE on fs
    index   insert or update the fts row

A failure in either step raises StorageFailure naming the step. Nothing
already committed is rolled back; saving the same (id, data) again
converges to the same state because history is always merged against
what is stored, never against the caller's copy.

Invariants:
    - A file's domain is fixed by its first save
    - Every save reloads the stored history before appending
    - Saving unchanged text appends no version
    - Created time is never overwritten after the first save
    - Listings and search skip files whose indexed text is empty
    - A file missing from fts is still readable by id or slug
    - An undecodable history reads as empty but is never overwritten

How to change safely:
    - Keep the two write steps in the same ``locked()`` block
    - Read queries must LEFT JOIN fts so an interrupted save doesn't hide
      the file
"""

from __future__ import annotations

import logging
import sqlite3

from ..errors import NotFoundError, StorageFailure, ValidationError
from ..history import VersionedText
from ..security import is_file_id, new_file_id
from .database import Database, transaction, translate_errors
from .domains import domain_id, normalize_domain_name
from .models import PUBLIC_DOMAIN, File, format_ts, parse_ts, read_history, utcnow
from .search import SearchIndex

logger = logging.getLogger(__name__)

SELECT_FILES = """
    SELECT fs.id, fs.slug, domains.name AS domain, fs.created, fs.modified,
           fts.data AS data, fs.history, fs.views
    FROM fs
    INNER JOIN domains ON fs.domainid = domains.id
    LEFT JOIN fts ON fts.id = fs.id
"""

UPSERT_SQL = """
    INSERT INTO fs (id, domainid, slug, created, modified, history, views)
    VALUES (?, ?, ?, ?, ?, ?, 0)
    ON CONFLICT(id) DO UPDATE SET
        slug = excluded.slug,
        modified = excluded.modified,
        history = excluded.history
"""


def normalize_slug(slug: str | None) -> str:
    return (slug or "").strip().lower()


def row_to_file(row: sqlite3.Row) -> File:
    """Build a File from a SELECT_FILES (or search) row."""
    history = read_history(row["history"], row["id"])
    data = row["data"]
    if data is None:
        # Not indexed yet
        data = history.current
    return File(
        id=row["id"],
        slug=row["slug"],
        domain=row["domain"],
        created=parse_ts(row["created"]),
        modified=parse_ts(row["modified"]),
        data=data,
        history=history,
        views=row["views"],
    )


class FileRepository:
    """Create, save and resolve files.

    Every public coroutine holds the store-wide lock for its whole
    duration.

    Args:
        db: Shared database
        search: FTS binding kept in step with every save
        order_by_created: Default listing order (creation instead of
            modification time)
    """

    def __init__(self, db: Database, search: SearchIndex, order_by_created: bool = False) -> None:
        self.db = db
        self.search = search
        self.order_by_created = order_by_created

    def new_file(self, slug: str = "", data: str = "", domain: str = "") -> File:
        """Construct an unsaved file with a fresh id.

        Args:
            slug: Human-readable path segment
            data: Initial text
            domain: Owning domain ("" means public)

        Returns:
            A File that exists only in memory until save()
        """
        now = utcnow()
        return File(
            id=new_file_id(),
            slug=normalize_slug(slug),
            domain=domain,
            created=now,
            modified=now,
            data=data,
            history=VersionedText.new(data),
        )

    async def save(self, file: File) -> File:
        """Persist a file and sync its index row.

        Args:
            file: File to save; ``file.data`` is the new text

        Returns:
            The stored file, with the merged history

        Raises:
            NotFoundError: If the domain doesn't exist
            ValidationError: If the id belongs to another domain
            StorageFailure: If a step fails (``step`` is "load", "decode",
                "upsert" or "index")
        """
        domain = normalize_domain_name(file.domain or PUBLIC_DOMAIN)
        slug = normalize_slug(file.slug)
        data = file.data or ""

        async with self.db.locked() as conn:
            with translate_errors("load"):
                did = domain_id(conn, domain)
                existing = conn.execute(
                    "SELECT domainid, created, history, views FROM fs WHERE id = ?",
                    (file.id,),
                ).fetchone()

            if existing is not None:
                if existing["domainid"] != did:
                    raise ValidationError(
                        f"file '{file.id}' belongs to another domain", field_name="domain"
                    )
                try:
                    history = VersionedText.from_json(existing["history"])
                except ValueError as e:
                    raise StorageFailure(
                        f"Stored history of '{file.id}' is undecodable: {e}", step="decode"
                    ) from e
                history.update(data)
                created = parse_ts(existing["created"])
                views = existing["views"]
            else:
                history = VersionedText.new(data)
                created = file.created
                views = 0

            modified = self.db.now()

            with transaction(conn, "upsert"):
                conn.execute(
                    UPSERT_SQL,
                    (
                        file.id,
                        did,
                        slug,
                        format_ts(created),
                        format_ts(modified),
                        history.to_json(),
                    ),
                )

            self.search.sync(conn, file.id, history.current)

        logger.debug(
            "Saved file",
            extra={
                "file_id": file.id,
                "domain": domain,
                "slug": slug,
                "versions": len(history),
                "inserted": existing is None,
            },
        )

        return File(
            id=file.id,
            slug=slug,
            domain=domain,
            created=created,
            modified=modified,
            data=history.current,
            history=history,
            views=views,
        )

    async def get(self, id_or_slug: str, domain: str = PUBLIC_DOMAIN) -> list[File]:
        """Resolve an id or a slug.

        An id-shaped identifier that exists is returned regardless of
        domain. Otherwise every file with that slug in ``domain`` is
        returned, most recently modified first.

        Raises:
            NotFoundError: If nothing matches
        """
        identifier = id_or_slug.strip()
        rows: list[sqlite3.Row] = []

        async with self.db.locked() as conn:
            with translate_errors("get"):
                if is_file_id(identifier):
                    rows = conn.execute(
                        SELECT_FILES + " WHERE fs.id = ? LIMIT 1", (identifier,)
                    ).fetchall()
                if not rows:
                    rows = conn.execute(
                        SELECT_FILES + " WHERE fs.slug = ? AND domains.name = ? ORDER BY fs.modified DESC",
                        (normalize_slug(identifier), normalize_domain_name(domain or PUBLIC_DOMAIN)),
                    ).fetchall()

        if not rows:
            raise NotFoundError("file", identifier)
        return [row_to_file(row) for row in rows]

    async def _list(
        self,
        step: str,
        domain: str,
        order: str,
        limit: int | None = None,
    ) -> list[File]:
        sql = (
            SELECT_FILES
            + " WHERE domains.name = ? AND LENGTH(fts.data) > 0"
            + f" ORDER BY {order} DESC"
        )
        params: list[object] = [normalize_domain_name(domain or PUBLIC_DOMAIN)]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        async with self.db.locked() as conn:
            with translate_errors(step):
                rows = conn.execute(sql, params).fetchall()
        return [row_to_file(row) for row in rows]

    def _order_column(self, order_by_created: bool | None) -> str:
        if order_by_created is None:
            order_by_created = self.order_by_created
        return "fs.created" if order_by_created else "fs.modified"

    async def get_all(self, domain: str, order_by_created: bool | None = None) -> list[File]:
        """All files in a domain with non-empty text, newest first.

        Args:
            domain: Domain name
            order_by_created: Sort by creation instead of modification
                time (default from the repository setting)
        """
        return await self._list("get_all", domain, self._order_column(order_by_created))

    async def get_top_x(
        self,
        domain: str,
        limit: int,
        order_by_created: bool | None = None,
    ) -> list[File]:
        """The ``limit`` newest files in a domain with non-empty text."""
        return await self._list(
            "get_top_x", domain, self._order_column(order_by_created), limit=limit
        )

    async def get_top_x_most_viewed(self, domain: str, limit: int) -> list[File]:
        """The ``limit`` most viewed files in a domain with non-empty text."""
        return await self._list("get_top_x_most_viewed", domain, "fs.views", limit=limit)

    async def find(self, query: str, domain: str) -> list[File]:
        """Full-text search within a domain.

        Args:
            query: FTS5 match expression (terms, prefixes, phrases)
            domain: Domain to search

        Returns:
            Files whose ``data`` is a highlighted snippet, newest first
        """
        name = normalize_domain_name(domain or PUBLIC_DOMAIN)
        async with self.db.locked() as conn:
            with translate_errors("find"):
                rows = self.search.search(conn, query, name)
        return [row_to_file(row) for row in rows]

    async def update_views(self, file: File | str) -> None:
        """Increment a file's view counter. Errors are logged, not raised."""
        file_id = file.id if isinstance(file, File) else file
        try:
            async with self.db.locked() as conn:
                conn.execute("UPDATE fs SET views = views + 1 WHERE id = ?", (file_id,))
        except (sqlite3.Error, StorageFailure) as e:
            logger.warning(f"Could not update views: {e}", extra={"file_id": file_id})

    async def exists(self, id_or_slug: str, domain: str) -> tuple[str, bool]:
        """Cheap existence check for an id or slug within a domain.

        Returns:
            (canonical id or "", whether several files share the slug)
        """
        identifier = id_or_slug.strip()
        name = normalize_domain_name(domain or PUBLIC_DOMAIN)

        async with self.db.locked() as conn:
            with translate_errors("exists"):
                row = conn.execute(
                    """
                    SELECT fs.id FROM fs INNER JOIN domains ON fs.domainid = domains.id
                    WHERE fs.id = ? AND domains.name = ?
                    """,
                    (identifier, name),
                ).fetchone()
                if row is not None:
                    return row["id"], False

                rows = conn.execute(
                    """
                    SELECT fs.id FROM fs INNER JOIN domains ON fs.domainid = domains.id
                    WHERE fs.slug = ? AND domains.name = ?
                    ORDER BY fs.modified DESC
                    """,
                    (normalize_slug(identifier), name),
                ).fetchall()

        if not rows:
            return "", False
        return rows[0]["id"], len(rows) > 1
