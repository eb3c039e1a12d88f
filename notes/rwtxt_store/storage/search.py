"""
FTS5 binding for file text.

The ``fts`` virtual table mirrors each file's current text, keyed by file
id. It is written synchronously by FileRepository.save() and read by
FileRepository.find() and the listing queries.

Invariants:
    - At most one fts row per file id
    - Match queries are always bound parameters, never concatenated
    - Rows with empty text are never returned by search
    - A malformed match query yields no results, not an error

How to change safely:
    - The lock-held methods take a connection and never lock; callers
      already hold Database.locked()
    - Keep snippet() column index in step with the table definition
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field

from .database import Database, transaction, translate_errors
from .models import read_history

logger = logging.getLogger(__name__)

SNIPPET_START = "<b>"
SNIPPET_END = "</b>"
SNIPPET_ELLIPSIS = "..."
SNIPPET_TOKENS = 30

# sqlite error messages caused by the match expression rather than the database
QUERY_ERROR_MARKERS = ("fts5", "syntax error", "unterminated", "no such column")

SEARCH_SQL = f"""
    SELECT fs.id, fs.slug, domains.name AS domain, fs.created, fs.modified,
           snippet(fts, 1, '{SNIPPET_START}', '{SNIPPET_END}', '{SNIPPET_ELLIPSIS}', {SNIPPET_TOKENS}) AS data,
           fs.history, fs.views
    FROM fts
    INNER JOIN fs ON fs.id = fts.id
    INNER JOIN domains ON fs.domainid = domains.id
    WHERE fts.data MATCH ?
    AND domains.name = ?
    AND LENGTH(fts.data) > 0
    ORDER BY fs.modified DESC
"""


@dataclass
class IndexConsistency:
    """Ids present on only one side of the fs/fts pair."""

    missing_from_index: set[str] = field(default_factory=set)
    orphaned_in_index: set[str] = field(default_factory=set)

    @property
    def consistent(self) -> bool:
        return not self.missing_from_index and not self.orphaned_in_index


class SearchIndex:
    """Full-text index over file text."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def has_row(self, conn: sqlite3.Connection, file_id: str) -> bool:
        """Whether ``file_id`` has ever been indexed. Caller holds the lock."""
        return conn.execute("SELECT 1 FROM fts WHERE id = ?", (file_id,)).fetchone() is not None

    def sync(self, conn: sqlite3.Connection, file_id: str, text: str) -> None:
        """Insert or update the index row for a file. Caller holds the lock.

        Runs in its own committed transaction.

        Raises:
            StorageFailure: With step "index" if the write fails
        """
        with transaction(conn, "index"):
            if self.has_row(conn, file_id):
                conn.execute("UPDATE fts SET data = ? WHERE id = ?", (text, file_id))
            else:
                conn.execute("INSERT INTO fts (id, data) VALUES (?, ?)", (file_id, text))

    def search(self, conn: sqlite3.Connection, query: str, domain: str) -> list[sqlite3.Row]:
        """Run a match query scoped to a domain. Caller holds the lock.

        Returns:
            Rows with a highlighted ``data`` snippet, newest first
        """
        try:
            return conn.execute(SEARCH_SQL, (query, domain)).fetchall()
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if any(marker in message for marker in QUERY_ERROR_MARKERS):
                logger.warning(f"FTS query error: {e}", extra={"domain": domain})
                return []
            raise

    def rebuild_check(self, conn: sqlite3.Connection) -> IndexConsistency:
        """Compare fs and fts ids. Caller holds the lock."""
        primary = {row["id"] for row in conn.execute("SELECT id FROM fs")}
        indexed = {row["id"] for row in conn.execute("SELECT id FROM fts")}
        return IndexConsistency(
            missing_from_index=primary - indexed,
            orphaned_in_index=indexed - primary,
        )

    async def check(self) -> IndexConsistency:
        """Report fs/fts inconsistencies."""
        async with self.db.locked() as conn:
            with translate_errors("rebuild_check"):
                return self.rebuild_check(conn)

    async def rebuild(self) -> IndexConsistency:
        """Repair the index from the file rows.

        Missing rows are re-created from each file's stored history and
        orphaned rows are removed.

        Returns:
            What was repaired
        """
        async with self.db.locked() as conn:
            with translate_errors("rebuild"):
                report = self.rebuild_check(conn)
                texts = {
                    row["id"]: read_history(row["history"], row["id"]).current
                    for row in conn.execute("SELECT id, history FROM fs")
                    if row["id"] in report.missing_from_index
                }
            with transaction(conn, "rebuild"):
                for file_id, text in texts.items():
                    conn.execute("INSERT INTO fts (id, data) VALUES (?, ?)", (file_id, text))
                for file_id in report.orphaned_in_index:
                    conn.execute("DELETE FROM fts WHERE id = ?", (file_id,))

        if not report.consistent:
            logger.info(
                "Rebuilt FTS index",
                extra={
                    "reindexed": len(report.missing_from_index),
                    "removed": len(report.orphaned_in_index),
                },
            )
        return report
