"""
Access keys: issuance, resolution and last-used bookkeeping.

A key is a bearer token bound to one domain. Clients present all of their
keys at once as a comma-separated cookie value; resolve_cookie() turns that
into a SessionView and hands the resolved tokens to the touch worker, which
refreshes their last-used timestamps off the request path.

Invariants:
    - A key is valid only while its domain resolves to a non-empty name
    - Keys are never deleted
    - Touching keys never raises to the caller and never blocks it
    - One failing token doesn't prevent touching the others

How to change safely:
    - Keep KeyTouchWorker.submit() synchronous and non-blocking
    - The worker must survive any error raised by touch_keys()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from ..errors import NotFoundError
from ..security import new_access_token
from .database import Database, transaction, translate_errors
from .domains import DomainDirectory, domain_id, normalize_domain_name, row_to_domain
from .models import PUBLIC_DOMAIN, Domain, format_ts

logger = logging.getLogger(__name__)


@dataclass
class SessionView:
    """Domains a client is signed into, resolved from its cookie.

    Attributes:
        domain_keys: Domain name to access token ("" for public)
        default_domain: First signed-in domain, or public
    """

    domain_keys: dict[str, str] = field(default_factory=dict)
    default_domain: str = PUBLIC_DOMAIN

    @property
    def domains(self) -> list[str]:
        return sorted(self.domain_keys)

    def is_signed_in(self, domain: str) -> bool:
        return domain.strip().lower() in self.domain_keys

    def key_for(self, domain: str) -> str | None:
        return self.domain_keys.get(domain.strip().lower())

    def cookie_value(self) -> str:
        """Tokens to write back into the cookie."""
        return ",".join(token for token in self.domain_keys.values() if token)


class KeyRegistry:
    """Issue and resolve access keys.

    Args:
        db: Shared database
        domains: Directory used to re-authenticate on issue
        touch_worker: Worker that receives tokens seen by resolve_cookie()
    """

    def __init__(
        self,
        db: Database,
        domains: DomainDirectory,
        touch_worker: KeyTouchWorker | None = None,
    ) -> None:
        self.db = db
        self.domains = domains
        self.touch_worker = touch_worker

    async def issue_key(self, domain: str, password: str) -> str:
        """Authenticate and mint a new key for ``domain``.

        Returns:
            The new token

        Raises:
            NotFoundError: If the domain doesn't exist (or vanished)
            InvalidCredentialsError: If the password doesn't match
        """
        authenticated = await self.domains.authenticate_domain(domain, password)
        token = new_access_token()

        async with self.db.locked() as conn:
            with translate_errors("issue_key"):
                did = domain_id(conn, authenticated.name)
            with transaction(conn, "issue_key"):
                conn.execute(
                    "INSERT INTO keys (domainid, key, lastused) VALUES (?, ?, ?)",
                    (did, token, format_ts(self.db.now())),
                )

        logger.info("Issued access key", extra={"domain": authenticated.name})
        return token

    async def resolve_key(self, token: str) -> Domain:
        """Find the domain a key grants access to.

        Raises:
            NotFoundError: If the token is unknown or its domain is gone
        """
        async with self.db.locked() as conn:
            with translate_errors("resolve_key"):
                row = conn.execute(
                    """
                    SELECT domains.id, domains.name, domains.ispublic, domains.options
                    FROM keys INNER JOIN domains ON keys.domainid = domains.id
                    WHERE keys.key = ?
                    """,
                    (token,),
                ).fetchone()
        if row is None or not row["name"]:
            raise NotFoundError("key", token, message="access key is not valid")
        return row_to_domain(row)

    async def touch_keys(self, tokens: list[str]) -> int:
        """Refresh last-used timestamps.

        Each token is updated on its own; failures are logged and skipped.

        Returns:
            Number of keys touched
        """
        if not tokens:
            return 0
        touched = 0
        async with self.db.locked() as conn:
            now = format_ts(self.db.now())
            for token in tokens:
                try:
                    cursor = conn.execute(
                        "UPDATE keys SET lastused = ? WHERE key = ?", (now, token)
                    )
                    touched += cursor.rowcount
                except sqlite3.Error as e:
                    logger.warning(f"Could not touch key: {e}")
        logger.debug("Touched keys", extra={"requested": len(tokens), "touched": touched})
        return touched

    async def keys_for_domain(self, domain: str) -> list[str]:
        """Tokens issued for a domain, most recently used first."""
        name = normalize_domain_name(domain)
        async with self.db.locked() as conn:
            with translate_errors("keys_for_domain"):
                did = domain_id(conn, name)
                rows = conn.execute(
                    "SELECT key FROM keys WHERE domainid = ? ORDER BY lastused DESC",
                    (did,),
                ).fetchall()
        return [row["key"] for row in rows]

    async def resolve_cookie(self, cookie_value: str | None) -> SessionView:
        """Resolve a comma-separated list of tokens into a session.

        Unknown tokens are ignored. The public domain is always present with
        an empty token. Resolved tokens are queued for touching; this call
        never waits for that.
        """
        view = SessionView(domain_keys={}, default_domain="")
        resolved: list[str] = []

        for token in (cookie_value or "").split(","):
            token = token.strip()
            if not token:
                continue
            try:
                domain = await self.resolve_key(token)
            except NotFoundError:
                continue
            if not view.default_domain:
                view.default_domain = domain.name
            view.domain_keys[domain.name] = token
            resolved.append(token)

        view.domain_keys[PUBLIC_DOMAIN] = ""
        if not view.default_domain:
            view.default_domain = PUBLIC_DOMAIN

        if resolved and self.touch_worker is not None:
            self.touch_worker.submit(resolved)

        logger.debug("Resolved session", extra={"domains": view.domains})
        return view


class KeyTouchWorker:
    """Detached task that applies key touches in the background.

    Batches are handed over through a bounded queue. Nothing waits for
    them: when the queue is full or the worker is stopped the batch is
    dropped.

    Example:
        >>> worker = KeyTouchWorker(registry)
        >>> await worker.start()
        >>> worker.submit(["token-a", "token-b"])
        True
        >>> await worker.stop()
    """

    def __init__(self, registry: KeyRegistry, queue_size: int = 1000) -> None:
        self.registry = registry
        self._queue: asyncio.Queue[list[str]] = asyncio.Queue(maxsize=queue_size)
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._touched_count = 0
        self._dropped_count = 0
        self._error_count = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the worker task."""
        if self._running:
            logger.warning("Key touch worker already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="rwtxt-key-touch")
        logger.info("Started key touch worker")

    async def stop(self, drain: bool = True) -> None:
        """Stop the worker.

        Args:
            drain: Apply already queued batches before stopping
        """
        self._running = False
        if self._task is None:
            return
        if drain:
            await self._queue.join()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Stopped key touch worker", extra=self.get_stats())

    def submit(self, tokens: list[str]) -> bool:
        """Queue a batch without waiting.

        Returns:
            True if queued, False if dropped
        """
        if not self._running:
            self._dropped_count += 1
            logger.debug("Key touch worker not running, dropping batch")
            return False
        try:
            self._queue.put_nowait(list(tokens))
        except asyncio.QueueFull:
            self._dropped_count += 1
            logger.debug("Key touch queue full, dropping batch")
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued batch has been applied."""
        await self._queue.join()

    async def _run(self) -> None:
        try:
            while True:
                tokens = await self._queue.get()
                try:
                    self._touched_count += await self.registry.touch_keys(tokens)
                except Exception as e:
                    self._error_count += 1
                    logger.error(f"Key touch failed: {e}", exc_info=True)
                finally:
                    self._queue.task_done()
        except asyncio.CancelledError:
            logger.debug("Key touch worker cancelled")
            raise

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "pending": self._queue.qsize(),
            "touched_count": self._touched_count,
            "dropped_count": self._dropped_count,
            "error_count": self._error_count,
        }
