"""
TextStore: wires the database and every storage component together.

Example:
    >>> settings = StoreSettings(db_path="/tmp/rwtxt.db")
    >>> async with TextStore(settings) as store:
    ...     await store.domains.create_domain("notes", "secret")
    ...     f = store.files.new_file("hello", "hello world", domain="notes")
    ...     await store.files.save(f)
"""

from __future__ import annotations

import logging
from datetime import datetime
from types import TracebackType

from ..config import StoreSettings
from ..errors import ValidationError
from .blobs import BlobCache
from .database import Database
from .domains import DomainDirectory, normalize_domain_name
from .files import FileRepository
from .keys import KeyRegistry, KeyTouchWorker
from .models import PUBLIC_DOMAIN, File
from .search import SearchIndex

logger = logging.getLogger(__name__)


class TextStore:
    """The storage core as one object.

    Attributes:
        db: Database handle and lock
        domains: Domain directory
        keys: Access key registry
        touch_worker: Background key-touch task
        search: FTS binding
        files: File repository
        blobs: Upload and resized image cache
    """

    def __init__(self, settings: StoreSettings | None = None) -> None:
        self.settings = settings or StoreSettings()
        self.db = Database(
            self.settings.db_path,
            wal_mode=self.settings.wal_mode,
            busy_timeout_ms=self.settings.busy_timeout_ms,
            bcrypt_rounds=self.settings.bcrypt_rounds,
        )
        self.domains = DomainDirectory(self.db, bcrypt_rounds=self.settings.bcrypt_rounds)
        self.keys = KeyRegistry(self.db, self.domains)
        self.touch_worker = KeyTouchWorker(self.keys, queue_size=self.settings.touch_queue_size)
        self.keys.touch_worker = self.touch_worker
        self.search = SearchIndex(self.db)
        self.files = FileRepository(
            self.db, self.search, order_by_created=self.settings.order_by_created
        )
        self.blobs = BlobCache(self.db)

    async def start(self) -> None:
        """Create the schema and start the key-touch worker.

        Raises:
            StorageFailure: If the schema can't be created
        """
        await self.db.initialize()
        await self.touch_worker.start()
        logger.info("Started text store", extra={"db_path": self.settings.db_path})

    async def stop(self) -> None:
        """Stop the worker and close the database."""
        await self.touch_worker.stop()
        await self.db.close()
        logger.info("Stopped text store")

    async def __aenter__(self) -> TextStore:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    def can_browse(self, domain: str) -> bool:
        """Whether a domain may be listed and searched.

        The shared public domain is only browsable on a private instance.
        """
        return normalize_domain_name(domain) != PUBLIC_DOMAIN or self.settings.private

    def _check_browse(self, domain: str) -> None:
        if not self.can_browse(domain):
            raise ValidationError("cannot browse the public domain", field_name="domain")

    async def list_files(self, domain: str) -> list[File]:
        """Every non-empty file in a domain with content stripped.

        Raises:
            ValidationError: If the domain can't be browsed
        """
        self._check_browse(domain)
        files = await self.files.get_all(domain)
        return [f.without_content() for f in files]

    async def search_files(self, domain: str, query: str) -> list[File]:
        """Search a domain.

        Raises:
            ValidationError: If the domain can't be browsed
        """
        self._check_browse(domain)
        return await self.files.find(query, domain)

    async def last_modified(self) -> datetime | None:
        return await self.db.last_modified()
