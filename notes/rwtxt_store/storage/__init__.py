"""
SQLite-backed storage for domains, keys, files, search and blobs.

All components share one Database and its lock. TextStore wires them.
"""

from .blobs import BlobCache
from .database import Database
from .domains import DomainDirectory
from .files import FileRepository
from .keys import KeyRegistry, KeyTouchWorker, SessionView
from .models import PUBLIC_DOMAIN, Blob, Domain, DomainOptions, File
from .search import IndexConsistency, SearchIndex
from .store import TextStore

__all__ = [
    "Blob",
    "BlobCache",
    "Database",
    "Domain",
    "DomainDirectory",
    "DomainOptions",
    "File",
    "FileRepository",
    "IndexConsistency",
    "KeyRegistry",
    "KeyTouchWorker",
    "PUBLIC_DOMAIN",
    "SearchIndex",
    "SessionView",
    "TextStore",
]
