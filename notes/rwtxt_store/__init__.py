"""
rwtxt store - multi-tenant, versioned text storage on SQLite.

This package implements the storage core of a note-taking service:
- Domains: isolated, password-protected namespaces
- Access keys: bearer tokens granting a session in one domain
- Files: documents with an append-only diff history
- FTS5 full-text search with highlighted snippets
- A cache for uploads and resized images

Architecture:
    ┌─────────────┐     ┌──────────────────────────────────────┐
    │ HTTP layer  │────▶│              TextStore               │
    │ (external)  │     │ domains · keys · files · blobs       │
    └─────────────┘     └──────────────────┬───────────────────┘
                                           │ one asyncio.Lock
                                           ▼
                        ┌──────────────────────────────────────┐
                        │   SQLite: fs, fts, domains, keys,    │
                        │   blobs, cached_images               │
                        └──────────────────────────────────────┘

Invariants:
    - Every public operation holds the store-wide lock end to end
    - The "public" domain always exists and has no password
    - A file's domain never changes after its first save
    - File history only grows

How to change safely:
    - Store new per-domain settings in DomainOptions, not new columns
    - New history fields need defaults; stored JSON is decoded leniently
"""

from ._version import __version__

__all__ = ["__version__"]
