"""
Text history for documents.

VersionedText keeps a document's current text plus an append-only list of
deltas, enough to rebuild and diff any prior version.
"""

from .versioned_text import Version, VersionedText, apply_delta, compute_delta

__all__ = [
    "Version",
    "VersionedText",
    "apply_delta",
    "compute_delta",
]
