"""
CLI tools for rwtxt store administration.

- export: Zip posts and uploads out of a store

Invariants:
    - Tools work offline against the database file
"""

from .export import Exporter

__all__ = ["Exporter"]
