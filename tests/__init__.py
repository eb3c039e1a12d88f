"""
rwtxt store test suite.

This package contains:
- unit/: Unit tests per component (temporary SQLite files)
- integration/: End-to-end store behaviour and concurrency
"""
