"""
dyndb Test Suite.

This package contains:
- unit/: Unit tests (no database, or in-memory SQLite)
- integration/: Integration tests (file-backed SQLite sessions)
"""
