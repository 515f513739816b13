"""
Configuration for dyndb.

Settings are read from environment variables with the ``DYNDB_`` prefix
(e.g. ``DYNDB_DATABASE=/var/lib/dyndb/store.sqlite3``) or passed explicitly.

Invariants:
    - All settings have sensible defaults for local development
    - fetch_batch_size stays under SQLite's bound-parameter limit

How to change safely:
    - Add new settings with defaults that keep existing behaviour
    - Keep the env prefix stable
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class DynDbSettings(BaseSettings):
    """Data store configuration.

    Attributes:
        database: SQLite file path, or ":memory:" for a private in-memory store
        reset_on_open: Drop all data and reload bootstrap metadata on open
        busy_timeout_ms: SQLite busy timeout
        wal_mode: Use write-ahead logging for database files
        foreign_keys: Enforce foreign keys between identity and attribute rows
        fetch_batch_size: Maximum ids per bulk attribute fetch
        log_level: Logging level used by setup_logging
        log_format: Log format used by setup_logging (json, text)
    """

    database: str = Field(default="dyndb.sqlite3")
    reset_on_open: bool = Field(default=False)
    busy_timeout_ms: int = Field(default=5000, ge=0)
    wal_mode: bool = Field(default=True)
    foreign_keys: bool = Field(default=True)
    fetch_batch_size: int = Field(default=500, ge=1, le=999)
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    model_config = SettingsConfigDict(env_prefix="DYNDB_")

    @property
    def in_memory(self) -> bool:
        """Whether the database lives only in this process."""
        return self.database == ":memory:"

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "dyndb configuration loaded",
            extra={
                "database": self.database,
                "reset_on_open": self.reset_on_open,
                "wal_mode": self.wal_mode,
                "foreign_keys": self.foreign_keys,
                "fetch_batch_size": self.fetch_batch_size,
                "log_level": self.log_level,
            },
        )
