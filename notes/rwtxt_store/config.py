"""
Configuration for the rwtxt store.

Uses pydantic-settings for environment variable loading. Every value the
excluded HTTP layer used to take from command-line flags (private mode,
listing order) reaches the core through these settings as plain values.

Invariants:
    - All settings have sensible defaults for local development
    - Password hashes and access tokens are never part of the settings

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep the RWTXT_ prefix so settings don't collide with other services
"""

from __future__ import annotations

import logging
import os

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class StoreSettings(BaseSettings):
    """Store configuration loaded from environment."""

    # SQLite
    db_path: str = Field(default="rwtxt.db", description="Path to the SQLite database file")
    wal_mode: bool = Field(default=True, description="Enable SQLite WAL journal mode")
    busy_timeout_ms: int = Field(default=5000, description="SQLite busy timeout")

    # Behaviour passed through from the HTTP layer
    order_by_created: bool = Field(default=False, description="Order listings by creation time")
    private: bool = Field(default=False, description="Allow listing and searching the public domain")

    # Session bookkeeping
    touch_queue_size: int = Field(default=1000, description="Pending key-touch batches before dropping")

    # Password hashing
    bcrypt_rounds: int = Field(default=10, description="bcrypt work factor")

    # Observability
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="Log format (json, text)")

    model_config = {"env_prefix": "RWTXT_"}

    def validate_settings(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.db_path:
            raise ValueError("RWTXT_DB_PATH is required")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError(f"RWTXT_BCRYPT_ROUNDS must be between 4 and 31, got {self.bcrypt_rounds}")
        if self.touch_queue_size < 1:
            raise ValueError("RWTXT_TOUCH_QUEUE_SIZE must be positive")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Invalid RWTXT_LOG_LEVEL '{self.log_level}'")
        if self.log_format not in ("json", "text"):
            raise ValueError(f"Invalid RWTXT_LOG_FORMAT '{self.log_format}'. Must be json or text")

        parent = os.path.dirname(os.path.abspath(self.db_path))
        if not os.path.exists(parent):
            logger.warning(
                f"Database directory does not exist: {parent}. "
                "It will be created on initialization."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Store configuration loaded",
            extra={
                "db_path": self.db_path,
                "wal_mode": self.wal_mode,
                "order_by_created": self.order_by_created,
                "private": self.private,
                "log_level": self.log_level,
            },
        )
