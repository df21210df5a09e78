"""
Runtime configuration.

Values come from the process environment (optionally seeded from a
project-level .env file) with defaults suitable for a local SQLite store.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .env import load_env
from .errors import ValidationError

DEFAULT_DB_PATH = "data/contacts.db"
DEFAULT_BATCH_SIZE = 50
MAX_BATCH_SIZE = 50


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got '{raw}'")


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got '{raw}'")


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one process."""

    db_path: Path = Path(DEFAULT_DB_PATH)
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    batch_size: int = DEFAULT_BATCH_SIZE
    task_timeout: float = 30.0
    store_timeout: float = 10.0

    def __post_init__(self):
        if not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            raise ValidationError(
                f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {self.batch_size}"
            )
        if self.task_timeout <= 0:
            raise ValidationError("task_timeout must be positive")
        if self.store_timeout <= 0:
            raise ValidationError("store_timeout must be positive")

    @classmethod
    def from_env(cls, db_path: Optional[str] = None) -> "Settings":
        """
        Build settings from CONTACTCORE_* environment variables.

        Args:
            db_path: Explicit database path, takes precedence over the env

        Returns:
            Settings instance
        """
        load_env()
        return cls(
            db_path=Path(db_path or os.getenv("CONTACTCORE_DB_PATH") or DEFAULT_DB_PATH),
            log_level=os.getenv("CONTACTCORE_LOG_LEVEL", "INFO").upper(),
            log_dir=Path(os.getenv("CONTACTCORE_LOG_DIR", "logs")),
            batch_size=_read_int("CONTACTCORE_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            task_timeout=_read_float("CONTACTCORE_TASK_TIMEOUT", 30.0),
            store_timeout=_read_float("CONTACTCORE_STORE_TIMEOUT", 10.0),
        )
