"""Dashboard configuration primitives."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _load_env(dotenv_path: Optional[Path] = None) -> None:
    """Load the .env file once for the process."""

    if getattr(_load_env, "_loaded", False):  # type: ignore[attr-defined]
        return

    load_dotenv(dotenv_path)
    setattr(_load_env, "_loaded", True)  # type: ignore[attr-defined]


def _as_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value not in (None, "") else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Container for dashboard configuration."""

    collection: str = "DatosFidelizacion"
    points_collection: str = "Fidelizacion"
    firestore_project: Optional[str] = None
    local_utc_offset_hours: int = -5
    log_level: str = "INFO"
    fixture_path: Optional[str] = None

    @classmethod
    def from_env(cls, dotenv_path: Optional[Path] = None) -> "Settings":
        """Build ``Settings`` using environment variables (optionally from ``.env``)."""

        _load_env(dotenv_path)
        defaults = cls()
        return cls(
            collection=os.getenv("LOYALTY_COLLECTION", defaults.collection),
            points_collection=os.getenv("LOYALTY_POINTS_COLLECTION", defaults.points_collection),
            firestore_project=os.getenv("FIRESTORE_PROJECT") or None,
            local_utc_offset_hours=_as_int(os.getenv("LOYALTY_UTC_OFFSET_HOURS"), defaults.local_utc_offset_hours),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
            fixture_path=os.getenv("LOYALTY_FIXTURE") or None,
        )


@lru_cache()
def get_settings(dotenv_path: Optional[Path] = None) -> Settings:
    """Return a cached settings instance."""

    return Settings.from_env(dotenv_path=dotenv_path)
