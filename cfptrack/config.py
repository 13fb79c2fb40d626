from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_SCORING_THRESHOLD = 70
MAX_SCORING_THRESHOLD = 900
DEFAULT_CFP_DAYS_BEFORE = 7
MAX_CFP_DAYS_BEFORE = 90


def _resolve_project_root() -> Path:
    override = os.getenv("CFPTRACK_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


def _default_database_url() -> str:
    override = os.getenv("CFPTRACK_DATABASE_URL", "").strip()
    if override:
        return override
    return f"sqlite:///{_resolve_project_root() / 'data' / 'cfptrack.db'}"


class Settings(BaseModel):
    project_root: Path = Field(default_factory=_resolve_project_root)
    data_dir: Path = Field(default_factory=lambda: _resolve_project_root() / "data")
    database_url: str = Field(default_factory=_default_database_url)

    # Shared secret expected as "Authorization: Bearer <secret>" on the cron trigger.
    cron_secret: str = Field(default_factory=lambda: os.getenv("CRON_SECRET", "").strip())

    log_level: str = Field(default_factory=lambda: os.getenv("CFPTRACK_LOG_LEVEL", "INFO").upper())
    host: str = Field(default_factory=lambda: os.getenv("CFPTRACK_HOST", "127.0.0.1"))
    port: int = Field(default_factory=lambda: int(os.getenv("CFPTRACK_PORT", "8001")))

    def ensure_directories(self) -> None:
        if self.database_url.startswith("sqlite:///") and ":memory:" not in self.database_url:
            self.data_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Set up root logging for the server entry points from ``CFPTRACK_LOG_LEVEL``.

    A no-op when the root logger already has handlers (the CLI configures its own).
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
