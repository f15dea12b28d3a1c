from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field


def _resolve_home() -> Path:
    override = os.getenv("ACCORD_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


class Settings(BaseModel):
    home: Path = Field(default_factory=_resolve_home)
    data_dir: Path = Field(default_factory=lambda: _resolve_home() / "data")
    database_url_override: str = Field(default_factory=lambda: os.getenv("ACCORD_DATABASE_URL", "").strip())

    host: str = Field(default_factory=lambda: os.getenv("ACCORD_HOST", "127.0.0.1"))
    port: int = Field(default_factory=lambda: int(os.getenv("ACCORD_PORT", "8001")))
    log_level: str = Field(default_factory=lambda: os.getenv("ACCORD_LOG_LEVEL", "INFO").upper())

    @property
    def database_path(self) -> Path:
        return self.data_dir / "accord.db"

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return f"sqlite:///{self.database_path}"

    def ensure_directories(self) -> None:
        if not self.database_url_override:
            self.data_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_directories()
    return settings
