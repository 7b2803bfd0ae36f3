from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _resolve_home() -> Path:
    override = _env("RETROBOARD_HOME")
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).parent.resolve()


def _resolve_database_path() -> Path:
    override = _env("RETROBOARD_DB")
    if override:
        return Path(override).expanduser().resolve()
    return _resolve_home() / "data" / "retroboard.db"


class Settings(BaseModel):
    home: Path = Field(default_factory=_resolve_home)
    database_path: Path = Field(default_factory=_resolve_database_path)

    # "sql" keeps everything in the local database, "rest" talks to a
    # PostgREST-compatible service (e.g. a hosted Supabase project).
    backend: str = Field(default_factory=lambda: _env("RETROBOARD_BACKEND", "sql").lower())
    rest_url: str = Field(default_factory=lambda: _env("RETROBOARD_REST_URL"))
    rest_key: str = Field(default_factory=lambda: _env("RETROBOARD_REST_KEY"))
    request_timeout_seconds: float = Field(
        default_factory=lambda: _env("RETROBOARD_TIMEOUT", "15") or "15", validate_default=True,
    )

    base_url: str = Field(default_factory=lambda: _env("RETROBOARD_BASE_URL", "http://127.0.0.1:8002"))

    @field_validator("request_timeout_seconds", mode="before")
    @classmethod
    def parse_timeout(cls, v):
        try:
            timeout = float(v)
        except (TypeError, ValueError):
            raise ValueError(f"RETROBOARD_TIMEOUT must be a number of seconds, got {v!r}") from None
        if timeout <= 0:
            raise ValueError(f"RETROBOARD_TIMEOUT must be positive, got {v!r}")
        return timeout

    @property
    def data_dir(self) -> Path:
        return self.database_path.parent

    @property
    def uses_rest(self) -> bool:
        return self.backend == "rest"

    def ensure_directories(self) -> None:
        if not self.uses_rest:
            self.data_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_directories()
    return settings
