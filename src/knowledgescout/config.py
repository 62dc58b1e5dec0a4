"""Application configuration defaults."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Literal, Mapping

from knowledgescout.answering.composer import DEFAULT_CHAT_MODEL
from knowledgescout.embedding.encoder import DEFAULT_DIMENSION, DEFAULT_MODEL

ENV_PREFIX = "KNOWLEDGESCOUT_"


def _get_default_db_path() -> Path:
    """Get the default database path based on execution context."""
    user_db = Path.home() / ".local" / "share" / "knowledgescout" / "knowledgescout.db"

    if getattr(sys, "frozen", False):
        return user_db

    # When running from source, prefer local data/ if it exists
    local_db = Path("data/knowledgescout.db")
    if local_db.exists():
        return local_db

    return user_db


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    embedding_backend: Literal["sentence-transformers", "openai", "null"] = "sentence-transformers"
    model_name: str = DEFAULT_MODEL
    embedding_dimension: int = DEFAULT_DIMENSION
    allow_fallback_embeddings: bool = False
    chunk_chars: int = 1000
    overlap: int = 200
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl: int = 60
    composer_backend: Literal["openai", "template"] = "openai"
    openai_api_key: str | None = None
    chat_model: str = DEFAULT_CHAT_MODEL
    request_timeout: float = 30.0
    max_context_chars: int = 12000
    index_workers: int = 2
    admin_token: str | None = None

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if self.overlap >= self.chunk_chars:
            raise ValueError("overlap must be smaller than chunk_chars")
        if self.cache_ttl <= 0:
            raise ValueError("cache_ttl must be positive")

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppConfig":
        """Build a config from ``KNOWLEDGESCOUT_*`` variables.

        ``OPENAI_API_KEY`` is honoured when the prefixed key is not set.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for item in fields(cls):
            raw = env.get(ENV_PREFIX + item.name.upper())
            if raw is None or raw == "":
                continue
            if item.name == "db_path":
                values[item.name] = Path(raw)
            elif item.name in {"embedding_dimension", "chunk_chars", "overlap", "cache_ttl",
                               "max_context_chars", "index_workers"}:
                values[item.name] = int(raw)
            elif item.name == "request_timeout":
                values[item.name] = float(raw)
            elif item.name == "allow_fallback_embeddings":
                values[item.name] = _parse_bool(raw)
            else:
                values[item.name] = raw

        if "openai_api_key" not in values and env.get("OPENAI_API_KEY"):
            values["openai_api_key"] = env["OPENAI_API_KEY"]
        return cls(**values)
