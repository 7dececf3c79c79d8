"""Application configuration helpers."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

ENV_FILE_CANDIDATES = (Path(".env"), Path(".env.local"))
ENV_PREFIX = "SMART_RECEIPTS_"


class Settings(BaseModel):
    """Global application settings loaded from environment variables or .env files."""

    database_path: Path = Field(
        default=Path("./data/smart_receipts.db"),
        description="SQLite database location.",
    )
    api_token: Optional[str] = Field(
        default=None,
        description="Bearer token required for authenticated endpoints.",
    )
    log_level: str = Field(default="INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR)")
    log_format: str = Field(
        default="plain",
        description="Logging format (plain/json).",
    )
    log_requests: bool = Field(
        default=True,
        description="Emit request access logs when true.",
    )
    embedding_base_url: Optional[str] = Field(
        default=None,
        description="OpenAI-compatible base URL used for embedding generation.",
    )
    embedding_api_key: Optional[str] = Field(
        default=None,
        description="API key sent as a bearer token to the embedding endpoint.",
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model identifier.",
    )
    embedding_dimensions: int = Field(
        default=384,
        description="Length of stored embedding vectors.",
    )
    embedding_local_fallback: bool = Field(
        default=False,
        description="Fall back to local feature-hashing embeddings when the remote model fails.",
    )
    embedding_queue_enabled: bool = Field(
        default=True,
        description="Generate embeddings for newly saved receipts in the background.",
    )
    embedding_backfill_enabled: bool = Field(
        default=False,
        description="Periodically backfill receipts that are missing an embedding.",
    )
    embedding_backfill_interval: float = Field(
        default=300.0,
        description="Seconds between scheduled backfill batches.",
    )
    embedding_backfill_batch_size: int = Field(
        default=5,
        description="Maximum number of receipts embedded per backfill batch.",
    )
    search_limit: int = Field(
        default=5,
        description="Default number of smart search results.",
    )
    search_threshold: float = Field(
        default=0.3,
        description="Default minimum cosine similarity for vector search hits.",
    )
    storage_path: Path = Field(
        default=Path("./data/receipt-images"),
        description="Directory backing the receipt image bucket.",
    )
    storage_public_url: str = Field(
        default="",
        description="Public base URL prepended to signed image links.",
    )
    signed_url_ttl: int = Field(
        default=365 * 24 * 60 * 60,
        description="Validity of signed image URLs in seconds.",
    )
    signing_secret: str = Field(
        default="change-me",
        description="HMAC secret used to sign image URLs.",
    )
    duplicate_threshold: float = Field(
        default=0.6,
        description="Minimum match score for a stored receipt to count as a duplicate.",
    )

    model_config = ConfigDict(frozen=True)


def _coerce_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_env_file(path: Path) -> dict[str, str]:
    payload: dict[str, str] = {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, raw_value = line.split("=", 1)
                payload[key.strip()] = raw_value.strip()
    except FileNotFoundError:
        return {}
    return payload


def _load_env_file_values() -> dict[str, str]:
    values: dict[str, str] = {}
    for candidate in ENV_FILE_CANDIDATES:
        values.update(_parse_env_file(candidate))
    return values


def _load_from_env() -> dict[str, object]:
    """Load optional overrides from env vars (with .env fallbacks)."""

    file_values = _load_env_file_values()

    def _env(key: str) -> Optional[str]:
        name = ENV_PREFIX + key
        return os.environ.get(name) or file_values.get(name)

    payload: dict[str, object] = {}
    if (db_path := _env("DATABASE_PATH")):
        payload["database_path"] = Path(db_path)
    if (api_token := _env("API_TOKEN")):
        payload["api_token"] = api_token
    if (log_level := _env("LOG_LEVEL")):
        payload["log_level"] = log_level
    if (log_format := _env("LOG_FORMAT")):
        payload["log_format"] = log_format
    if (log_requests := _env("LOG_REQUESTS")):
        payload["log_requests"] = _coerce_bool(log_requests)
    if (embedding_base_url := _env("EMBEDDING_BASE_URL")):
        payload["embedding_base_url"] = embedding_base_url
    if (embedding_api_key := _env("EMBEDDING_API_KEY") or os.environ.get("OPENAI_API_KEY")):
        payload["embedding_api_key"] = embedding_api_key
    if (embedding_model := _env("EMBEDDING_MODEL")):
        payload["embedding_model"] = embedding_model
    if (embedding_dimensions := _env("EMBEDDING_DIMENSIONS")):
        try:
            payload["embedding_dimensions"] = int(embedding_dimensions)
        except ValueError:
            pass
    if (local_fallback := _env("EMBEDDING_LOCAL_FALLBACK")):
        payload["embedding_local_fallback"] = _coerce_bool(local_fallback)
    if (queue_enabled := _env("EMBEDDING_QUEUE_ENABLED")):
        payload["embedding_queue_enabled"] = _coerce_bool(queue_enabled)
    if (backfill_enabled := _env("EMBEDDING_BACKFILL_ENABLED")):
        payload["embedding_backfill_enabled"] = _coerce_bool(backfill_enabled)
    if (backfill_interval := _env("EMBEDDING_BACKFILL_INTERVAL")):
        try:
            payload["embedding_backfill_interval"] = float(backfill_interval)
        except ValueError:
            pass
    if (backfill_batch_size := _env("EMBEDDING_BACKFILL_BATCH_SIZE")):
        try:
            payload["embedding_backfill_batch_size"] = int(backfill_batch_size)
        except ValueError:
            pass
    if (search_limit := _env("SEARCH_LIMIT")):
        try:
            payload["search_limit"] = int(search_limit)
        except ValueError:
            pass
    if (search_threshold := _env("SEARCH_THRESHOLD")):
        try:
            payload["search_threshold"] = float(search_threshold)
        except ValueError:
            pass
    if (storage_path := _env("STORAGE_PATH")):
        payload["storage_path"] = Path(storage_path)
    if (storage_public_url := _env("STORAGE_PUBLIC_URL")):
        payload["storage_public_url"] = storage_public_url.rstrip("/")
    if (signed_url_ttl := _env("SIGNED_URL_TTL")):
        try:
            payload["signed_url_ttl"] = int(signed_url_ttl)
        except ValueError:
            pass
    if (signing_secret := _env("SIGNING_SECRET")):
        payload["signing_secret"] = signing_secret
    if (duplicate_threshold := _env("DUPLICATE_THRESHOLD")):
        try:
            payload["duplicate_threshold"] = float(duplicate_threshold)
        except ValueError:
            pass
    return payload


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings(**_load_from_env())
