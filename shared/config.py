"""Configuration management using Pydantic Settings."""

from __future__ import annotations

import json
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_list(v: object) -> list[str]:
    """Parse a list from either a JSON array string, comma-separated string, or list."""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        v = v.strip()
        if not v:
            return []
        if v.startswith("["):
            return json.loads(v)
        return [item.strip() for item in v.split(",") if item.strip()]
    return list(v)  # type: ignore[arg-type]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis (blob cache + domain registry)
    redis_url: str = "redis://redis:6379"
    # Bound every cache round-trip so a sick Redis cannot stall a response
    redis_socket_timeout: float = 2.0

    # AT Protocol
    atproto_service_url: str = "https://bsky.social"
    remote_timeout_seconds: float = 15.0
    # Access JWTs issued by bsky.social live for ~2h; re-login a bit earlier
    session_ttl_seconds: int = 5400

    # Cache TTLs (seconds)
    mapping_cache_ttl: int = 3600       # 1 hour
    metadata_cache_ttl: int = 1800      # 30 minutes
    owner_keys_cache_ttl: int = 300     # 5 minutes
    domain_mapping_ttl: int = 86400 * 365

    # Blobs
    max_blob_size_bytes: int = 50 * 1024 * 1024
    default_list_limit: int = 50

    # HTTP
    # Stored as str: comma-separated or JSON array. Use parse_list() at the point of use.
    cors_origins: str = "http://localhost:3000"
    # Hosts that are never looked up in the domain registry
    internal_hosts: str = "localhost,127.0.0.1,bucket.social"

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
