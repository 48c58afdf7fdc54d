"""Redis cache-aside layer for blob mapping records.

Never authoritative: every entry can be rebuilt from the owner's repository,
and every failure degrades to a miss.
"""

from __future__ import annotations

import structlog

from shared.errors import CacheUnavailable
from shared.schemas.blobs import BlobInfo, MappingRecord

logger = structlog.get_logger()

BLOB_MAPPING_KEY = "blob:mapping:"
BLOB_METADATA_KEY = "blob:metadata:"
USER_BLOBS_KEY = "user:blobs:"

# Default TTLs in seconds
DEFAULT_TTLS: dict[str, int] = {
    "mapping": 3600,     # 1 hour
    "metadata": 1800,    # 30 minutes
    "owner_keys": 300,   # 5 minutes
}


def _mapping_key(owner: str, key: str) -> str:
    return f"{BLOB_MAPPING_KEY}{owner}:{key}"


def _metadata_key(owner: str, key: str) -> str:
    return f"{BLOB_METADATA_KEY}{owner}:{key}"


def _owner_keys_key(owner: str) -> str:
    return f"{USER_BLOBS_KEY}{owner}"


class BlobCache:
    """Redis-backed cache with graceful fallback when Redis is unavailable.

    Entries are scoped by owner DID and by the sanitized record key, so the
    cache identity matches the record identity in the remote repository.
    """

    def __init__(self, redis_client=None, ttls: dict[str, int] | None = None):
        self._redis = redis_client
        self.ttls = {**DEFAULT_TTLS, **(ttls or {})}

    @staticmethod
    def _failed(event: str, error: Exception, **context) -> None:
        logger.warning(event, code=CacheUnavailable.code, error=str(error), **context)

    # ------------------------------------------------------------------
    # Mapping records
    # ------------------------------------------------------------------

    async def get_mapping(self, owner: str, key: str) -> MappingRecord | None:
        """Retrieve a cached mapping record, or None if miss/unavailable."""
        if self._redis is None:
            return None

        cache_key = _mapping_key(owner, key)
        try:
            raw = await self._redis.get(cache_key)
        except Exception as e:
            self._failed("blob_cache_get_error", e, key=cache_key)
            return None
        if raw is None:
            logger.debug("blob_cache_miss", key=cache_key)
            return None
        try:
            record = MappingRecord.model_validate_json(raw)
        except ValueError as e:
            # Unreadable entry: drop it so the next read repopulates.
            logger.warning("blob_cache_corrupt_entry", key=cache_key, error=str(e))
            await self.invalidate(owner, key)
            return None
        logger.debug("blob_cache_hit", key=cache_key)
        return record

    async def set_mapping(self, owner: str, key: str, record: MappingRecord) -> bool:
        """Store a mapping record and remember the key for bulk invalidation."""
        if self._redis is None:
            return False

        owner_keys = _owner_keys_key(owner)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(
                    _mapping_key(owner, key),
                    record.model_dump_json(by_alias=True, exclude_none=True),
                    ex=self.ttls["mapping"],
                )
                pipe.sadd(owner_keys, key)
                pipe.expire(owner_keys, self.ttls["owner_keys"])
                await pipe.execute()
        except Exception as e:
            self._failed("blob_cache_set_error", e, owner=owner, key=key)
            return False
        logger.debug("blob_cache_set", owner=owner, key=key)
        return True

    # ------------------------------------------------------------------
    # Blob metadata
    # ------------------------------------------------------------------

    async def get_metadata(self, owner: str, key: str) -> BlobInfo | None:
        if self._redis is None:
            return None

        cache_key = _metadata_key(owner, key)
        try:
            raw = await self._redis.get(cache_key)
            if raw is None:
                return None
            return BlobInfo.model_validate_json(raw)
        except Exception as e:
            self._failed("blob_cache_metadata_get_error", e, key=cache_key)
            return None

    async def set_metadata(self, owner: str, key: str, info: BlobInfo) -> bool:
        if self._redis is None:
            return False

        try:
            await self._redis.set(
                _metadata_key(owner, key),
                info.info().model_dump_json(by_alias=True),
                ex=self.ttls["metadata"],
            )
        except Exception as e:
            self._failed("blob_cache_metadata_set_error", e, owner=owner, key=key)
            return False
        return True

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def refresh(self, owner: str, key: str, record: MappingRecord) -> bool:
        """Write-through after a mutation: replace mapping and current metadata together."""
        if self._redis is None:
            return False

        owner_keys = _owner_keys_key(owner)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(
                    _mapping_key(owner, key),
                    record.model_dump_json(by_alias=True, exclude_none=True),
                    ex=self.ttls["mapping"],
                )
                pipe.set(
                    _metadata_key(owner, key),
                    record.current.model_dump_json(by_alias=True),
                    ex=self.ttls["metadata"],
                )
                pipe.sadd(owner_keys, key)
                pipe.expire(owner_keys, self.ttls["owner_keys"])
                await pipe.execute()
        except Exception as e:
            self._failed("blob_cache_refresh_error", e, owner=owner, key=key)
            # Stale entries must not outlive a failed refresh.
            await self.invalidate(owner, key)
            return False
        logger.debug("blob_cache_refreshed", owner=owner, key=key)
        return True

    async def invalidate(self, owner: str, key: str) -> bool:
        """Remove mapping and metadata for one key."""
        if self._redis is None:
            return False

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(_mapping_key(owner, key))
                pipe.delete(_metadata_key(owner, key))
                pipe.srem(_owner_keys_key(owner), key)
                await pipe.execute()
        except Exception as e:
            self._failed("blob_cache_invalidate_error", e, owner=owner, key=key)
            return False
        logger.debug("blob_cache_invalidated", owner=owner, key=key)
        return True

    async def invalidate_owner(self, owner: str) -> bool:
        """Remove every entry for every key the owner has cached, then the key-set."""
        if self._redis is None:
            return False

        owner_keys = _owner_keys_key(owner)
        try:
            keys = await self._redis.smembers(owner_keys)
            async with self._redis.pipeline(transaction=True) as pipe:
                for key in keys:
                    pipe.delete(_mapping_key(owner, key))
                    pipe.delete(_metadata_key(owner, key))
                pipe.delete(owner_keys)
                await pipe.execute()
        except Exception as e:
            self._failed("blob_cache_invalidate_owner_error", e, owner=owner)
            return False
        logger.info("blob_cache_owner_invalidated", owner=owner, keys=len(keys))
        return True

    async def owner_keys(self, owner: str) -> list[str]:
        """Keys currently tracked for the owner (may lag behind TTL expiry)."""
        if self._redis is None:
            return []

        try:
            return sorted(await self._redis.smembers(_owner_keys_key(owner)))
        except Exception as e:
            self._failed("blob_cache_owner_keys_error", e, owner=owner)
            return []

    async def health_check(self) -> bool:
        if self._redis is None:
            return False
        try:
            await self._redis.ping()
            return True
        except Exception as e:
            self._failed("blob_cache_health_check_failed", e)
            return False
