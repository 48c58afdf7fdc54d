"""Construction and teardown of the service graph the app runs on."""

from __future__ import annotations

from dataclasses import dataclass, field

import redis.asyncio as redis
import structlog

from bucket.services.atproto import AtprotoRepository, RemoteRepository
from bucket.services.blob_cache import BlobCache
from bucket.services.blob_engine import BlobEngine
from bucket.services.domain_registry import DomainRegistry
from bucket.services.sessions import SessionStore
from shared.config import Settings, parse_list
from shared.redis import close_redis, create_redis

logger = structlog.get_logger()


@dataclass
class BucketServices:
    settings: Settings
    repository: RemoteRepository
    cache: BlobCache
    registry: DomainRegistry
    engine: BlobEngine
    redis: redis.Redis | None = None
    internal_hosts: frozenset[str] = field(default_factory=frozenset)

    def is_internal_host(self, host: str | None) -> bool:
        return not host or host.lower() in self.internal_hosts


def build_services(settings: Settings) -> BucketServices:
    redis_client = create_redis(settings)
    repository = AtprotoRepository(
        SessionStore(settings.session_ttl_seconds),
        service_url=settings.atproto_service_url,
        timeout=settings.remote_timeout_seconds,
    )
    cache = BlobCache(
        redis_client,
        ttls={
            "mapping": settings.mapping_cache_ttl,
            "metadata": settings.metadata_cache_ttl,
            "owner_keys": settings.owner_keys_cache_ttl,
        },
    )
    registry = DomainRegistry(
        redis_client,
        mapping_ttl=settings.domain_mapping_ttl,
        default_endpoint=settings.atproto_service_url,
    )
    engine = BlobEngine(repository, cache, default_list_limit=settings.default_list_limit)

    logger.info("bucket_services_built", atproto_service_url=settings.atproto_service_url)
    return BucketServices(
        settings=settings,
        repository=repository,
        cache=cache,
        registry=registry,
        engine=engine,
        redis=redis_client,
        internal_hosts=frozenset(h.lower() for h in parse_list(settings.internal_hosts)),
    )


async def close_services(services: BucketServices) -> None:
    await services.repository.close()
    await close_redis(services.redis)
    logger.info("bucket_services_closed")
