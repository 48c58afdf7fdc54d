"""Redis-based domain registry.

Maps public domains to the owning principal and the PDS that serves them.
Redis is the only store for these mappings, so unlike the blob cache its
failures are surfaced rather than swallowed.
"""

from __future__ import annotations

import re

import structlog
from redis.exceptions import RedisError, WatchError

from bucket.services.atproto import DEFAULT_SERVICE_URL, pds_endpoint_for_handle
from shared.errors import (
    DomainAlreadyRegistered,
    DomainNotFound,
    InvalidDomain,
    RegistryUnavailable,
)
from shared.schemas.blobs import utc_now_iso
from shared.schemas.domains import (
    DomainMapping,
    DomainSettings,
    DomainSettingsUpdate,
    DomainStatus,
)

logger = structlog.get_logger()

DOMAIN_MAPPING_KEY = "domain:mapping:"
USER_DOMAINS_KEY = "user:domains:"
ALL_DOMAINS_KEY = "domains:all"

DEFAULT_MAPPING_TTL = 86400 * 365  # 1 year

_LABEL = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
_DOMAIN_RE = re.compile(rf"^{_LABEL}(?:\.{_LABEL})*$")


def validate_domain(domain: str) -> str:
    """Normalize a domain name, raising InvalidDomain when malformed."""
    if not isinstance(domain, str):
        raise InvalidDomain("Domain is required and must be a string")
    normalized = domain.strip().lower().rstrip(".")
    if not normalized:
        raise InvalidDomain("Domain is required and must be a string")
    if len(normalized) > 253:
        raise InvalidDomain("Domain must be 253 characters or less")
    if not _DOMAIN_RE.match(normalized):
        raise InvalidDomain(f"Invalid domain format: '{domain}'")
    return normalized


def _domain_key(domain: str) -> str:
    return f"{DOMAIN_MAPPING_KEY}{domain}"


def _owner_key(owner_id: str) -> str:
    return f"{USER_DOMAINS_KEY}{owner_id}"


class DomainRegistry:
    """Domain -> owner lookup table with per-owner and global indexes."""

    def __init__(
        self,
        redis_client,
        mapping_ttl: int = DEFAULT_MAPPING_TTL,
        default_endpoint: str = DEFAULT_SERVICE_URL,
    ):
        self._redis = redis_client
        self.mapping_ttl = mapping_ttl
        self.default_endpoint = default_endpoint

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def resolve(self, domain: str) -> DomainMapping | None:
        """Direct lookup of a domain mapping."""
        domain = validate_domain(domain)
        try:
            raw = await self._redis.get(_domain_key(domain))
        except RedisError as e:
            logger.error("domain_registry_resolve_error", domain=domain, error=str(e))
            raise RegistryUnavailable(f"Could not look up domain '{domain}'") from e
        if raw is None:
            return None
        return DomainMapping.model_validate_json(raw)

    def resolve_pds_endpoint(self, handle: str) -> str:
        """Serving PDS for an owner handle (last two labels, else the default)."""
        return pds_endpoint_for_handle(handle, self.default_endpoint)

    async def endpoint_for_domain(self, domain: str) -> str | None:
        mapping = await self.resolve(domain)
        if mapping is None:
            return None
        return self.resolve_pds_endpoint(mapping.owner_handle)

    async def is_registered(self, domain: str) -> bool:
        domain = validate_domain(domain)
        try:
            return bool(await self._redis.exists(_domain_key(domain)))
        except RedisError as e:
            raise RegistryUnavailable(f"Could not look up domain '{domain}'") from e

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def register(
        self,
        domain: str,
        owner_handle: str,
        owner_id: str,
        settings: DomainSettings | None = None,
        status: DomainStatus = "active",
    ) -> DomainMapping:
        """Register a domain for an owner.

        The existence check, the mapping write and both set insertions run
        in one WATCH/MULTI transaction: either the domain becomes resolvable
        and listed under its owner and globally, or nothing changes.
        """
        domain = validate_domain(domain)
        now = utc_now_iso()
        mapping = DomainMapping(
            domain=domain,
            owner_handle=owner_handle,
            owner_id=owner_id,
            status=status,
            settings=settings or DomainSettings(),
            created_at=now,
            updated_at=now,
        )
        domain_key = _domain_key(domain)
        owner_key = _owner_key(owner_id)

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(domain_key)
                if await pipe.exists(domain_key):
                    await pipe.unwatch()
                    raise DomainAlreadyRegistered(f"Domain '{domain}' is already registered")
                pipe.multi()
                pipe.set(domain_key, mapping.model_dump_json(by_alias=True), ex=self.mapping_ttl)
                pipe.sadd(owner_key, domain)
                pipe.expire(owner_key, self.mapping_ttl)
                pipe.sadd(ALL_DOMAINS_KEY, domain)
                await pipe.execute()
        except WatchError as e:
            # Someone wrote the key between our check and EXEC.
            raise DomainAlreadyRegistered(f"Domain '{domain}' is already registered") from e
        except RedisError as e:
            logger.error("domain_registry_register_error", domain=domain, error=str(e))
            raise RegistryUnavailable(f"Could not register domain '{domain}'") from e

        logger.info("domain_registered", domain=domain, owner_handle=owner_handle, owner_id=owner_id)
        return mapping

    async def update(
        self,
        domain: str,
        status: DomainStatus | None = None,
        settings: DomainSettingsUpdate | None = None,
    ) -> DomainMapping:
        """Replace status and/or merge settings, keeping the entry's TTL."""
        existing = await self.resolve(domain)
        if existing is None:
            raise DomainNotFound(f"Domain '{domain}' not found")

        changes: dict = {"updated_at": utc_now_iso()}
        if status is not None:
            changes["status"] = status
        if settings is not None:
            changes["settings"] = existing.settings.model_copy(
                update=settings.model_dump(exclude_none=True)
            )
        updated = existing.model_copy(update=changes)

        try:
            # XX: a mapping deleted since the read above stays deleted.
            written = await self._redis.set(
                _domain_key(existing.domain),
                updated.model_dump_json(by_alias=True),
                keepttl=True,
                xx=True,
            )
        except RedisError as e:
            logger.error("domain_registry_update_error", domain=existing.domain, error=str(e))
            raise RegistryUnavailable(f"Could not update domain '{existing.domain}'") from e
        if not written:
            raise DomainNotFound(f"Domain '{existing.domain}' not found")

        logger.info("domain_updated", domain=existing.domain, status=updated.status)
        return updated

    async def delete(self, domain: str) -> DomainMapping:
        """Remove a mapping, then drop it from the owner and global sets.

        The set removals are best-effort: a dangling set member only shows
        up in enumeration, never in resolution.
        """
        existing = await self.resolve(domain)
        if existing is None:
            raise DomainNotFound(f"Domain '{domain}' not found")

        try:
            await self._redis.delete(_domain_key(existing.domain))
        except RedisError as e:
            logger.error("domain_registry_delete_error", domain=existing.domain, error=str(e))
            raise RegistryUnavailable(f"Could not delete domain '{existing.domain}'") from e

        for set_key in (_owner_key(existing.owner_id), ALL_DOMAINS_KEY):
            try:
                await self._redis.srem(set_key, existing.domain)
            except RedisError as e:
                logger.warning(
                    "domain_registry_set_cleanup_failed",
                    domain=existing.domain,
                    set_key=set_key,
                    error=str(e),
                )

        logger.info("domain_deleted", domain=existing.domain, owner_id=existing.owner_id)
        return existing

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    async def list_owner_domains(self, owner_id: str) -> list[DomainMapping]:
        """All live mappings in the owner's domain set, sorted by domain."""
        try:
            domains = sorted(await self._redis.smembers(_owner_key(owner_id)))
            raws = await self._redis.mget([_domain_key(d) for d in domains]) if domains else []
        except RedisError as e:
            logger.error("domain_registry_list_error", owner_id=owner_id, error=str(e))
            raise RegistryUnavailable("Could not list domains") from e

        mappings = []
        for domain, raw in zip(domains, raws):
            if raw is None:
                logger.debug("domain_registry_dangling_member", owner_id=owner_id, domain=domain)
                continue
            mappings.append(DomainMapping.model_validate_json(raw))
        return mappings

    async def list_all_domains(self) -> list[str]:
        try:
            return sorted(await self._redis.smembers(ALL_DOMAINS_KEY))
        except RedisError as e:
            logger.error("domain_registry_list_all_error", error=str(e))
            raise RegistryUnavailable("Could not list domains") from e

    async def health_check(self) -> bool:
        try:
            await self._redis.ping()
            return True
        except RedisError as e:
            logger.warning("domain_registry_health_check_failed", error=str(e))
            return False
