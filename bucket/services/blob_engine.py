"""Mapping and versioning engine.

Binds human-chosen keys to content-addressed blobs in the owner's
repository. The mapping record is the source of truth; the cache only
shortens the read path.
"""

from __future__ import annotations

import re

import structlog
from pydantic import ValidationError

from bucket.services.atproto import RemoteRepository, RepositoryContext, sanitize_key
from bucket.services.blob_cache import BlobCache
from bucket.services.sessions import OwnerCredential
from shared.errors import BlobNotFound, InvalidKey, RemoteError, VersionNotFound
from shared.schemas.blobs import (
    MAPPING_COLLECTION,
    BlobContent,
    BlobInfo,
    BlobListing,
    BlobSummary,
    BlobVersion,
    DeleteResult,
    MappingRecord,
    Resolved,
    UploadResult,
    VersionListing,
    parse_timestamp,
    utc_now_iso,
)

logger = structlog.get_logger()

MAX_KEY_LENGTH = 255
MAX_LIST_LIMIT = 100
DEFAULT_LIST_LIMIT = 50

_FORBIDDEN_KEY_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def validate_key(key: str) -> str:
    """Return the key unchanged, or raise InvalidKey."""
    if not key or not isinstance(key, str):
        raise InvalidKey("Key is required and must be a string")
    if len(key) > MAX_KEY_LENGTH:
        raise InvalidKey(f"Key must be {MAX_KEY_LENGTH} characters or less")
    if _FORBIDDEN_KEY_CHARS.search(key):
        raise InvalidKey("Key contains invalid characters")
    if sanitize_key(key) in ("", ".", ".."):
        raise InvalidKey(f"Key '{key}' does not map to a usable record key")
    return key


class BlobEngine:
    """Upload, read, version and delete blobs by key."""

    def __init__(
        self,
        repository: RemoteRepository,
        cache: BlobCache,
        default_list_limit: int = DEFAULT_LIST_LIMIT,
    ):
        self.repository = repository
        self.cache = cache
        self.default_list_limit = default_list_limit

    # ------------------------------------------------------------------
    # Record resolution
    # ------------------------------------------------------------------

    async def _load_record(
        self, ctx: RepositoryContext, owner: str, key: str
    ) -> Resolved[MappingRecord] | None:
        """Cache first, then the repository; populates the cache on a remote hit."""
        rkey = sanitize_key(key)
        cached = await self.cache.get_mapping(owner, rkey)
        if cached is not None:
            return Resolved[MappingRecord](source="cache", value=cached)

        raw = await self.repository.get_record(ctx, key, MAPPING_COLLECTION)
        if raw is None:
            return None
        try:
            record = MappingRecord.model_validate(raw)
        except ValidationError as e:
            logger.error("blob_engine_malformed_record", owner=owner, key=key, error=str(e))
            raise RemoteError(f"Mapping record for '{key}' is malformed") from e

        await self.cache.set_mapping(owner, rkey, record)
        return Resolved[MappingRecord](source="authoritative", value=record)

    async def _require_record(
        self, ctx: RepositoryContext, owner: str, key: str
    ) -> Resolved[MappingRecord]:
        resolved = await self._load_record(ctx, owner, key)
        if resolved is None:
            raise BlobNotFound(f"Blob '{key}' not found")
        return resolved

    @staticmethod
    def _select(record: MappingRecord, version: str | None) -> BlobInfo:
        if version is None:
            return record.current
        if not record.versions or version not in record.versions:
            raise VersionNotFound(f"Version '{version}' of '{record.key}' not found")
        return record.versions[version]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upload(
        self,
        credential: OwnerCredential,
        key: str,
        data: bytes,
        mime_type: str,
        comment: str | None = None,
        enable_versioning: bool = False,
    ) -> UploadResult:
        """Store bytes under a key, archiving the previous blob when versioning."""
        validate_key(key)
        owner = await self.repository.owner_id(credential)
        rkey = sanitize_key(key)

        resolved = await self._load_record(credential, owner, key)
        existing = resolved.value if resolved else None
        should_version = enable_versioning or (existing is not None and existing.versioning_enabled)

        info = await self.repository.upload_blob(credential, data, mime_type)
        now = utc_now_iso()
        archived_as = None

        if existing is None:
            record = MappingRecord(
                key=key,
                current=info,
                versions={} if should_version else None,
                created_at=now,
                updated_at=now,
                versioning_enabled=should_version,
            )
        elif should_version:
            versions = dict(existing.versions or {})
            versions[now] = BlobVersion.archive(existing.current, now, comment)
            archived_as = now
            record = existing.model_copy(
                update={
                    "key": key,
                    "current": info,
                    "versions": versions,
                    "versioning_enabled": True,
                    "updated_at": now,
                }
            )
        else:
            record = existing.model_copy(update={"key": key, "current": info, "updated_at": now})

        await self.repository.put_record(credential, key, MAPPING_COLLECTION, record.to_record())
        await self.cache.refresh(owner, rkey, record)

        logger.info(
            "blob_uploaded",
            owner=owner,
            key=key,
            cid=info.cid,
            size=info.size,
            created=existing is None,
            archived_as=archived_as,
        )
        return UploadResult(
            key=key,
            cid=info.cid,
            size=info.size,
            mime_type=info.mime_type,
            version=archived_as,
            created=existing is None,
        )

    async def delete(
        self, credential: OwnerCredential, key: str, version: str | None = None
    ) -> DeleteResult:
        """Delete one archived version, or the whole mapping when no version is given."""
        validate_key(key)
        owner = await self.repository.owner_id(credential)
        rkey = sanitize_key(key)
        record = (await self._require_record(credential, owner, key)).value

        if version is not None:
            self._select(record, version)
            versions = {v: entry for v, entry in record.versions.items() if v != version}
            updated = record.model_copy(update={"versions": versions, "updated_at": utc_now_iso()})
            await self.repository.put_record(credential, key, MAPPING_COLLECTION, updated.to_record())
            await self.cache.refresh(owner, rkey, updated)
            logger.info("blob_version_deleted", owner=owner, key=key, version=version)
            return DeleteResult(key=key, version=version, message=f"Version {version} deleted")

        await self.repository.delete_record(credential, key, MAPPING_COLLECTION)
        await self.cache.invalidate(owner, rkey)
        logger.info("blob_deleted", owner=owner, key=key)
        return DeleteResult(key=key, message="Blob deleted")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(
        self, ctx: RepositoryContext, key: str, version: str | None = None
    ) -> BlobContent:
        validate_key(key)
        owner = await self.repository.owner_id(ctx)
        resolved = await self._require_record(ctx, owner, key)
        info = self._select(resolved.value, version)

        data = await self.repository.download_blob(ctx, info.cid)
        if version is None:
            await self.cache.set_metadata(owner, sanitize_key(key), info)

        logger.debug("blob_served", owner=owner, key=key, cid=info.cid, source=resolved.source)
        return BlobContent(
            key=key,
            data=data,
            info=info.info(),
            version=version,
            source=resolved.source,
        )

    async def stat(
        self, ctx: RepositoryContext, key: str, version: str | None = None
    ) -> Resolved[BlobInfo]:
        """Metadata only. The current version is answered from the metadata cache when warm."""
        validate_key(key)
        owner = await self.repository.owner_id(ctx)
        rkey = sanitize_key(key)

        if version is None:
            cached = await self.cache.get_metadata(owner, rkey)
            if cached is not None:
                return Resolved[BlobInfo](source="cache", value=cached)

        resolved = await self._require_record(ctx, owner, key)
        info = self._select(resolved.value, version)
        if version is None:
            await self.cache.set_metadata(owner, rkey, info)
        return Resolved[BlobInfo](source=resolved.source, value=info)

    async def list_versions(self, credential: OwnerCredential, key: str) -> VersionListing:
        """Current blob plus archived versions, newest upload first."""
        validate_key(key)
        owner = await self.repository.owner_id(credential)
        record = (await self._require_record(credential, owner, key)).value

        # sorted() is stable under reverse=True, so equal timestamps keep record order
        versions = sorted(
            (record.versions or {}).values(),
            key=lambda v: parse_timestamp(v.uploaded_at),
            reverse=True,
        )
        return VersionListing(key=record.key, current=record.current, versions=versions)

    async def list(
        self,
        credential: OwnerCredential,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> BlobListing:
        """One page of the owner's mapping records. Never cached."""
        limit = self.default_list_limit if limit is None else limit
        limit = max(1, min(limit, MAX_LIST_LIMIT))

        values, next_cursor = await self.repository.list_records(
            credential, MAPPING_COLLECTION, limit=limit, cursor=cursor
        )
        blobs = []
        for value in values:
            try:
                record = MappingRecord.model_validate(value)
            except ValidationError as e:
                logger.warning("blob_engine_skipped_record", key=value.get("key"), error=str(e))
                continue
            blobs.append(BlobSummary.from_record(record))

        return BlobListing(blobs=blobs, cursor=next_cursor, has_more=next_cursor is not None)

    async def purge_cache(self, credential: OwnerCredential) -> bool:
        owner = await self.repository.owner_id(credential)
        return await self.cache.invalidate_owner(owner)
