"""Blob mapping records and the results the engine hands to callers.

Field aliases are the camelCase record format stored in the owner's
repository under ``social.bucket.can.mapping``; cache entries use the same
serialization so a cached record is byte-for-byte the remote one.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, computed_field

T = TypeVar("T")

MAPPING_COLLECTION = "social.bucket.can.mapping"


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with microseconds and a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting the ``Z`` suffix."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class _RecordModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_record(self) -> dict:
        """Serialize in the remote-record (camelCase) form."""
        return self.model_dump(by_alias=True, exclude_none=True)


class BlobInfo(_RecordModel):
    """One physical, content-addressed blob instance."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    cid: str
    mime_type: str = Field(alias="mimeType")
    size: int
    uploaded_at: str = Field(alias="uploadedAt")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def blob(self) -> dict:
        # Typed blob ref so the PDS keeps the blob referenced by the record.
        return {
            "$type": "blob",
            "ref": {"$link": self.cid},
            "mimeType": self.mime_type,
            "size": self.size,
        }

    def info(self) -> BlobInfo:
        """Plain BlobInfo view (drops version fields on subclasses)."""
        return BlobInfo(
            cid=self.cid,
            mime_type=self.mime_type,
            size=self.size,
            uploaded_at=self.uploaded_at,
        )


class BlobVersion(BlobInfo):
    """An archived prior state of a mapping."""

    version: str
    comment: str | None = None

    @classmethod
    def archive(cls, info: BlobInfo, version: str, comment: str | None = None) -> BlobVersion:
        return cls(
            cid=info.cid,
            mime_type=info.mime_type,
            size=info.size,
            uploaded_at=info.uploaded_at,
            version=version,
            comment=comment,
        )


class MappingRecord(_RecordModel):
    """Binds a human-chosen key to its current blob and optional history."""

    key: str = Field(max_length=255)
    current: BlobInfo
    versions: dict[str, BlobVersion] | None = None
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")
    versioning_enabled: bool = Field(default=False, alias="versioningEnabled")

    def to_record(self) -> dict:
        data = super().to_record()
        data["$type"] = MAPPING_COLLECTION
        return data


class UploadResult(_RecordModel):
    key: str
    cid: str
    size: int
    mime_type: str = Field(alias="mimeType")
    version: str | None = None
    created: bool = False


class BlobContent(BaseModel):
    """Downloaded bytes plus the metadata needed to build response headers."""

    key: str
    data: bytes
    info: BlobInfo
    version: str | None = None
    source: Literal["cache", "authoritative"] = "authoritative"


class VersionListing(_RecordModel):
    key: str
    current: BlobInfo
    versions: list[BlobVersion] = Field(default_factory=list)


class BlobSummary(_RecordModel):
    key: str
    current: BlobInfo
    version_count: int = Field(default=0, alias="versionCount")
    versioning_enabled: bool = Field(default=False, alias="versioningEnabled")
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")

    @classmethod
    def from_record(cls, record: MappingRecord) -> BlobSummary:
        return cls(
            key=record.key,
            current=record.current,
            version_count=len(record.versions or {}),
            versioning_enabled=record.versioning_enabled,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class BlobListing(_RecordModel):
    blobs: list[BlobSummary] = Field(default_factory=list)
    cursor: str | None = None
    has_more: bool = Field(default=False, alias="hasMore")


class DeleteResult(_RecordModel):
    key: str
    version: str | None = None
    message: str


class Resolved(BaseModel, Generic[T]):
    """A value tagged with the path that served it."""

    source: Literal["cache", "authoritative"]
    value: T
