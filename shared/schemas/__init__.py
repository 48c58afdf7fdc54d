"""Pydantic schemas for the blob service."""

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
)
from shared.schemas.common import ErrorResponse, HealthResponse
from shared.schemas.domains import (
    DomainMapping,
    DomainSettings,
    DomainSettingsUpdate,
    RegisterDomainRequest,
    UpdateDomainRequest,
)

__all__ = [
    "MAPPING_COLLECTION",
    "BlobContent",
    "BlobInfo",
    "BlobListing",
    "BlobSummary",
    "BlobVersion",
    "DeleteResult",
    "DomainMapping",
    "DomainSettings",
    "DomainSettingsUpdate",
    "ErrorResponse",
    "HealthResponse",
    "MappingRecord",
    "RegisterDomainRequest",
    "Resolved",
    "UpdateDomainRequest",
    "UploadResult",
    "VersionListing",
]
