"""Blob upload, download, versioning and listing endpoints."""

from __future__ import annotations

from email.utils import format_datetime

import structlog
from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile

from bucket.auth import ReadContext, get_services, require_credential, resolve_read_context
from bucket.services.sessions import OwnerCredential
from bucket.services.wiring import BucketServices
from shared.errors import AccessDenied, BlobTooLarge
from shared.schemas.blobs import (
    BlobListing,
    DeleteResult,
    UploadResult,
    VersionListing,
    parse_timestamp,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/blobs", tags=["blobs"])

DEFAULT_MIME_TYPE = "application/octet-stream"


def _cache_header(source: str) -> str:
    return "HIT" if source == "cache" else "MISS"


def _enforce_domain_policy(target: ReadContext, key: str, info) -> None:
    if target.domain is None or target.domain.settings.allows(info.mime_type, info.size):
        return
    logger.info(
        "blob_blocked_by_domain_policy",
        domain=target.domain.domain,
        key=key,
        mime_type=info.mime_type,
        size=info.size,
    )
    raise AccessDenied(f"Blob '{key}' is not served on {target.domain.domain}")


@router.get("")
async def list_blobs(
    limit: int | None = Query(default=None),
    cursor: str | None = Query(default=None),
    credential: OwnerCredential = Depends(require_credential),
    services: BucketServices = Depends(get_services),
) -> BlobListing:
    return await services.engine.list(credential, limit=limit, cursor=cursor)


@router.post("/{key}")
async def upload_blob(
    key: str,
    response: Response,
    file: UploadFile = File(...),
    comment: str | None = Form(default=None),
    enable_versioning: bool = Form(default=False),
    credential: OwnerCredential = Depends(require_credential),
    services: BucketServices = Depends(get_services),
) -> UploadResult:
    """Upload a file via multipart form. 201 when the key is new, 200 when replaced."""
    max_size = services.settings.max_blob_size_bytes
    data = await file.read()
    if len(data) > max_size:
        raise BlobTooLarge(f"File too large (max {max_size // (1024 * 1024)} MB)")

    result = await services.engine.upload(
        credential,
        key,
        data,
        file.content_type or DEFAULT_MIME_TYPE,
        comment=comment or None,
        enable_versioning=enable_versioning,
    )
    response.status_code = 201 if result.created else 200
    return result


@router.get("/{key}")
async def download_blob(
    key: str,
    version: str | None = Query(default=None),
    target: ReadContext = Depends(resolve_read_context),
    services: BucketServices = Depends(get_services),
) -> Response:
    """Serve blob bytes for the caller's repository or the Host's domain."""
    engine = services.engine
    if target.domain is not None:
        _enforce_domain_policy(target, key, (await engine.stat(target.repository, key, version)).value)

    content = await engine.get(target.repository, key, version)
    info = content.info
    headers = {
        "Last-Modified": format_datetime(parse_timestamp(info.uploaded_at), usegmt=True),
        "ETag": f'"{info.cid}"',
        "X-Version": content.version or "current",
        "X-Cache": _cache_header(content.source),
    }
    # An explicit version is content-addressed and never changes.
    if content.version is not None:
        headers["Cache-Control"] = "public, max-age=31536000, immutable"
    else:
        headers["Cache-Control"] = f"public, max-age={services.cache.ttls['metadata']}"
    if target.domain is not None:
        headers["X-Domain"] = target.domain.domain

    return Response(content=content.data, media_type=info.mime_type, headers=headers)


@router.get("/{key}/metadata")
async def blob_metadata(
    key: str,
    response: Response,
    version: str | None = Query(default=None),
    target: ReadContext = Depends(resolve_read_context),
    services: BucketServices = Depends(get_services),
) -> dict:
    resolved = await services.engine.stat(target.repository, key, version)
    _enforce_domain_policy(target, key, resolved.value)
    response.headers["X-Cache"] = _cache_header(resolved.source)
    return {
        "key": key,
        "version": version,
        "source": resolved.source,
        "metadata": resolved.value.model_dump(by_alias=True, exclude={"blob"}),
    }


@router.get("/{key}/versions")
async def list_versions(
    key: str,
    credential: OwnerCredential = Depends(require_credential),
    services: BucketServices = Depends(get_services),
) -> VersionListing:
    return await services.engine.list_versions(credential, key)


@router.delete("/{key}")
async def delete_blob(
    key: str,
    version: str | None = Query(default=None),
    credential: OwnerCredential = Depends(require_credential),
    services: BucketServices = Depends(get_services),
) -> DeleteResult:
    return await services.engine.delete(credential, key, version)
