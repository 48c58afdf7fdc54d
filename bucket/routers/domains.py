"""Custom-domain registration endpoints. Every route acts for the authenticated owner."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from bucket.auth import get_services, require_credential
from bucket.services.sessions import OwnerCredential
from bucket.services.wiring import BucketServices
from shared.errors import AccessDenied, DomainNotFound, InvalidRequest
from shared.schemas.domains import DomainMapping, RegisterDomainRequest, UpdateDomainRequest

logger = structlog.get_logger()

router = APIRouter(prefix="/domains", tags=["domains"])


async def _owned_mapping(
    services: BucketServices, credential: OwnerCredential, domain: str
) -> DomainMapping:
    mapping = await services.registry.resolve(domain)
    if mapping is None:
        raise DomainNotFound(f"Domain '{domain}' not found")
    owner_id = await services.repository.owner_id(credential)
    if mapping.owner_id != owner_id:
        logger.warning("domain_access_denied", domain=mapping.domain, owner_id=owner_id)
        raise AccessDenied(f"Domain '{mapping.domain}' belongs to another owner")
    return mapping


@router.post("", status_code=201)
async def register_domain(
    body: RegisterDomainRequest,
    credential: OwnerCredential = Depends(require_credential),
    services: BucketServices = Depends(get_services),
) -> DomainMapping:
    owner_id = await services.repository.owner_id(credential)
    owner_handle = await services.repository.owner_handle(credential)
    return await services.registry.register(body.domain, owner_handle, owner_id)


@router.get("")
async def list_domains(
    credential: OwnerCredential = Depends(require_credential),
    services: BucketServices = Depends(get_services),
) -> dict:
    owner_id = await services.repository.owner_id(credential)
    mappings = await services.registry.list_owner_domains(owner_id)
    return {
        "domains": [m.model_dump(by_alias=True) for m in mappings],
        "count": len(mappings),
    }


@router.get("/{domain}")
async def get_domain(
    domain: str,
    credential: OwnerCredential = Depends(require_credential),
    services: BucketServices = Depends(get_services),
) -> DomainMapping:
    return await _owned_mapping(services, credential, domain)


@router.put("/{domain}")
async def update_domain(
    domain: str,
    body: UpdateDomainRequest,
    credential: OwnerCredential = Depends(require_credential),
    services: BucketServices = Depends(get_services),
) -> DomainMapping:
    if body.status is None and body.settings is None:
        raise InvalidRequest("Nothing to update: provide status and/or settings")
    mapping = await _owned_mapping(services, credential, domain)
    return await services.registry.update(mapping.domain, status=body.status, settings=body.settings)


@router.delete("/{domain}")
async def delete_domain(
    domain: str,
    credential: OwnerCredential = Depends(require_credential),
    services: BucketServices = Depends(get_services),
) -> dict:
    mapping = await _owned_mapping(services, credential, domain)
    await services.registry.delete(mapping.domain)
    return {"domain": mapping.domain, "message": "Domain deleted"}
