"""Basic-auth credentials and read-context resolution for the HTTP API."""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass

from fastapi import Depends, Header, Request

from bucket.services.atproto import RepositoryContext
from bucket.services.sessions import OwnerCredential, PublicRepository
from bucket.services.wiring import BucketServices
from shared.errors import (
    AccessDenied,
    AuthenticationFailed,
    DomainNotRegistered,
    InvalidDomain,
    InvalidIdentifier,
)
from shared.schemas.domains import DomainMapping

HANDLE_RE = re.compile(r"^[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
DID_RE = re.compile(r"^did:[a-z]+:[a-zA-Z0-9._-]+$")


@dataclass
class ReadContext:
    """Where a read is served from. ``domain`` is set for domain-routed public reads."""

    repository: RepositoryContext
    domain: DomainMapping | None = None


def get_services(request: Request) -> BucketServices:
    return request.app.state.services


def parse_basic_auth(authorization: str) -> OwnerCredential:
    """Decode ``Basic base64(identifier:password)`` into an OwnerCredential."""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "basic" or not token.strip():
        raise AuthenticationFailed("Expected Basic credentials")
    try:
        decoded = base64.b64decode(token.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise AuthenticationFailed("Malformed Basic credentials")

    identifier, sep, password = decoded.partition(":")
    if not sep or not identifier or not password:
        raise AuthenticationFailed("Malformed Basic credentials")
    if not (HANDLE_RE.match(identifier) or DID_RE.match(identifier)):
        raise InvalidIdentifier("Identifier must be a handle (name.tld) or a DID")
    return OwnerCredential(identifier=identifier, password=password)


async def optional_credential(
    authorization: str | None = Header(default=None),
) -> OwnerCredential | None:
    """FastAPI dependency: the caller's credential when an Authorization header is present."""
    if not authorization:
        return None
    return parse_basic_auth(authorization)


async def require_credential(
    credential: OwnerCredential | None = Depends(optional_credential),
) -> OwnerCredential:
    """FastAPI dependency: Authorization: Basic <base64(identifier:password)>"""
    if credential is None:
        raise AuthenticationFailed("Authentication required")
    return credential


async def resolve_read_context(
    request: Request,
    credential: OwnerCredential | None = Depends(optional_credential),
    services: BucketServices = Depends(get_services),
) -> ReadContext:
    """Authenticated callers read their own repository; anyone else goes by Host.

    A registered, active, public domain is served anonymously from its
    owner's repository at the endpoint derived from the owner handle.
    """
    if credential is not None:
        return ReadContext(repository=credential)

    host = request.url.hostname
    if services.is_internal_host(host):
        raise AuthenticationFailed("Authentication required")

    try:
        mapping = await services.registry.resolve(host)
    except InvalidDomain:
        mapping = None
    if mapping is None:
        raise DomainNotRegistered(f"Domain '{host}' is not registered")
    if not mapping.is_public:
        raise AccessDenied(f"Domain '{mapping.domain}' is not publicly accessible")

    endpoint = services.registry.resolve_pds_endpoint(mapping.owner_handle)
    return ReadContext(
        repository=PublicRepository(did=mapping.owner_id, endpoint=endpoint),
        domain=mapping,
    )
