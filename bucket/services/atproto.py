"""AT Protocol repository adapter.

The owner's PDS is the only durable store. ``RemoteRepository`` is the
contract the engine programs against; ``AtprotoRepository`` implements it
over XRPC with httpx so the rest of the service stays protocol-agnostic.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

import httpx
import structlog

from bucket.services.sessions import OwnerCredential, PdsSession, PublicRepository, SessionStore
from shared.errors import AuthenticationFailed, RemoteError
from shared.schemas.blobs import BlobInfo, utc_now_iso

logger = structlog.get_logger()

RepositoryContext = OwnerCredential | PublicRepository

DEFAULT_SERVICE_URL = "https://bsky.social"

_RKEY_INVALID = re.compile(r"[^a-z0-9.-]")
_NOT_FOUND_MARKERS = ("RecordNotFound", "Could not locate record", "Record not found")
_REJECTED_SESSION_ERRORS = {"ExpiredToken", "InvalidToken"}


def sanitize_key(key: str) -> str:
    """Map a blob key onto a record key.

    Deterministic but lossy: ``"MyFile.TXT"`` and ``"myfile.txt"`` land on
    the same record, and the PDS resolves that last-write-wins.
    """
    rkey = _RKEY_INVALID.sub("-", key.lower())
    return rkey.strip("-")[:64]


def pds_endpoint_for_handle(handle: str, default: str = DEFAULT_SERVICE_URL) -> str:
    """Guess the serving PDS from a handle (``alice.bsky.social`` -> ``https://bsky.social``).

    A heuristic, not a protocol guarantee. DIDs and single-label names get
    the default endpoint.
    """
    if handle.startswith("did:"):
        return default
    labels = [label for label in handle.split(".") if label]
    if len(labels) < 2:
        return default
    return f"https://{'.'.join(labels[-2:])}"


def _error_details(resp: httpx.Response) -> tuple[str, str]:
    try:
        body = resp.json()
    except ValueError:
        return "", resp.text[:500]
    if not isinstance(body, dict):
        return "", resp.text[:500]
    return str(body.get("error") or ""), str(body.get("message") or "")


def _is_not_found(error: str, message: str) -> bool:
    text = f"{error} {message}"
    return any(marker in text for marker in _NOT_FOUND_MARKERS)


def _pds_from_did_doc(data: dict) -> str | None:
    """Pull the ``#atproto_pds`` service endpoint out of a createSession didDoc."""
    did_doc = data.get("didDoc") or {}
    for service in did_doc.get("service") or []:
        if str(service.get("id", "")).endswith("#atproto_pds"):
            endpoint = service.get("serviceEndpoint")
            if isinstance(endpoint, str) and endpoint:
                return endpoint.rstrip("/")
    return None


class RemoteRepository(ABC):
    """Per-owner authoritative record and blob store."""

    @abstractmethod
    async def put_record(
        self, ctx: RepositoryContext, key: str, collection: str, data: dict
    ) -> str:
        """Create or replace a record; returns its locator (``at://`` URI)."""

    @abstractmethod
    async def get_record(self, ctx: RepositoryContext, key: str, collection: str) -> dict | None:
        """Fetch a record's value, or None when it does not exist."""

    @abstractmethod
    async def delete_record(self, ctx: RepositoryContext, key: str, collection: str) -> None:
        """Delete a record."""

    @abstractmethod
    async def list_records(
        self,
        ctx: RepositoryContext,
        collection: str,
        limit: int = 100,
        cursor: str | None = None,
    ) -> tuple[list[dict], str | None]:
        """List record values in a collection, paginated."""

    @abstractmethod
    async def upload_blob(self, ctx: RepositoryContext, data: bytes, mime_type: str) -> BlobInfo:
        """Store bytes; the server assigns the cid and size."""

    @abstractmethod
    async def download_blob(self, ctx: RepositoryContext, cid: str) -> bytes:
        """Fetch a blob's bytes by cid."""

    @abstractmethod
    async def owner_id(self, ctx: RepositoryContext) -> str:
        """DID of the repository the context addresses."""

    @abstractmethod
    async def owner_handle(self, ctx: RepositoryContext) -> str:
        """Handle of the repository owner."""

    async def close(self) -> None:
        """Release network resources."""


class AtprotoRepository(RemoteRepository):
    """XRPC client for owners' PDS instances."""

    def __init__(
        self,
        sessions: SessionStore,
        service_url: str = DEFAULT_SERVICE_URL,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.sessions = sessions
        self.service_url = service_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def endpoint_for(self, credential: OwnerCredential) -> str:
        return pds_endpoint_for_handle(credential.identifier, self.service_url)

    async def _login(self, credential: OwnerCredential) -> PdsSession:
        endpoint = self.endpoint_for(credential)
        resp = await self._send(
            "POST",
            f"{endpoint}/xrpc/com.atproto.server.createSession",
            json={"identifier": credential.identifier, "password": credential.password},
        )
        if resp.status_code in (400, 401, 403):
            error, message = _error_details(resp)
            logger.warning(
                "atproto_login_failed",
                identifier=credential.identifier,
                status=resp.status_code,
                error=error,
            )
            raise AuthenticationFailed(f"Authentication failed: {message or error or resp.status_code}")
        if not resp.is_success:
            error, message = _error_details(resp)
            logger.error("atproto_login_error", identifier=credential.identifier, status=resp.status_code)
            raise RemoteError(f"createSession failed ({resp.status_code}): {message or error}")

        data = resp.json()
        session = self.sessions.put(
            credential,
            did=data["did"],
            handle=data.get("handle", credential.identifier),
            endpoint=_pds_from_did_doc(data) or endpoint,
            access_jwt=data["accessJwt"],
            refresh_jwt=data.get("refreshJwt", ""),
        )
        logger.info("atproto_session_created", identifier=credential.identifier, did=session.did)
        return session

    async def _session(self, credential: OwnerCredential) -> PdsSession:
        session = self.sessions.get(credential)
        if session is not None:
            return session
        return await self._login(credential)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("atproto_timeout", url=url)
            raise RemoteError(f"Timed out calling {url}") from e
        except httpx.RequestError as e:
            logger.error("atproto_request_error", url=url, error=str(e))
            raise RemoteError(f"Failed to reach {url}: {e}") from e

    @staticmethod
    def _session_rejected(resp: httpx.Response) -> bool:
        if resp.status_code == 401:
            return True
        if resp.status_code == 400:
            error, _ = _error_details(resp)
            return error in _REJECTED_SESSION_ERRORS
        return False

    async def _xrpc(
        self,
        method: str,
        nsid: str,
        ctx: RepositoryContext,
        *,
        allow_not_found: bool = False,
        headers: dict[str, str] | None = None,
        **kwargs,
    ) -> httpx.Response | None:
        """Issue an XRPC call; returns None for a tolerated not-found."""
        if isinstance(ctx, PublicRepository):
            resp = await self._send(method, f"{ctx.endpoint}/xrpc/{nsid}", headers=headers, **kwargs)
        else:
            session = await self._session(ctx)
            resp = await self._send(
                method,
                f"{session.endpoint}/xrpc/{nsid}",
                headers={**(headers or {}), "Authorization": f"Bearer {session.access_jwt}"},
                **kwargs,
            )
            if self._session_rejected(resp):
                logger.info("atproto_session_rejected", identifier=ctx.identifier, nsid=nsid)
                self.sessions.discard(ctx)
                session = await self._login(ctx)
                resp = await self._send(
                    method,
                    f"{session.endpoint}/xrpc/{nsid}",
                    headers={**(headers or {}), "Authorization": f"Bearer {session.access_jwt}"},
                    **kwargs,
                )

        if resp.is_success:
            return resp

        error, message = _error_details(resp)
        if allow_not_found and _is_not_found(error, message):
            return None
        logger.error("atproto_xrpc_error", nsid=nsid, status=resp.status_code, error=error)
        raise RemoteError(f"{nsid} failed ({resp.status_code}): {message or error or 'unknown error'}")

    @staticmethod
    def _require_owner(ctx: RepositoryContext, action: str) -> OwnerCredential:
        if not isinstance(ctx, OwnerCredential):
            raise AuthenticationFailed(f"{action} requires the owner's credentials")
        return ctx

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def put_record(
        self, ctx: RepositoryContext, key: str, collection: str, data: dict
    ) -> str:
        credential = self._require_owner(ctx, "putRecord")
        body = {
            "repo": await self.owner_id(credential),
            "collection": collection,
            "rkey": sanitize_key(key),
            "record": data,
        }
        resp = await self._xrpc("POST", "com.atproto.repo.putRecord", credential, json=body)
        return resp.json()["uri"]

    async def get_record(self, ctx: RepositoryContext, key: str, collection: str) -> dict | None:
        params = {
            "repo": await self.owner_id(ctx),
            "collection": collection,
            "rkey": sanitize_key(key),
        }
        resp = await self._xrpc(
            "GET", "com.atproto.repo.getRecord", ctx, params=params, allow_not_found=True
        )
        if resp is None:
            logger.debug("atproto_record_not_found", collection=collection, key=key)
            return None
        return resp.json().get("value")

    async def delete_record(self, ctx: RepositoryContext, key: str, collection: str) -> None:
        credential = self._require_owner(ctx, "deleteRecord")
        body = {
            "repo": await self.owner_id(credential),
            "collection": collection,
            "rkey": sanitize_key(key),
        }
        await self._xrpc("POST", "com.atproto.repo.deleteRecord", credential, json=body)

    async def list_records(
        self,
        ctx: RepositoryContext,
        collection: str,
        limit: int = 100,
        cursor: str | None = None,
    ) -> tuple[list[dict], str | None]:
        params: dict[str, str | int] = {
            "repo": await self.owner_id(ctx),
            "collection": collection,
            "limit": limit,
        }
        if cursor:
            params["cursor"] = cursor
        resp = await self._xrpc("GET", "com.atproto.repo.listRecords", ctx, params=params)
        data = resp.json()
        records = [r["value"] for r in data.get("records", []) if "value" in r]
        return records, data.get("cursor")

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    async def upload_blob(self, ctx: RepositoryContext, data: bytes, mime_type: str) -> BlobInfo:
        credential = self._require_owner(ctx, "uploadBlob")
        resp = await self._xrpc(
            "POST",
            "com.atproto.repo.uploadBlob",
            credential,
            content=data,
            headers={"Content-Type": mime_type},
        )
        blob = resp.json()["blob"]
        ref = blob.get("ref") or {}
        cid = ref.get("$link") if isinstance(ref, dict) else str(ref)
        if not cid:
            raise RemoteError("uploadBlob returned no content identifier")
        logger.info("atproto_blob_uploaded", cid=cid, size=blob.get("size", len(data)))
        return BlobInfo(
            cid=cid,
            mime_type=mime_type,
            size=blob.get("size", len(data)),
            uploaded_at=utc_now_iso(),
        )

    async def download_blob(self, ctx: RepositoryContext, cid: str) -> bytes:
        params = {"did": await self.owner_id(ctx), "cid": cid}
        resp = await self._xrpc("GET", "com.atproto.sync.getBlob", ctx, params=params)
        return resp.content

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def owner_id(self, ctx: RepositoryContext) -> str:
        if isinstance(ctx, PublicRepository):
            return ctx.did
        return (await self._session(ctx)).did

    async def owner_handle(self, ctx: RepositoryContext) -> str:
        if isinstance(ctx, PublicRepository):
            return ctx.did
        return (await self._session(ctx)).handle

    async def close(self) -> None:
        await self._client.aclose()
        self.sessions.clear()
