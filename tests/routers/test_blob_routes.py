"""Tests for the /blobs endpoints and domain-routed public reads."""

from __future__ import annotations

import pytest
from fakes import basic_auth

from bucket.services.sessions import OwnerCredential
from shared.schemas.domains import DomainSettings


async def _upload(client, credential, key, data=b"png-bytes", mime="image/png", **form):
    return await client.post(
        f"/blobs/{key}",
        files={"file": (key, data, mime)},
        data=form,
        headers=basic_auth(credential),
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "cache": True, "registry": True}


@pytest.mark.asyncio
async def test_health_degraded_when_redis_down(client, fake_redis):
    fake_redis.fail = True
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "degraded", "cache": False, "registry": False}


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_missing_credentials_on_internal_host_is_401(client):
    resp = await client.get("/blobs/logo.png")
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"] == "AUTHENTICATION_FAILED"
    assert body["statusCode"] == 401
    assert body["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_malformed_basic_header_is_401(client):
    resp = await client.get("/blobs", headers={"Authorization": "Basic not-base64!"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_bearer_scheme_is_401(client):
    resp = await client.get("/blobs", headers={"Authorization": "Bearer token"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_identifier_must_be_handle_or_did(client):
    resp = await client.get("/blobs", headers=basic_auth(OwnerCredential("alice", "pw")))
    assert resp.status_code == 400
    assert resp.json()["error"] == "INVALID_IDENTIFIER"


# ---------------------------------------------------------------------------
# Upload / download
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_upload_creates_then_updates(client, alice):
    created = await _upload(client, alice, "logo.png", b"one")
    assert created.status_code == 201
    body = created.json()
    assert body["key"] == "logo.png"
    assert body["mimeType"] == "image/png"
    assert body["created"] is True

    updated = await _upload(client, alice, "logo.png", b"two", enable_versioning="true", comment="v2")
    assert updated.status_code == 200
    assert updated.json()["version"] is not None


@pytest.mark.asyncio
async def test_upload_too_large_is_413(client, alice, services):
    services.settings.max_blob_size_bytes = 4
    resp = await _upload(client, alice, "big.bin", b"12345", "application/octet-stream")
    assert resp.status_code == 413
    assert resp.json()["error"] == "PAYLOAD_TOO_LARGE"


@pytest.mark.asyncio
async def test_upload_invalid_key_is_400(client, alice):
    resp = await _upload(client, alice, "what%3F")
    assert resp.status_code == 400
    assert resp.json()["error"] == "INVALID_KEY"


@pytest.mark.asyncio
async def test_download_returns_bytes_and_headers(client, alice):
    await _upload(client, alice, "logo.png", b"png-bytes")

    resp = await client.get("/blobs/logo.png", headers=basic_auth(alice))

    assert resp.status_code == 200
    assert resp.content == b"png-bytes"
    assert resp.headers["content-type"] == "image/png"
    assert resp.headers["content-length"] == str(len(b"png-bytes"))
    assert resp.headers["x-version"] == "current"
    assert resp.headers["x-cache"] == "HIT"
    assert "last-modified" in resp.headers
    assert "x-domain" not in resp.headers


@pytest.mark.asyncio
async def test_download_specific_version_is_immutable(client, alice):
    await _upload(client, alice, "logo.png", b"one", enable_versioning="true")
    second = await _upload(client, alice, "logo.png", b"two")
    version = second.json()["version"]

    resp = await client.get("/blobs/logo.png", params={"version": version}, headers=basic_auth(alice))

    assert resp.status_code == 200
    assert resp.content == b"one"
    assert resp.headers["x-version"] == version
    assert "immutable" in resp.headers["cache-control"]


@pytest.mark.asyncio
async def test_download_missing_is_404(client, alice):
    resp = await client.get("/blobs/nothing-here", headers=basic_auth(alice))
    assert resp.status_code == 404
    assert resp.json()["error"] == "BLOB_NOT_FOUND"


@pytest.mark.asyncio
async def test_unknown_version_is_404(client, alice):
    await _upload(client, alice, "logo.png")
    resp = await client.get(
        "/blobs/logo.png", params={"version": "2000-01-01T00:00:00.000000Z"}, headers=basic_auth(alice)
    )
    assert resp.status_code == 404
    assert resp.json()["error"] == "VERSION_NOT_FOUND"


@pytest.mark.asyncio
async def test_metadata_reports_cache_source(client, alice):
    await _upload(client, alice, "logo.png", b"png-bytes")

    resp = await client.get("/blobs/logo.png/metadata", headers=basic_auth(alice))

    assert resp.status_code == 200
    body = resp.json()
    assert body["source"] == "cache"
    assert body["metadata"]["size"] == len(b"png-bytes")
    assert body["metadata"]["mimeType"] == "image/png"
    assert resp.headers["x-cache"] == "HIT"


# ---------------------------------------------------------------------------
# Versions, listing, delete
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_versions_listing(client, alice):
    await _upload(client, alice, "doc", b"1", "application/pdf", enable_versioning="true")
    await _upload(client, alice, "doc", b"2", "application/pdf")
    await _upload(client, alice, "doc", b"3", "application/pdf")

    resp = await client.get("/blobs/doc/versions", headers=basic_auth(alice))

    assert resp.status_code == 200
    body = resp.json()
    assert body["key"] == "doc"
    assert body["current"]["size"] == 1
    assert len(body["versions"]) == 2
    assert body["versions"][0]["uploadedAt"] > body["versions"][1]["uploadedAt"]


@pytest.mark.asyncio
async def test_list_blobs(client, alice, bob):
    await _upload(client, alice, "a.png")
    await _upload(client, alice, "b.png")
    await _upload(client, bob, "c.png")

    resp = await client.get("/blobs", params={"limit": 1}, headers=basic_auth(alice))

    assert resp.status_code == 200
    body = resp.json()
    assert len(body["blobs"]) == 1
    assert body["hasMore"] is True

    resp = await client.get("/blobs", params={"cursor": body["cursor"]}, headers=basic_auth(alice))
    assert [b["key"] for b in resp.json()["blobs"]] == ["b.png"]


@pytest.mark.asyncio
async def test_delete_blob_then_get_is_404(client, alice):
    await _upload(client, alice, "logo.png")

    resp = await client.delete("/blobs/logo.png", headers=basic_auth(alice))
    assert resp.status_code == 200
    assert resp.json()["key"] == "logo.png"

    resp = await client.get("/blobs/logo.png", headers=basic_auth(alice))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_single_version(client, alice):
    await _upload(client, alice, "logo.png", b"1", enable_versioning="true")
    version = (await _upload(client, alice, "logo.png", b"2")).json()["version"]

    resp = await client.delete("/blobs/logo.png", params={"version": version}, headers=basic_auth(alice))

    assert resp.status_code == 200
    assert resp.json()["version"] == version
    versions = (await client.get("/blobs/logo.png/versions", headers=basic_auth(alice))).json()
    assert versions["versions"] == []


# ---------------------------------------------------------------------------
# Domain-routed public reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_public_read_through_registered_domain(client, alice, registry):
    await _upload(client, alice, "logo.png", b"public-png")
    await registry.register("cdn.example.com", "alice.bsky.social", "did:plc:alice")

    resp = await client.get("/blobs/logo.png", headers={"Host": "cdn.example.com"})

    assert resp.status_code == 200
    assert resp.content == b"public-png"
    assert resp.headers["x-domain"] == "cdn.example.com"


@pytest.mark.asyncio
async def test_public_read_on_port_suffixed_host(client, alice, registry):
    await _upload(client, alice, "logo.png", b"public-png")
    await registry.register("cdn.example.com", "alice.bsky.social", "did:plc:alice")

    resp = await client.get("/blobs/logo.png", headers={"Host": "cdn.example.com:8080"})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_unregistered_domain_is_404(client):
    resp = await client.get("/blobs/logo.png", headers={"Host": "unknown.example.com"})
    assert resp.status_code == 404
    assert resp.json()["error"] == "DOMAIN_NOT_REGISTERED"


@pytest.mark.asyncio
async def test_suspended_domain_is_403(client, alice, registry):
    await _upload(client, alice, "logo.png")
    await registry.register("cdn.example.com", "alice.bsky.social", "did:plc:alice", status="suspended")

    resp = await client.get("/blobs/logo.png", headers={"Host": "cdn.example.com"})
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_domain_mime_policy_blocks_disallowed_types(client, alice, registry):
    await _upload(client, alice, "notes.txt", b"plain text", "text/plain")
    await registry.register("cdn.example.com", "alice.bsky.social", "did:plc:alice")

    resp = await client.get("/blobs/notes.txt", headers={"Host": "cdn.example.com"})
    assert resp.status_code == 403
    assert resp.json()["error"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_domain_size_policy_blocks_oversized_blobs(client, alice, registry):
    await _upload(client, alice, "logo.png", b"x" * 64)
    await registry.register(
        "cdn.example.com",
        "alice.bsky.social",
        "did:plc:alice",
        settings=DomainSettings(max_file_size=16),
    )

    resp = await client.get("/blobs/logo.png", headers={"Host": "cdn.example.com"})
    assert resp.status_code == 403
    assert resp.json()["error"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_domain_policy_applies_to_metadata(client, alice, registry):
    await _upload(client, alice, "notes.txt", b"plain text", "text/plain")
    await _upload(client, alice, "big.png", b"x" * 64)
    await registry.register(
        "cdn.example.com",
        "alice.bsky.social",
        "did:plc:alice",
        settings=DomainSettings(max_file_size=16),
    )

    for key in ("notes.txt", "big.png"):
        resp = await client.get(f"/blobs/{key}/metadata", headers={"Host": "cdn.example.com"})
        assert resp.status_code == 403
        assert resp.json()["error"] == "FORBIDDEN"
        assert "metadata" not in resp.json()


@pytest.mark.asyncio
async def test_domain_metadata_for_allowed_blob(client, alice, registry):
    await _upload(client, alice, "logo.png", b"png-bytes")
    await registry.register("cdn.example.com", "alice.bsky.social", "did:plc:alice")

    resp = await client.get("/blobs/logo.png/metadata", headers={"Host": "cdn.example.com"})

    assert resp.status_code == 200
    assert resp.json()["metadata"]["mimeType"] == "image/png"


@pytest.mark.asyncio
async def test_public_domain_cannot_write(client, registry):
    await registry.register("cdn.example.com", "alice.bsky.social", "did:plc:alice")
    resp = await client.delete("/blobs/logo.png", headers={"Host": "cdn.example.com"})
    assert resp.status_code == 401
