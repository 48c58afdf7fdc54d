"""Shared test fixtures for the bucket test suite.

Provides in-memory Redis and repository fakes, wired services and an
ASGI test client so tests run without Redis or a PDS.
"""

from __future__ import annotations

import itertools

import pytest
from httpx import ASGITransport, AsyncClient

from bucket.main import create_app
from bucket.services.blob_cache import BlobCache
from bucket.services.blob_engine import BlobEngine
from bucket.services.domain_registry import DomainRegistry
from bucket.services.sessions import OwnerCredential
from bucket.services.wiring import BucketServices
from shared.config import Settings
from fakes import FakeRedis, FakeRepository


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


@pytest.fixture
def alice():
    return OwnerCredential(identifier="alice.bsky.social", password="alice-app-password")


@pytest.fixture
def bob():
    return OwnerCredential(identifier="bob.example.com", password="bob-app-password")


# ---------------------------------------------------------------------------
# Service fakes
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def cache(fake_redis):
    return BlobCache(fake_redis)


@pytest.fixture
def registry(fake_redis):
    return DomainRegistry(fake_redis)


@pytest.fixture
def ticking_clock(monkeypatch):
    """Make engine timestamps strictly increasing, one second per call."""
    ticks = itertools.count(1)

    def now():
        return f"2025-06-01T00:{next(ticks):02d}:00.000000Z"

    monkeypatch.setattr("bucket.services.blob_engine.utc_now_iso", now)
    return now


@pytest.fixture
def engine(repository, cache, ticking_clock):
    return BlobEngine(repository, cache)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        cors_origins="http://localhost:3000",
        internal_hosts="localhost,127.0.0.1,bucket.social",
    )


@pytest.fixture
def services(settings, repository, cache, registry, engine, fake_redis):
    return BucketServices(
        settings=settings,
        repository=repository,
        cache=cache,
        registry=registry,
        engine=engine,
        redis=fake_redis,
        internal_hosts=frozenset({"localhost", "127.0.0.1", "bucket.social"}),
    )


@pytest.fixture
def app(settings, services):
    return create_app(settings=settings, services=services)


@pytest.fixture
async def client(app):
    """Async test client; requests go to an internal host."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://localhost") as c:
        yield c
