"""Tests for settings parsing and the error taxonomy."""

from __future__ import annotations

import pytest

from shared import errors
from shared.config import Settings, parse_list


@pytest.mark.parametrize(
    "value,expected",
    [
        ("a,b , c", ["a", "b", "c"]),
        ('["x", "y"]', ["x", "y"]),
        ("", []),
        (["already", "list"], ["already", "list"]),
    ],
)
def test_parse_list(value, expected):
    assert parse_list(value) == expected


def test_settings_defaults():
    settings = Settings(_env_file=None)
    assert settings.atproto_service_url == "https://bsky.social"
    assert settings.mapping_cache_ttl == 3600
    assert settings.metadata_cache_ttl == 1800
    assert settings.owner_keys_cache_ttl == 300
    assert settings.max_blob_size_bytes == 50 * 1024 * 1024
    assert "localhost" in parse_list(settings.internal_hosts)


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://cache:6380/2")
    monkeypatch.setenv("MAPPING_CACHE_TTL", "60")
    settings = Settings(_env_file=None)
    assert settings.redis_url == "redis://cache:6380/2"
    assert settings.mapping_cache_ttl == 60


@pytest.mark.parametrize(
    "exc,code,status",
    [
        (errors.InvalidKey, "INVALID_KEY", 400),
        (errors.InvalidDomain, "INVALID_DOMAIN", 400),
        (errors.AuthenticationFailed, "AUTHENTICATION_FAILED", 401),
        (errors.BlobNotFound, "BLOB_NOT_FOUND", 404),
        (errors.VersionNotFound, "VERSION_NOT_FOUND", 404),
        (errors.DomainNotFound, "DOMAIN_NOT_FOUND", 404),
        (errors.DomainNotRegistered, "DOMAIN_NOT_REGISTERED", 404),
        (errors.DomainAlreadyRegistered, "DOMAIN_ALREADY_REGISTERED", 409),
        (errors.RemoteError, "REMOTE_ERROR", 502),
        (errors.RegistryUnavailable, "REGISTRY_UNAVAILABLE", 503),
    ],
)
def test_error_codes(exc, code, status):
    assert exc.code == code
    assert exc.status_code == status
    assert issubclass(exc, errors.BucketError)


def test_error_message_defaults_to_docstring():
    assert errors.BlobNotFound().message == "No mapping record exists for the key."
    assert errors.BlobNotFound("gone").message == "gone"
