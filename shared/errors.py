"""Error taxonomy shared by the engine, registry and HTTP layer.

Every error carries a stable ``code`` and the HTTP status the transport
renders it as. Nothing in the core retries; callers decide.
"""

from __future__ import annotations


class BucketError(Exception):
    """Base exception for the blob service."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class InvalidKey(BucketError):
    """Blob key is missing, too long or contains forbidden characters."""

    code = "INVALID_KEY"
    status_code = 400


class InvalidDomain(BucketError):
    """Domain name is malformed."""

    code = "INVALID_DOMAIN"
    status_code = 400


class AuthenticationFailed(BucketError):
    """The remote repository rejected the owner's credentials."""

    code = "AUTHENTICATION_FAILED"
    status_code = 401


class BlobNotFound(BucketError):
    """No mapping record exists for the key."""

    code = "BLOB_NOT_FOUND"
    status_code = 404


class VersionNotFound(BucketError):
    """The mapping record has no such version."""

    code = "VERSION_NOT_FOUND"
    status_code = 404


class DomainNotFound(BucketError):
    """The domain is not registered."""

    code = "DOMAIN_NOT_FOUND"
    status_code = 404


class DomainAlreadyRegistered(BucketError):
    """The domain is already mapped to an owner."""

    code = "DOMAIN_ALREADY_REGISTERED"
    status_code = 409


class RemoteError(BucketError):
    """Unclassified failure talking to the remote repository."""

    code = "REMOTE_ERROR"
    status_code = 502


class RegistryUnavailable(BucketError):
    """The domain registry store could not be reached."""

    code = "REGISTRY_UNAVAILABLE"
    status_code = 503


class CacheUnavailable(BucketError):
    """Cache store failure. Logged and treated as a miss, never raised to callers."""

    code = "CACHE_UNAVAILABLE"
    status_code = 503


class InvalidIdentifier(BucketError):
    """Credential identifier is neither a handle nor a DID."""

    code = "INVALID_IDENTIFIER"
    status_code = 400


class AccessDenied(BucketError):
    """The caller may not access this resource."""

    code = "FORBIDDEN"
    status_code = 403


class DomainNotRegistered(DomainNotFound):
    """The request host is not a registered domain."""

    code = "DOMAIN_NOT_REGISTERED"


class BlobTooLarge(BucketError):
    """Upload exceeds the maximum blob size."""

    code = "PAYLOAD_TOO_LARGE"
    status_code = 413


class InvalidRequest(BucketError):
    """The request body does not describe a valid change."""

    code = "INVALID_REQUEST"
    status_code = 400
