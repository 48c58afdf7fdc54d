"""In-process store of authenticated PDS sessions.

Sessions are keyed by a fingerprint of the full credential (identifier plus
a hash of the app password), so a caller presenting the right handle with a
wrong password never picks up someone else's session.
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class OwnerCredential:
    """An owner's AT Protocol identifier (handle or DID) and app password."""

    identifier: str
    password: str = field(repr=False)

    @property
    def fingerprint(self) -> str:
        digest = hashlib.sha256(self.password.encode()).hexdigest()
        return f"{self.identifier.lower()}:{digest}"


@dataclass(frozen=True)
class PublicRepository:
    """Anonymous, read-only address of another owner's repository."""

    did: str
    endpoint: str


@dataclass
class PdsSession:
    did: str
    handle: str
    endpoint: str
    access_jwt: str = field(repr=False)
    refresh_jwt: str = field(repr=False)
    created_at: float
    expires_at: float

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.monotonic()) >= self.expires_at


class SessionStore:
    """Credential fingerprint -> PdsSession, with expiry checked before reuse."""

    def __init__(self, ttl_seconds: float, clock=time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, PdsSession] = {}

    def get(self, credential: OwnerCredential) -> PdsSession | None:
        session = self._sessions.get(credential.fingerprint)
        if session is None:
            return None
        if session.is_expired(self._clock()):
            del self._sessions[credential.fingerprint]
            return None
        return session

    def put(
        self,
        credential: OwnerCredential,
        *,
        did: str,
        handle: str,
        endpoint: str,
        access_jwt: str,
        refresh_jwt: str,
    ) -> PdsSession:
        now = self._clock()
        self._sweep(now)
        session = PdsSession(
            did=did,
            handle=handle,
            endpoint=endpoint,
            access_jwt=access_jwt,
            refresh_jwt=refresh_jwt,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        self._sessions[credential.fingerprint] = session
        return session

    def _sweep(self, now: float) -> None:
        expired = [key for key, session in self._sessions.items() if session.is_expired(now)]
        for key in expired:
            del self._sessions[key]

    def discard(self, credential: OwnerCredential) -> None:
        self._sessions.pop(credential.fingerprint, None)

    def clear(self) -> None:
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)
