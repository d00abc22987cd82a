"""
Readmission Risk Agent - Authentication and Sessions

Clinicians sign in with a username and password and receive an opaque bearer
token valid for one shift. Tokens map to a Session that records who the
caller is and which role they hold; the API layer checks that role before
serving clinical data.

Passwords are stored as salted PBKDF2-SHA256 hashes in the form
``pbkdf2_sha256$<iterations>$<salt hex>$<digest hex>``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from .repository import User, UserRepository

logger = logging.getLogger(__name__)

HASH_ALGORITHM = "pbkdf2_sha256"
HASH_ITERATIONS = 260_000


def hash_password(password: str, salt: Optional[bytes] = None,
                  iterations: int = HASH_ITERATIONS) -> str:
    """Hash a password for storage."""
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{HASH_ALGORITHM}${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored_hash: str) -> bool:
    """Constant-time comparison of a password against a stored hash."""
    try:
        algorithm, iterations, salt_hex, digest_hex = stored_hash.split("$")
        if algorithm != HASH_ALGORITHM:
            return False
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), int(iterations)
        )
    except (ValueError, OverflowError):
        logger.error("Malformed password hash in user store")
        return False
    return hmac.compare_digest(digest.hex(), digest_hex)


@dataclass(frozen=True)
class Session:
    """An issued bearer token and the identity behind it."""
    token: str
    user_id: str
    username: str
    role: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class SessionStore:
    """
    Thread-safe in-memory token store.

    Args:
        ttl: How long an issued token stays valid
        clock: Returns the current UTC time (injectable for tests)
    """

    def __init__(
        self,
        ttl: timedelta,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def issue(self, user: User) -> Session:
        """Issue a new token, purging any expired sessions first."""
        now = self._clock()
        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user.id,
            username=user.username,
            role=user.role,
            expires_at=now + self.ttl,
        )
        with self._lock:
            self._purge_expired(now)
            self._sessions[session.token] = session
        return session

    def resolve(self, token: str) -> Optional[Session]:
        """Return the live session for a token, dropping it if expired."""
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if session.is_expired(self._clock()):
                del self._sessions[token]
                logger.info("Expired session removed", extra={"user": session.username})
                return None
            return session

    def revoke(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _purge_expired(self, now: datetime) -> None:
        # Caller holds the lock
        expired = [t for t, s in self._sessions.items() if s.is_expired(now)]
        for token in expired:
            del self._sessions[token]
        if expired:
            logger.info("Expired sessions purged", extra={"count": len(expired)})


class Authenticator:
    """Checks credentials against the user repository and issues sessions."""

    def __init__(self, users: UserRepository, sessions: SessionStore):
        self.users = users
        self.sessions = sessions

    def login(self, username: str, password: str) -> Optional[Session]:
        """
        Returns:
            A new Session, or None if the credentials are invalid
        """
        user = self.users.get_by_username(username)
        if user is None:
            return None

        if not verify_password(password, user.password_hash):
            logger.warning("Failed login attempt", extra={"username": username})
            return None

        session = self.sessions.issue(user)
        logger.info("Successful login", extra={"username": username, "role": user.role})
        return session
