"""Admin sessions guarding the mutating endpoints.

A session is a random bearer token minted by a successful login. Only an
HMAC digest of the token is kept, next to its expiry instant. Expiry is
checked lazily whenever a token is verified; there are no timers, so a
restart simply drops every session.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import timedelta
from threading import Lock
from typing import Any, Callable, Dict, Optional

from newsbot.errors import Unauthorized

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "admin-"
DEFAULT_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class AdminSession:
    token: str
    expires_at: float
    ttl: timedelta

    @property
    def expires_in(self) -> str:
        """Human form of the TTL as sent to clients, e.g. ``"24h"``."""
        seconds = int(self.ttl.total_seconds())
        if seconds % 3600 == 0:
            return f"{seconds // 3600}h"
        return f"{seconds}s"


class AdminGate:
    """Issues, verifies and revokes admin session tokens."""

    def __init__(
        self,
        password: Optional[str],
        secret: str,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._password = password
        self._key = secret.encode("utf-8")
        self._ttl = ttl
        self._clock = clock
        self._active: Dict[str, float] = {}
        self._lock = Lock()

    def _digest(self, token: str) -> str:
        return hmac.new(self._key, token.encode("utf-8"), hashlib.sha256).hexdigest()

    def _purge_expired(self, now: float) -> None:
        for key in [k for k, exp in self._active.items() if exp <= now]:
            del self._active[key]

    def login(self, password: Any) -> AdminSession:
        if not self._password:
            logger.warning("Admin login attempted but ADMIN_PASSWORD is not configured")
            raise Unauthorized("Invalid password")
        if not isinstance(password, str) or not hmac.compare_digest(
            password.encode("utf-8"), self._password.encode("utf-8")
        ):
            logger.warning("Admin login rejected: invalid password")
            raise Unauthorized("Invalid password")

        token = TOKEN_PREFIX + secrets.token_urlsafe(24)
        now = self._clock()
        expires_at = now + self._ttl.total_seconds()
        with self._lock:
            self._purge_expired(now)
            self._active[self._digest(token)] = expires_at
        logger.info("Admin session opened")
        return AdminSession(token=token, expires_at=expires_at, ttl=self._ttl)

    def verify(self, token: Optional[str]) -> None:
        """Raise :class:`Unauthorized` unless ``token`` is a live session."""
        if not token:
            raise Unauthorized("Unauthorized: Admin token required")
        key = self._digest(token)
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            if key not in self._active:
                raise Unauthorized("Unauthorized: Admin token required")

    def logout(self, token: Optional[str]) -> None:
        self.verify(token)
        with self._lock:
            self._active.pop(self._digest(token), None)
        logger.info("Admin session closed")

    def active_count(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._active)
