"""Service – page nonces and short-lived session tokens.

A nonce is handed to the browser inside the served `index.html` and traded
once for a JWT at `GET /api/session`. The JWT then gates the relay endpoints.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Callable

import jwt

from app.errors import AuthenticationError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

JWT_ALGORITHM = "HS256"


class NonceStore:
    """Single-use nonces with a fixed time-to-live, held in memory."""

    def __init__(self, ttl_seconds: float = 300, clock: Clock = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._expiry: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._expiry)

    def issue(self) -> str:
        nonce = secrets.token_hex(16)
        self._expiry[nonce] = self._clock() + self.ttl_seconds
        return nonce

    def consume(self, nonce: str | None) -> bool:
        """Remove the nonce and report whether it was live. Never succeeds twice."""
        if not nonce:
            return False
        expiry = self._expiry.pop(nonce, None)
        if expiry is None:
            return False
        return self._clock() < expiry

    def sweep(self) -> int:
        now = self._clock()
        expired = [nonce for nonce, expiry in self._expiry.items() if now >= expiry]
        for nonce in expired:
            del self._expiry[nonce]
        if expired:
            logger.debug("Swept %d expired nonces", len(expired))
        return len(expired)


class SessionIssuer:
    """Sign and verify HS256 session tokens."""

    def __init__(self, secret: str, ttl_seconds: int = 3600, clock: Clock = time.time):
        self._secret = secret
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(self) -> str:
        now = int(self._clock())
        payload = {"iat": now, "exp": now + self.ttl_seconds}
        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)

    def verify(self, token: str) -> dict[str, Any]:
        try:
            # Expiry is checked here against the injected clock, not PyJWT's
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                options={"verify_exp": False},
            )
        except jwt.InvalidTokenError as exc:
            raise AuthenticationError("Invalid session token", code="INVALID_TOKEN") from exc

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or self._clock() >= exp:
            raise AuthenticationError(
                "Session expired, please refresh the page", code="INVALID_TOKEN"
            )
        return claims

    def authorize(self, authorization: str | None) -> dict[str, Any]:
        """Validate an `Authorization: Bearer <token>` header value."""
        if not authorization or not authorization.startswith("Bearer "):
            raise AuthenticationError(
                "Authorization header with Bearer token is required",
                code="MISSING_TOKEN",
            )
        return self.verify(authorization[len("Bearer "):])


def inject_nonce(html: str, nonce: str) -> str:
    """Add the session-nonce meta tag right before `</head>`."""
    return html.replace(
        "</head>",
        f'<meta name="session-nonce" content="{nonce}">\n</head>',
        1,
    )
