"""
Access tokens: short-lived HS256 JWTs handed out after a magic link is
redeemed (or a session is created) and sent back as ``Authorization: Bearer``.

Claims: ``email``, ``type`` and, for session-scoped tokens, ``sessionId``.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import jwt

from balance.config import DEFAULT_JWT_EXPIRES_IN, normalize_env
from balance.errors import ConfigurationError, UnauthorizedError
from balance.observability.logging import get_logger
from balance.observability.telemetry import counter

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"
INVALID_ACCESS_TOKEN_MESSAGE = "Invalid or expired access token."

_EXPIRES_IN_PATTERN = re.compile(r"^(\d+)([smhd]?)$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


class AccessTokenType(str, Enum):
    CONTINUE_SESSION = "continue_session"
    FIND_SESSIONS = "find_sessions"
    SESSION_BOOTSTRAP = "session_bootstrap"

    @property
    def is_session_scoped(self) -> bool:
        return self is not AccessTokenType.FIND_SESSIONS


@dataclass(frozen=True)
class AccessTokenPayload:
    """Verified identity of the caller (the "principal")."""

    email: str
    type: AccessTokenType
    session_id: str | None = None

    def to_claims(self) -> dict[str, Any]:
        claims: dict[str, Any] = {"email": self.email, "type": self.type.value}
        if self.session_id:
            claims["sessionId"] = self.session_id
        return claims


def parse_expires_in(value: str | None, default: str = DEFAULT_JWT_EXPIRES_IN) -> int:
    """
    Convert an expiry like "3600", "30m", "2h" or "7d" to seconds.

    Quotes and surrounding whitespace are ignored. Anything unparseable or
    non-positive falls back to ``default``.
    """
    for candidate in (value, default):
        normalized = (normalize_env(candidate) or "").lower()
        match = _EXPIRES_IN_PATTERN.match(normalized)
        if not match:
            continue
        amount = int(match.group(1))
        if amount > 0:
            return amount * _UNIT_SECONDS[match.group(2)]
    # The built-in default always parses
    return 3600


class AccessTokenIssuer:
    """Signs and verifies access tokens with a shared secret."""

    def __init__(
        self,
        secret: str | None,
        expires_in: str | None = DEFAULT_JWT_EXPIRES_IN,
        bootstrap_expires_in: str | None = DEFAULT_JWT_EXPIRES_IN,
    ) -> None:
        if not secret:
            raise ConfigurationError("JWT_SECRET must be configured.")
        self._secret = secret
        self.expires_in_seconds = parse_expires_in(expires_in)
        self.bootstrap_expires_in_seconds = parse_expires_in(bootstrap_expires_in)

    def issue(
        self,
        email: str,
        token_type: AccessTokenType,
        session_id: str | None = None,
    ) -> tuple[str, int]:
        """
        Mint a signed token.

        Returns:
            (token, lifetime in seconds)

        Raises:
            ValueError: If a session-scoped type is issued without a session id
        """
        if token_type.is_session_scoped and not session_id:
            raise ValueError(f"{token_type.value} tokens require a session id")

        lifetime = (
            self.bootstrap_expires_in_seconds
            if token_type is AccessTokenType.SESSION_BOOTSTRAP
            else self.expires_in_seconds
        )
        payload = AccessTokenPayload(email=email, type=token_type, session_id=session_id)
        now = int(time.time())
        claims = {**payload.to_claims(), "iat": now, "exp": now + lifetime}

        token = jwt.encode(claims, self._secret, algorithm=JWT_ALGORITHM)
        counter(f"auth.access_token.issued.{token_type.value}")
        return token, lifetime

    def verify(self, token: str) -> AccessTokenPayload:
        """
        Decode and validate a bearer token.

        Raises:
            UnauthorizedError: For bad signatures, expiry, a missing email,
                an unknown type, or a session-scoped token without sessionId
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["exp"]},
            )
        except jwt.PyJWTError as e:
            logger.debug("Access token rejected: %s", e)
            counter("auth.access_token.rejected")
            raise UnauthorizedError(INVALID_ACCESS_TOKEN_MESSAGE) from None

        email = claims.get("email")
        session_id = claims.get("sessionId") or None
        try:
            token_type = AccessTokenType(claims.get("type"))
        except ValueError:
            token_type = None

        if (
            not isinstance(email, str)
            or not email.strip()
            or token_type is None
            or (token_type.is_session_scoped and not session_id)
        ):
            counter("auth.access_token.rejected")
            raise UnauthorizedError(INVALID_ACCESS_TOKEN_MESSAGE)

        return AccessTokenPayload(
            email=email.strip().lower(),
            type=token_type,
            session_id=str(session_id) if session_id else None,
        )
