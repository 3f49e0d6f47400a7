"""Unit tests for JWT access tokens"""

from __future__ import annotations

import time

import jwt
import pytest

from balance.auth.access_tokens import (
    JWT_ALGORITHM,
    AccessTokenIssuer,
    AccessTokenType,
    parse_expires_in,
)
from balance.errors import ConfigurationError, UnauthorizedError

SECRET = "unit-test-secret"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("3600", 3600),
        ("30m", 1800),
        ("2h", 7200),
        ("7d", 604800),
        ('"1h"', 3600),
        ("  15s ", 15),
        ("0", 3600),
        ("soon", 3600),
        (None, 3600),
    ],
)
def test_parse_expires_in(value, expected):
    assert parse_expires_in(value) == expected


def test_issuer_requires_secret():
    with pytest.raises(ConfigurationError):
        AccessTokenIssuer(None)


def test_issue_and_verify_session_token():
    issuer = AccessTokenIssuer(SECRET, expires_in="15m")
    token, lifetime = issuer.issue("a@b.com", AccessTokenType.CONTINUE_SESSION, "ABCD2345")

    payload = issuer.verify(token)

    assert lifetime == 900
    assert payload.email == "a@b.com"
    assert payload.type is AccessTokenType.CONTINUE_SESSION
    assert payload.session_id == "ABCD2345"


def test_bootstrap_tokens_use_their_own_lifetime():
    issuer = AccessTokenIssuer(SECRET, expires_in="1h", bootstrap_expires_in="10m")
    _, lifetime = issuer.issue("a@b.com", AccessTokenType.SESSION_BOOTSTRAP, "ABCD2345")

    assert lifetime == 600


def test_find_sessions_token_has_no_session():
    issuer = AccessTokenIssuer(SECRET)
    token, _ = issuer.issue("a@b.com", AccessTokenType.FIND_SESSIONS)

    assert issuer.verify(token).session_id is None


def test_session_scoped_issue_without_session_id_fails():
    issuer = AccessTokenIssuer(SECRET)

    with pytest.raises(ValueError):
        issuer.issue("a@b.com", AccessTokenType.CONTINUE_SESSION)


def _sign(claims: dict, secret: str = SECRET) -> str:
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


@pytest.mark.parametrize(
    "claims",
    [
        {"email": "a@b.com", "type": "find_sessions", "exp": 1},
        {"email": "", "type": "find_sessions"},
        {"type": "find_sessions"},
        {"email": "a@b.com", "type": "admin"},
        {"email": "a@b.com", "type": "continue_session"},
        {"email": "a@b.com", "type": "session_bootstrap"},
        {"email": "a@b.com", "type": "find_sessions", "exp": None},
    ],
)
def test_verify_rejects_bad_claims(claims):
    claims = dict(claims)
    if "exp" not in claims:
        claims["exp"] = int(time.time()) + 60
    if claims["exp"] is None:
        del claims["exp"]
    issuer = AccessTokenIssuer(SECRET)

    with pytest.raises(UnauthorizedError):
        issuer.verify(_sign(claims))


def test_verify_rejects_foreign_signature():
    issuer = AccessTokenIssuer(SECRET)
    token = _sign(
        {"email": "a@b.com", "type": "find_sessions", "exp": int(time.time()) + 60},
        secret="someone-else",
    )

    with pytest.raises(UnauthorizedError):
        issuer.verify(token)


def test_verify_rejects_garbage():
    with pytest.raises(UnauthorizedError):
        AccessTokenIssuer(SECRET).verify("not-a-jwt")
