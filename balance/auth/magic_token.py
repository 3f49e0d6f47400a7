"""Magic-link tokens: random hex secrets stored only as SHA-256 hashes."""

from __future__ import annotations

import secrets
from hashlib import sha256

MAGIC_TOKEN_BYTES = 32


def generate_magic_token(num_bytes: int = MAGIC_TOKEN_BYTES) -> str:
    """Hex-encoded random token (64 chars for the default 32 bytes)."""
    return secrets.token_hex(num_bytes)


def hash_magic_token(token: str) -> str:
    """One-way hash persisted in place of the raw token."""
    return sha256(token.encode("utf-8")).hexdigest()
