"""
Helpers for keeping emails and credentials out of logs.

Provides:
- redact(): Hash sensitive strings for correlation without exposure
- mask_email(): Keep the domain and first character for support debugging
- token_fingerprint(): Short prefix of a token hash, safe to log
"""

from __future__ import annotations

from hashlib import sha256


def redact(value: str | None) -> str:
    """
    Return a stable hash representation of a sensitive string.
    """
    if not value:
        return "hash:missing"
    digest = sha256(value.encode("utf-8")).hexdigest()[:12]
    return f"hash:{digest}"


def mask_email(email: str | None) -> str:
    """
    Partially mask an email address.

    Example:
        "jane.doe@example.com" -> "j***@example.com"
    """
    if not email or "@" not in email:
        return "(no email)"
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}"


def token_fingerprint(token_hash: str | None) -> str:
    """First 8 hex chars of a token hash. Never pass a raw token here."""
    if not token_hash:
        return "tok:missing"
    return f"tok:{token_hash[:8]}"
