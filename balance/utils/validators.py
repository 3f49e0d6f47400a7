"""
Input validation and normalization utilities.

Covers the identifiers and names that flow from HTTP callers into SQL
queries and object-storage keys.
"""

from __future__ import annotations

import re
import uuid

MAX_SAFE_NAME_LENGTH = 80
FALLBACK_SAFE_NAME = "statement"

_PDF_SUFFIX = re.compile(r"\.pdf$", re.IGNORECASE)
_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")


class ValidationError(ValueError):
    """Raised when input validation fails."""

    pass


def normalize_email(email: str | None) -> str:
    """
    Trim and lowercase an email address.

    Returns an empty string for missing input; callers decide whether that
    is an error.
    """
    if not email:
        return ""
    return email.strip().lower()


def is_valid_file_id(file_id: str | None) -> bool:
    """File ids are UUID4 strings; anything else can't match a record."""
    if not file_id:
        return False
    try:
        uuid.UUID(file_id)
    except ValueError:
        return False
    return True


def sanitize_file_name(original_name: str) -> str:
    """
    Make a client file name safe for an object-storage key.

    Drops a trailing ".pdf" (any case), lowercases, collapses every run of
    characters outside [a-z0-9] into "-", trims "-" from both ends and
    truncates to 80 characters.

    Example:
        "  Chase Credit (Jan 2024).PDF" -> "chase-credit-jan-2024"
    """
    without_ext = _PDF_SUFFIX.sub("", original_name or "")
    sanitized = _NON_ALNUM_RUN.sub("-", without_ext.strip().lower()).strip("-")
    sanitized = sanitized[:MAX_SAFE_NAME_LENGTH]
    return sanitized or FALLBACK_SAFE_NAME


def parse_file_ids(file_ids: list[str] | None) -> list[str]:
    """
    Validate a batch of file ids from a request body.

    Raises:
        ValidationError: If the list is empty
    """
    cleaned = [file_id.strip() for file_id in (file_ids or []) if file_id and file_id.strip()]
    if not cleaned:
        raise ValidationError("fileIds must contain at least one file id.")
    # Preserve order, drop duplicates
    return list(dict.fromkeys(cleaned))
