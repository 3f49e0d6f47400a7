"""Short, human-shareable session codes."""

from __future__ import annotations

import secrets

SESSION_ID_LENGTH = 8
# No 0/O, 1/I/l: codes get read aloud and retyped from screenshots
SESSION_ID_CHARSET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_session_id(length: int = SESSION_ID_LENGTH) -> str:
    """Random code drawn from SESSION_ID_CHARSET with a CSPRNG."""
    return "".join(secrets.choice(SESSION_ID_CHARSET) for _ in range(length))


def is_well_formed_session_id(value: str | None) -> bool:
    if not value or len(value) != SESSION_ID_LENGTH:
        return False
    return all(char in SESSION_ID_CHARSET for char in value)
