"""
Session ownership checks shared by the session and file services.

A session owned by someone else is reported exactly like a missing one,
so a caller cannot probe which session ids exist.
"""

from __future__ import annotations

from datetime import datetime

from balance.auth.access_tokens import AccessTokenPayload
from balance.errors import ForbiddenError, NotFoundError
from balance.observability.telemetry import counter
from balance.sessions.models import Session
from balance.sessions.repository import SessionRepository
from balance.utils.timestamps import utc_now

SESSION_ACCESS_FORBIDDEN_MESSAGE = "Access to this session is not allowed."
SESSION_NOT_FOUND_MESSAGE = "Session not found."


def authorize_session_access(
    session_id: str,
    principal: AccessTokenPayload,
    require_active: bool,
    now: datetime | None = None,
) -> Session:
    """
    Resolve a session the principal may act on.

    Raises:
        ForbiddenError: Empty principal email, or a session-scoped token
            bound to a different session
        NotFoundError: No matching session for this owner
    """
    email = (principal.email or "").strip().lower()
    if not email:
        counter("sessions.access.forbidden")
        raise ForbiddenError(SESSION_ACCESS_FORBIDDEN_MESSAGE)

    if principal.session_id and principal.session_id != session_id:
        counter("sessions.access.forbidden")
        raise ForbiddenError(SESSION_ACCESS_FORBIDDEN_MESSAGE)

    session = SessionRepository.find_owned(
        session_id, email, now or utc_now(), require_active=require_active
    )
    if session is None:
        raise NotFoundError(SESSION_NOT_FOUND_MESSAGE)
    return session
