"""
Session lifecycle: create, read, settings and cascading delete.

Deletion is two-phase. Phase 1 soft-deletes the session row in one
transaction. Phase 2 walks the session's uploaded files, deleting each
storage object best-effort and marking the record deleted whether or not
storage cooperated. A failed object delete is logged and counted. If the
process dies between the phases, the maintenance sweep
(balance/storage/retention.py) finishes phase 2 later.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from balance.auth.access_tokens import AccessTokenIssuer, AccessTokenPayload, AccessTokenType
from balance.config import Settings
from balance.errors import BadRequestError, NotFoundError, SessionIdAllocationError, StorageError
from balance.files.repository import FileRepository
from balance.infrastructure.storage import ObjectStorage
from balance.observability.logging import get_logger
from balance.observability.telemetry import counter, log_event
from balance.sessions.access import SESSION_NOT_FOUND_MESSAGE, authorize_session_access
from balance.sessions.models import Session, SessionStatus, SessionSummary
from balance.sessions.repository import SessionRepository
from balance.sessions.session_id import generate_session_id
from balance.utils.redaction import redact
from balance.utils.timestamps import to_api, utc_now
from balance.utils.validators import normalize_email

logger = get_logger(__name__)

SESSION_ID_RETRY_LIMIT = 5
SESSION_ID_COLLISION_MESSAGE = (
    f"Unable to create a unique session ID after {SESSION_ID_RETRY_LIMIT} attempts."
)


@dataclass
class CascadeResult:
    """Outcome of phase 2 of a session delete."""

    files_deleted: int = 0
    storage_failures: list[str] = field(default_factory=list)


class SessionService:
    """Session operations on behalf of an authenticated principal."""

    def __init__(
        self,
        settings: Settings,
        storage: ObjectStorage,
        access_tokens: AccessTokenIssuer,
    ) -> None:
        self._settings = settings
        self._storage = storage
        self._access_tokens = access_tokens

    def create_session(self, email: str) -> dict[str, Any]:
        """
        Open a new session and a bootstrap token scoped to it.

        Raises:
            BadRequestError: If the email is empty
            SessionIdAllocationError: If every generated id was taken
        """
        normalized = normalize_email(email)
        if not normalized:
            raise BadRequestError("email must be a valid email address.")

        now = utc_now()
        expires_at = now + timedelta(days=self._settings.session_ttl_days)

        for attempt in range(1, SESSION_ID_RETRY_LIMIT + 1):
            session_id = generate_session_id()
            if SessionRepository.exists(session_id):
                counter("sessions.id_collision")
                continue

            session = Session(
                session_id=session_id,
                email=normalized,
                status=SessionStatus.ACTIVE,
                expires_at=expires_at,
                created_at=now,
                updated_at=now,
                last_accessed_at=now,
            )
            try:
                SessionRepository.create(session)
            except sqlite3.IntegrityError:
                # Lost a race with a concurrent create of the same id
                logger.warning(
                    "Session id collision on insert (attempt %d/%d)",
                    attempt,
                    SESSION_ID_RETRY_LIMIT,
                )
                counter("sessions.id_collision")
                continue

            access_token, expires_in = self._access_tokens.issue(
                normalized, AccessTokenType.SESSION_BOOTSTRAP, session_id
            )
            log_event("sessions.created", session_id=session_id, email=redact(normalized))
            return {
                "sessionId": session.session_id,
                "email": session.email,
                "expiresAt": to_api(session.expires_at),
                "accessToken": access_token,
                "expiresIn": expires_in,
            }

        logger.error("Session id allocation failed after %d attempts", SESSION_ID_RETRY_LIMIT)
        raise SessionIdAllocationError(SESSION_ID_COLLISION_MESSAGE)

    def get_active_session_by_id(
        self, session_id: str, principal: AccessTokenPayload
    ) -> SessionSummary:
        """
        Raises:
            ForbiddenError: Token bound to another session
            NotFoundError: Missing, expired, deleted or not owned
        """
        now = utc_now()
        session = authorize_session_access(session_id, principal, require_active=True, now=now)
        summary = SessionRepository.get_active_summary(session.session_id, session.email, now)
        if summary is None:
            # Expired or deleted between the two reads
            raise NotFoundError(SESSION_NOT_FOUND_MESSAGE)
        return summary

    def list_active_sessions_for_email(self, email: str) -> list[SessionSummary]:
        normalized = normalize_email(email)
        if not normalized:
            return []
        return SessionRepository.list_active_for_email(normalized, utc_now())

    def list_sessions_for_principal(self, principal: AccessTokenPayload) -> list[SessionSummary]:
        """A session-scoped token sees only its own session."""
        if principal.session_id:
            return [self.get_active_session_by_id(principal.session_id, principal)]
        return self.list_active_sessions_for_email(principal.email)

    def find_active_session_by_id_and_email(self, session_id: str, email: str) -> Session | None:
        normalized = normalize_email(email)
        if not session_id or not normalized:
            return None
        return SessionRepository.find_owned(
            session_id.strip(), normalized, utc_now(), require_active=True
        )

    def has_active_sessions_for_email(self, email: str) -> bool:
        normalized = normalize_email(email)
        if not normalized:
            return False
        return SessionRepository.has_active_for_email(normalized, utc_now())

    def update_session_settings(
        self,
        session_id: str,
        principal: AccessTokenPayload,
        auto_categorize_on_upload: bool,
    ) -> dict[str, Any]:
        """
        Raises:
            ForbiddenError / NotFoundError: See authorize_session_access
        """
        now = utc_now()
        session = authorize_session_access(session_id, principal, require_active=True, now=now)
        if not SessionRepository.update_auto_categorize(
            session.session_id, auto_categorize_on_upload, now
        ):
            raise NotFoundError(SESSION_NOT_FOUND_MESSAGE)

        return {
            "sessionId": session.session_id,
            "autoCategorizeOnUpload": auto_categorize_on_upload,
        }

    def delete_active_session_by_id(
        self, session_id: str, principal: AccessTokenPayload
    ) -> dict[str, Any]:
        """
        Soft-delete a session, then reclaim its files.

        Raises:
            ForbiddenError / NotFoundError: See authorize_session_access
        """
        now = utc_now()
        session = authorize_session_access(session_id, principal, require_active=True, now=now)

        # Phase 1
        if not SessionRepository.soft_delete(session.session_id, now):
            raise NotFoundError(SESSION_NOT_FOUND_MESSAGE)

        # Phase 2
        result = self.cascade_delete_files(session.session_id)
        log_event(
            "sessions.deleted",
            session_id=session.session_id,
            files_deleted=result.files_deleted,
            storage_failures=len(result.storage_failures),
        )
        return {"deleted": True}

    def cascade_delete_files(self, session_id: str) -> CascadeResult:
        """
        Delete every uploaded file of a session, tolerating storage failures.

        Each object delete is attempted independently; the record is marked
        deleted regardless of the storage outcome.
        """
        result = CascadeResult()
        now = utc_now()

        for record in FileRepository.list_uploaded_for_session(session_id):
            try:
                self._storage.delete_object(record.storage_key, bucket=record.storage_bucket)
            except StorageError as e:
                logger.warning(
                    "Storage cleanup failed for file %s in session %s (%s)",
                    record.id,
                    session_id,
                    e.code,
                )
                counter("sessions.cascade.storage_failed")
                result.storage_failures.append(record.id)

            if FileRepository.mark_deleted(record.id, now):
                result.files_deleted += 1

        return result
