"""
Session Repository - CRUD operations for the sessions table.

Follows the database patterns in balance/infrastructure/database.py.
"Active" always means ``status = 'active' AND expires_at > now``; callers
pass ``now`` so a single request sees one consistent clock.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from balance.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from balance.observability.logging import get_logger
from balance.sessions.models import Session, SessionStatus, SessionSummary
from balance.utils.redaction import redact
from balance.utils.timestamps import to_db

logger = get_logger(__name__)

# Live uploaded-file count, aggregated per query rather than stored
_SUMMARY_SELECT = """
    SELECT s.*, (
        SELECT COUNT(*) FROM files f
        WHERE f.session_id = s.session_id AND f.status = 'uploaded'
    ) AS file_count
    FROM sessions s
"""


def _to_summary(row: Any) -> SessionSummary:
    data = dict(row)
    file_count = data.pop("file_count", 0) or 0
    return SessionSummary(session=Session.from_db_row(data), file_count=file_count)


class SessionRepository:
    """
    Repository for Session persistence.

    All methods use connection pooling and proper transaction handling.
    """

    @staticmethod
    def exists(session_id: str) -> bool:
        """True if any session (in any status) already uses this id."""
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        return row is not None

    @staticmethod
    @retry_on_db_lock()
    def create(session: Session) -> Session:
        """
        Insert a new session.

        Raises:
            sqlite3.IntegrityError: If the session id is already taken

        Side Effects:
            - Inserts row into sessions table
            - Commits transaction
        """
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO sessions (
                    session_id, email, status, expires_at, created_at, updated_at,
                    last_accessed_at, deleted_at, auto_categorize_on_upload
                ) VALUES (
                    :session_id, :email, :status, :expires_at, :created_at, :updated_at,
                    :last_accessed_at, :deleted_at, :auto_categorize_on_upload
                )
                """,
                session.to_db_dict(),
            )

        logger.info("Created session %s for %s", session.session_id, redact(session.email))
        return session

    @staticmethod
    def get_by_id(session_id: str) -> Session | None:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
            ).fetchone()

        if not row:
            return None
        return Session.from_db_row(dict(row))

    @staticmethod
    def find_owned(
        session_id: str, email: str, now: datetime, require_active: bool
    ) -> Session | None:
        """
        Look a session up by id AND owner email.

        With ``require_active`` only live sessions match; otherwise anything
        not soft-deleted does (an expired session's files can still be
        listed and removed).
        """
        if require_active:
            query = """
                SELECT * FROM sessions
                WHERE session_id = ? AND email = ? AND status = 'active' AND expires_at > ?
            """
            params: tuple[Any, ...] = (session_id, email, to_db(now))
        else:
            query = """
                SELECT * FROM sessions
                WHERE session_id = ? AND email = ? AND status != 'deleted'
            """
            params = (session_id, email)

        with get_db_connection() as conn:
            row = conn.execute(query, params).fetchone()

        if not row:
            return None
        return Session.from_db_row(dict(row))

    @staticmethod
    def get_active_summary(session_id: str, email: str, now: datetime) -> SessionSummary | None:
        with get_db_connection() as conn:
            row = conn.execute(
                _SUMMARY_SELECT
                + """
                WHERE s.session_id = ? AND s.email = ?
                  AND s.status = 'active' AND s.expires_at > ?
                """,
                (session_id, email, to_db(now)),
            ).fetchone()

        if not row:
            return None
        return _to_summary(row)

    @staticmethod
    def list_active_for_email(email: str, now: datetime) -> list[SessionSummary]:
        """Active sessions for an owner, newest first."""
        with get_db_connection() as conn:
            rows = conn.execute(
                _SUMMARY_SELECT
                + """
                WHERE s.email = ? AND s.status = 'active' AND s.expires_at > ?
                ORDER BY s.created_at DESC
                """,
                (email, to_db(now)),
            ).fetchall()

        return [_to_summary(row) for row in rows]

    @staticmethod
    def has_active_for_email(email: str, now: datetime) -> bool:
        with get_db_connection() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM sessions
                WHERE email = ? AND status = 'active' AND expires_at > ?
                LIMIT 1
                """,
                (email, to_db(now)),
            ).fetchone()
        return row is not None

    @staticmethod
    @retry_on_db_lock()
    def update_auto_categorize(session_id: str, enabled: bool, now: datetime) -> bool:
        """
        Toggle auto-categorization for new uploads.

        Side Effects:
            - Updates auto_categorize_on_upload and updated_at
        """
        with db_transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE sessions
                SET auto_categorize_on_upload = ?, updated_at = ?
                WHERE session_id = ? AND status != 'deleted'
                """,
                (int(enabled), to_db(now), session_id),
            )
            updated = cursor.rowcount > 0

        if updated:
            logger.info("Session %s auto-categorize set to %s", session_id, enabled)
        return updated

    @staticmethod
    @retry_on_db_lock()
    def soft_delete(session_id: str, now: datetime) -> bool:
        """
        Mark a session deleted. Returns False if it was already gone.

        Side Effects:
            - Sets status='deleted', deleted_at and updated_at
        """
        with db_transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE sessions
                SET status = ?, deleted_at = ?, updated_at = ?
                WHERE session_id = ? AND status != 'deleted'
                """,
                (SessionStatus.DELETED.value, to_db(now), to_db(now), session_id),
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info("Soft-deleted session %s", session_id)
        return deleted

    @staticmethod
    @retry_on_db_lock()
    def mark_expired(now: datetime) -> int:
        """
        Flip active sessions past their expiry to 'expired'.

        Bookkeeping only: every read already filters on expires_at.
        """
        with db_transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE sessions
                SET status = ?, updated_at = ?
                WHERE status = 'active' AND expires_at <= ?
                """,
                (SessionStatus.EXPIRED.value, to_db(now), to_db(now)),
            )
            count = cursor.rowcount

        if count:
            logger.info("Marked %d sessions expired", count)
        return count
