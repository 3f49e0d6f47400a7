"""
File Repository - CRUD operations for the files table.

Follows the database patterns in balance/infrastructure/database.py.
"Live" files are pending or uploaded; rejected and deleted rows are kept
for history but never returned to callers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from balance.files.models import FileRecord
from balance.files.types import FileCategory, FileStatus, StatementType
from balance.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from balance.observability.logging import get_logger
from balance.utils.timestamps import to_db

logger = get_logger(__name__)


class FileRepository:
    """
    Repository for FileRecord persistence.

    All methods use connection pooling and proper transaction handling.
    """

    @staticmethod
    @retry_on_db_lock()
    def insert(record: FileRecord) -> FileRecord:
        """
        Insert a new file record.

        Raises:
            sqlite3.IntegrityError: If a non-deleted file with the same name
                (case-insensitive) already exists in the session
        """
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO files (
                    id, session_id, original_name, mime_type, size, statement_type,
                    category, auto_detected_type, detection_confidence,
                    is_likely_statement, confirmed_by_user, status, storage_bucket,
                    storage_key, uploaded_at, created_at, deleted_at
                ) VALUES (
                    :id, :session_id, :original_name, :mime_type, :size, :statement_type,
                    :category, :auto_detected_type, :detection_confidence,
                    :is_likely_statement, :confirmed_by_user, :status, :storage_bucket,
                    :storage_key, :uploaded_at, :created_at, :deleted_at
                )
                """,
                record.to_db_dict(),
            )
        return record

    @staticmethod
    def get_live(file_id: str) -> FileRecord | None:
        """Fetch a file unless it has been deleted."""
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM files WHERE id = ? AND status != 'deleted'",
                (file_id,),
            ).fetchone()

        if not row:
            return None
        return FileRecord.from_db_row(dict(row))

    @staticmethod
    def taken_names(session_id: str) -> set[str]:
        """Lowercased names of the session's non-deleted files, rejected ones included."""
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT lower(original_name) AS name FROM files
                WHERE session_id = ? AND status != 'deleted'
                """,
                (session_id,),
            ).fetchall()
        return {row["name"] for row in rows}

    @staticmethod
    def list_for_session(session_id: str) -> list[FileRecord]:
        """Non-deleted files, most recently uploaded first."""
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM files
                WHERE session_id = ? AND status != 'deleted'
                ORDER BY uploaded_at DESC, created_at DESC
                """,
                (session_id,),
            ).fetchall()
        return [FileRecord.from_db_row(dict(row)) for row in rows]

    @staticmethod
    def list_uploaded_for_session(session_id: str) -> list[FileRecord]:
        with get_db_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM files WHERE session_id = ? AND status = 'uploaded'",
                (session_id,),
            ).fetchall()
        return [FileRecord.from_db_row(dict(row)) for row in rows]

    @staticmethod
    def list_uploaded_in_deleted_sessions(limit: int = 100) -> list[FileRecord]:
        """Uploaded files whose session was deleted (cascade leftovers)."""
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT f.* FROM files f
                JOIN sessions s ON s.session_id = f.session_id
                WHERE s.status = 'deleted' AND f.status = 'uploaded'
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [FileRecord.from_db_row(dict(row)) for row in rows]

    @staticmethod
    @retry_on_db_lock()
    def mark_uploaded(file_id: str, uploaded_at: datetime) -> None:
        with db_transaction() as conn:
            conn.execute(
                "UPDATE files SET status = ?, uploaded_at = ? WHERE id = ?",
                (FileStatus.UPLOADED.value, to_db(uploaded_at), file_id),
            )

    @staticmethod
    @retry_on_db_lock()
    def mark_rejected(file_id: str) -> None:
        with db_transaction() as conn:
            conn.execute(
                "UPDATE files SET status = ? WHERE id = ?",
                (FileStatus.REJECTED.value, file_id),
            )

    @staticmethod
    @retry_on_db_lock()
    def mark_deleted(file_id: str, now: datetime) -> bool:
        """
        Side Effects:
            - Sets status='deleted' and deleted_at
        """
        with db_transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE files SET status = ?, deleted_at = ?
                WHERE id = ? AND status != 'deleted'
                """,
                (FileStatus.DELETED.value, to_db(now), file_id),
            )
            return cursor.rowcount > 0

    @staticmethod
    @retry_on_db_lock()
    def update_statement_type(
        file_id: str, statement_type: StatementType, category: FileCategory
    ) -> FileRecord | None:
        """Record a user-confirmed type. Returns the updated row."""
        with db_transaction() as conn:
            rows = conn.execute(
                """
                UPDATE files
                SET statement_type = ?, category = ?, confirmed_by_user = 1
                WHERE id = ? AND status != 'deleted'
                RETURNING *
                """,
                (statement_type.value, category.value, file_id),
            ).fetchall()

        if not rows:
            return None
        return FileRecord.from_db_row(dict(rows[0]))

    @staticmethod
    @retry_on_db_lock()
    def move_to_category(
        session_id: str,
        file_ids: list[str],
        category: FileCategory,
        statement_type: StatementType | None,
    ) -> int:
        """
        Bulk re-file the session's non-deleted files.

        ``statement_type`` None leaves each file's type untouched.

        Returns:
            Number of rows updated
        """
        placeholders = ",".join("?" for _ in file_ids)
        assignments = ["category = ?", "confirmed_by_user = 1"]
        params: list[Any] = [category.value]
        if statement_type is not None:
            assignments.append("statement_type = ?")
            params.append(statement_type.value)

        # Only placeholders are interpolated; values stay parameterized
        query = f"""
            UPDATE files SET {", ".join(assignments)}
            WHERE session_id = ? AND status != 'deleted' AND id IN ({placeholders})
        """
        params.extend([session_id, *file_ids])

        with db_transaction() as conn:
            cursor = conn.execute(query, params)
            moved = cursor.rowcount

        logger.info("Moved %d files in session %s to %s", moved, session_id, category.value)
        return moved
