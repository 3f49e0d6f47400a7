"""
Database schema for Balance.

Three tables: sessions, files and email_tokens. Timestamps are stored as
ISO-8601 UTC strings with fixed microsecond precision, so plain string
comparison (``expires_at > ?``) orders them correctly.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from balance.observability.logging import get_logger

logger = get_logger(__name__)


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Safe to run multiple times - uses CREATE TABLE IF NOT EXISTS.

    Side Effects:
    - Creates the data directory if needed
    - Creates tables and indexes that don't exist yet
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    conn.executescript("""
        CREATE TABLE IF NOT EXISTS sessions (
            session_id TEXT PRIMARY KEY,
            email TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'active',
            expires_at TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            last_accessed_at TEXT,
            deleted_at TEXT,
            auto_categorize_on_upload INTEGER NOT NULL DEFAULT 1
        );

        CREATE INDEX IF NOT EXISTS idx_sessions_email_status
        ON sessions(email, status, expires_at);

        CREATE TABLE IF NOT EXISTS files (
            id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            original_name TEXT NOT NULL,
            mime_type TEXT NOT NULL,
            size INTEGER NOT NULL,
            statement_type TEXT NOT NULL DEFAULT 'unknown',
            category TEXT NOT NULL DEFAULT 'unknown',
            auto_detected_type TEXT NOT NULL DEFAULT 'unknown',
            detection_confidence REAL NOT NULL DEFAULT 0,
            is_likely_statement INTEGER NOT NULL DEFAULT 0,
            confirmed_by_user INTEGER NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'pending',
            storage_bucket TEXT NOT NULL,
            storage_key TEXT NOT NULL,
            uploaded_at TEXT,
            created_at TEXT NOT NULL,
            deleted_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_files_session_status
        ON files(session_id, status);

        -- Non-deleted file names are unique per session, case-insensitively
        DROP INDEX IF EXISTS idx_files_session_live_name;
        CREATE UNIQUE INDEX IF NOT EXISTS idx_files_session_name
        ON files(session_id, lower(original_name))
        WHERE status != 'deleted';

        CREATE TABLE IF NOT EXISTS email_tokens (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            token_hash TEXT NOT NULL UNIQUE,
            email TEXT NOT NULL,
            session_id TEXT,
            purpose TEXT NOT NULL,
            expires_at TEXT NOT NULL,
            used_at TEXT,
            created_at TEXT NOT NULL,
            ip TEXT,
            user_agent TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_email_tokens_expires
        ON email_tokens(expires_at);
    """)

    conn.commit()
    conn.close()

    logger.info("Database initialized: %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected schema

    Raises:
        ValueError: If tables or columns are missing
    """
    required_tables = {
        "sessions": ["session_id", "email", "status", "expires_at", "auto_categorize_on_upload"],
        "files": ["id", "session_id", "original_name", "status", "category", "storage_key"],
        "email_tokens": ["token_hash", "email", "purpose", "expires_at", "used_at"],
    }

    cursor = conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    existing_tables = {row[0] for row in cursor.fetchall()}

    missing_tables = set(required_tables) - existing_tables
    if missing_tables:
        raise ValueError(f"Database missing tables: {missing_tables}")

    for table, required_cols in required_tables.items():
        # Identifiers can't be parameterized; names come from the dict above
        cursor.execute(f"PRAGMA table_info({table})")
        existing_cols = {row[1] for row in cursor.fetchall()}

        missing_cols = set(required_cols) - existing_cols
        if missing_cols:
            raise ValueError(f"Table '{table}' missing columns: {missing_cols}")

    return True
