"""
Email (magic-link) tokens.

The raw token only ever exists in the outgoing email and the caller's
request; the database keeps its SHA-256 hash. Redemption is a single
conditional UPDATE, so two concurrent verify calls with the same token
cannot both succeed.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from balance.auth.magic_token import generate_magic_token, hash_magic_token
from balance.config import DEFAULT_MAGIC_LINK_TTL_MINUTES
from balance.errors import InvalidTokenError, TokenIssueError
from balance.infrastructure.database import db_transaction, retry_on_db_lock
from balance.observability.logging import get_logger
from balance.observability.telemetry import counter
from balance.utils.redaction import redact, token_fingerprint
from balance.utils.timestamps import from_db, to_db, utc_now

logger = get_logger(__name__)

MAX_ISSUE_ATTEMPTS = 3


class EmailTokenPurpose(str, Enum):
    CONTINUE_SESSION = "continue_session"
    FIND_SESSIONS = "find_sessions"


@dataclass
class EmailToken:
    """A persisted token record (never holds the raw token)."""

    token_hash: str
    email: str
    purpose: EmailTokenPurpose
    expires_at: datetime
    created_at: datetime
    session_id: str | None = None
    used_at: datetime | None = None
    ip: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> EmailToken:
        return cls(
            token_hash=row["token_hash"],
            email=row["email"],
            purpose=EmailTokenPurpose(row["purpose"]),
            expires_at=from_db(row["expires_at"]),
            created_at=from_db(row["created_at"]),
            session_id=row.get("session_id"),
            used_at=from_db(row.get("used_at")),
            ip=row.get("ip"),
            user_agent=row.get("user_agent"),
        )


class EmailTokenRepository:
    """Persistence for email tokens."""

    @staticmethod
    @retry_on_db_lock()
    def insert(token: EmailToken) -> None:
        """
        Raises:
            sqlite3.IntegrityError: If the hash already exists
        """
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO email_tokens (
                    token_hash, email, session_id, purpose, expires_at,
                    used_at, created_at, ip, user_agent
                ) VALUES (?, ?, ?, ?, ?, NULL, ?, ?, ?)
                """,
                (
                    token.token_hash,
                    token.email,
                    token.session_id,
                    token.purpose.value,
                    to_db(token.expires_at),
                    to_db(token.created_at),
                    token.ip,
                    token.user_agent,
                ),
            )

    @staticmethod
    @retry_on_db_lock()
    def mark_used(token_hash: str, now: datetime) -> EmailToken | None:
        """
        Atomically redeem a token.

        Sets used_at only if the hash matches, the token is unexpired and
        unused. Returns the redeemed record, or None when nothing matched.
        """
        with db_transaction() as conn:
            rows = conn.execute(
                """
                UPDATE email_tokens
                SET used_at = ?
                WHERE token_hash = ? AND used_at IS NULL AND expires_at > ?
                RETURNING *
                """,
                (to_db(now), token_hash, to_db(now)),
            ).fetchall()

        if not rows:
            return None
        return EmailToken.from_db_row(dict(rows[0]))

    @staticmethod
    @retry_on_db_lock()
    def delete_expired(before: datetime) -> int:
        with db_transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM email_tokens WHERE expires_at <= ?",
                (to_db(before),),
            )
            return cursor.rowcount


class EmailTokenService:
    """Issues and redeems magic-link tokens."""

    def __init__(self, ttl_minutes: int = DEFAULT_MAGIC_LINK_TTL_MINUTES) -> None:
        self.ttl_minutes = ttl_minutes

    def issue(
        self,
        email: str,
        purpose: EmailTokenPurpose,
        session_id: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        """
        Create a token record and return the RAW token for the email link.

        Raises:
            TokenIssueError: If every attempt collided on the hash
        """
        if purpose is EmailTokenPurpose.CONTINUE_SESSION and not session_id:
            raise ValueError("continue_session tokens require a session id")

        for attempt in range(1, MAX_ISSUE_ATTEMPTS + 1):
            raw_token = generate_magic_token()
            now = utc_now()
            record = EmailToken(
                token_hash=hash_magic_token(raw_token),
                email=email,
                purpose=purpose,
                session_id=session_id,
                expires_at=now + timedelta(minutes=self.ttl_minutes),
                created_at=now,
                ip=ip,
                user_agent=user_agent,
            )
            try:
                EmailTokenRepository.insert(record)
            except sqlite3.IntegrityError:
                logger.warning(
                    "Email token hash collision (attempt %d/%d)", attempt, MAX_ISSUE_ATTEMPTS
                )
                counter("auth.email_token.collision")
                continue

            logger.info(
                "Issued %s token %s for %s",
                purpose.value,
                token_fingerprint(record.token_hash),
                redact(email),
            )
            counter("auth.email_token.issued")
            return raw_token

        raise TokenIssueError(
            f"Unable to issue a sign-in token after {MAX_ISSUE_ATTEMPTS} attempts."
        )

    def consume(self, raw_token: str) -> EmailToken:
        """
        Redeem a raw token exactly once.

        Raises:
            InvalidTokenError: Unknown, expired and reused tokens alike
        """
        if not raw_token or not raw_token.strip():
            raise InvalidTokenError()

        token_hash = hash_magic_token(raw_token.strip())
        record = EmailTokenRepository.mark_used(token_hash, utc_now())
        if record is None:
            counter("auth.email_token.rejected")
            raise InvalidTokenError()

        counter("auth.email_token.consumed")
        return record

    def purge_expired(self, before: datetime | None = None) -> int:
        removed = EmailTokenRepository.delete_expired(before or utc_now())
        if removed:
            logger.info("Purged %d expired email tokens", removed)
        return removed
