"""
Session domain models.

A session is a time-boxed container for one person's uploaded statements,
identified by a short code and owned by an email address.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from balance.utils.timestamps import from_db, to_api, to_db, utc_now


class SessionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"  # Set by the maintenance loop; reads check expires_at anyway
    DELETED = "deleted"


class Session(BaseModel):
    """A persisted upload session."""

    model_config = ConfigDict(frozen=False, use_enum_values=True)

    session_id: str
    email: str
    status: SessionStatus = SessionStatus.ACTIVE
    expires_at: datetime
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_accessed_at: datetime | None = None
    deleted_at: datetime | None = None
    auto_categorize_on_upload: bool = True

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to dict for database storage."""
        return {
            "session_id": self.session_id,
            "email": self.email,
            "status": self.status if isinstance(self.status, str) else self.status.value,
            "expires_at": to_db(self.expires_at),
            "created_at": to_db(self.created_at),
            "updated_at": to_db(self.updated_at),
            "last_accessed_at": to_db(self.last_accessed_at),
            "deleted_at": to_db(self.deleted_at),
            "auto_categorize_on_upload": int(self.auto_categorize_on_upload),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> Session:
        """Create Session from database row."""
        return cls(
            session_id=row["session_id"],
            email=row["email"],
            status=SessionStatus(row["status"]),
            expires_at=from_db(row["expires_at"]),
            created_at=from_db(row["created_at"]),
            updated_at=from_db(row["updated_at"]),
            last_accessed_at=from_db(row.get("last_accessed_at")),
            deleted_at=from_db(row.get("deleted_at")),
            auto_categorize_on_upload=bool(row["auto_categorize_on_upload"]),
        )


class SessionSummary(BaseModel):
    """A session plus its live count of uploaded files."""

    session: Session
    file_count: int = 0

    def to_response(self) -> dict[str, Any]:
        """camelCase view returned by the session endpoints."""
        session = self.session
        return {
            "sessionId": session.session_id,
            "email": session.email,
            "status": session.status,
            "expiresAt": to_api(session.expires_at),
            "createdAt": to_api(session.created_at),
            "autoCategorizeOnUpload": session.auto_categorize_on_upload,
            "fileCount": self.file_count,
        }
