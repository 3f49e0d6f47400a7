"""
File record model.

One row per uploaded (or attempted) statement PDF. Records are never
hard-deleted; ``status`` moves through pending -> uploaded | rejected, and
uploaded -> deleted.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from balance.files.types import FileCategory, FileStatus, StatementType
from balance.utils.timestamps import from_db, to_api, to_db, utc_now
from balance.utils.validators import sanitize_file_name


def build_storage_key(
    session_id: str, category: FileCategory | str, file_id: str, original_name: str
) -> str:
    """
    Object key for a file: sessions/{session}/{category}/{id}-{safe-name}.pdf

    The file id makes the key unique even when two sessions upload the
    same name.
    """
    category_value = category.value if isinstance(category, FileCategory) else category
    safe_name = sanitize_file_name(original_name)
    return f"sessions/{session_id}/{category_value}/{file_id}-{safe_name}.pdf"


class FileRecord(BaseModel):
    """A persisted statement file."""

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    original_name: str
    mime_type: str
    size: int = Field(ge=0)
    statement_type: StatementType = StatementType.UNKNOWN
    category: FileCategory = FileCategory.UNKNOWN
    auto_detected_type: StatementType = StatementType.UNKNOWN
    detection_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    is_likely_statement: bool = False
    confirmed_by_user: bool = False
    status: FileStatus = FileStatus.PENDING
    storage_bucket: str
    storage_key: str = ""
    uploaded_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    deleted_at: datetime | None = None

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to dict for database storage."""
        return {
            "id": self.id,
            "session_id": self.session_id,
            "original_name": self.original_name,
            "mime_type": self.mime_type,
            "size": self.size,
            "statement_type": self.statement_type,
            "category": self.category,
            "auto_detected_type": self.auto_detected_type,
            "detection_confidence": self.detection_confidence,
            "is_likely_statement": int(self.is_likely_statement),
            "confirmed_by_user": int(self.confirmed_by_user),
            "status": self.status,
            "storage_bucket": self.storage_bucket,
            "storage_key": self.storage_key,
            "uploaded_at": to_db(self.uploaded_at),
            "created_at": to_db(self.created_at),
            "deleted_at": to_db(self.deleted_at),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> FileRecord:
        """Create FileRecord from database row."""
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            original_name=row["original_name"],
            mime_type=row["mime_type"],
            size=row["size"],
            statement_type=StatementType(row["statement_type"]),
            category=FileCategory(row["category"]),
            auto_detected_type=StatementType(row["auto_detected_type"]),
            detection_confidence=row["detection_confidence"],
            is_likely_statement=bool(row["is_likely_statement"]),
            confirmed_by_user=bool(row["confirmed_by_user"]),
            status=FileStatus(row["status"]),
            storage_bucket=row["storage_bucket"],
            storage_key=row["storage_key"],
            uploaded_at=from_db(row.get("uploaded_at")),
            created_at=from_db(row["created_at"]),
            deleted_at=from_db(row.get("deleted_at")),
        )

    def to_response(self) -> dict[str, Any]:
        """camelCase view returned by the file endpoints."""
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "originalName": self.original_name,
            "mimeType": self.mime_type,
            "size": self.size,
            "statementType": self.statement_type,
            "category": self.category,
            "autoDetectedType": self.auto_detected_type,
            "detectionConfidence": self.detection_confidence,
            "isLikelyStatement": self.is_likely_statement,
            "confirmedByUser": self.confirmed_by_user,
            "status": self.status,
            "storageKey": self.storage_key,
            "uploadedAt": to_api(self.uploaded_at),
        }
