"""
Module: types
Purpose: Shared domain types for statement files.

Leaf module with no project imports, so the classifier, repository, service
and routes can all depend on it without import cycles.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class StatementType(str, Enum):
    """Financial account a statement is believed to belong to."""

    CREDIT = "credit"
    CHECKING = "checking"
    SAVINGS = "savings"
    UNKNOWN = "unknown"


class FileCategory(str, Enum):
    """Folder a file is filed under. UNFILED means not sorted yet."""

    CREDIT = "credit"
    CHECKING = "checking"
    SAVINGS = "savings"
    UNKNOWN = "unknown"
    UNFILED = "unfiled"

    @classmethod
    def for_statement_type(cls, statement_type: StatementType) -> FileCategory:
        return cls(StatementType(statement_type).value)


class FileStatus(str, Enum):
    """Lifecycle of a file record."""

    PENDING = "pending"  # Record written, storage write in flight
    UPLOADED = "uploaded"
    DELETED = "deleted"
    REJECTED = "rejected"  # Storage write failed


LIVE_FILE_STATUSES = (FileStatus.PENDING.value, FileStatus.UPLOADED.value)


@dataclass(frozen=True)
class DetectionResult:
    """Output of the keyword classifier."""

    auto_detected_type: StatementType
    detection_confidence: float
    is_likely_statement: bool

    @classmethod
    def unknown(cls) -> DetectionResult:
        return cls(
            auto_detected_type=StatementType.UNKNOWN,
            detection_confidence=0.0,
            is_likely_statement=False,
        )
