"""
File upload and management.

Uploads are processed one file at a time, in request order. A file that
fails validation or storage lands in ``rejected`` with a caller-safe
reason; it never aborts the rest of the batch.

Per-file pipeline:
1. Validate: duplicate name, MIME type, size, payload present
2. Extract text (first pages) and classify it
3. Resolve statement type (client hint beats detection) and category
4. Insert a pending record, write the object, mark uploaded or rejected
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

from balance.auth.access_tokens import AccessTokenPayload
from balance.config import Settings
from balance.errors import BadRequestError, NotFoundError, StorageError
from balance.files.classifier import classify_statement_text
from balance.files.models import FileRecord, build_storage_key
from balance.files.pdf_text import extract_pdf_text
from balance.files.repository import FileRepository
from balance.files.types import DetectionResult, FileCategory, FileStatus, StatementType
from balance.infrastructure.storage import ObjectStorage
from balance.observability.logging import get_logger
from balance.observability.telemetry import counter, log_event
from balance.sessions.access import authorize_session_access
from balance.utils.timestamps import utc_now
from balance.utils.validators import ValidationError, is_valid_file_id, parse_file_ids

logger = get_logger(__name__)

ALLOWED_MIME_TYPE = "application/pdf"
FILE_NOT_FOUND_MESSAGE = "File not found."
NO_FILES_MESSAGE = "At least one file must be provided."
NOT_A_PDF_MESSAGE = "Only application/pdf files are accepted."
MISSING_PAYLOAD_MESSAGE = "File payload is missing."
NOT_A_STATEMENT_WARNING = "This file may not be a bank statement."


@dataclass
class IncomingFile:
    """One part of a multipart upload, already read into memory."""

    original_name: str
    mime_type: str
    size: int
    data: bytes | None


@dataclass(frozen=True)
class RawFile:
    """Object bytes for inline viewing."""

    body: bytes
    content_type: str
    original_name: str


def duplicate_name_message(original_name: str) -> str:
    return f'A file named "{original_name}" already exists in this session.'


def max_count_message(max_files: int) -> str:
    return f"Exceeded max file count ({max_files})."


def max_size_message(max_size_mb: int) -> str:
    return f"File exceeds max size ({max_size_mb}MB)."


def hint_key(file_name: str) -> str:
    """Key type hints by file name with surrounding whitespace ignored."""
    return file_name.strip()


def resolve_statement_type(
    hint: StatementType | None, detection: DetectionResult
) -> StatementType:
    """A client hint wins unless it is missing or "unknown"."""
    if hint is not None and hint is not StatementType.UNKNOWN:
        return hint
    return detection.auto_detected_type


def resolve_category(statement_type: StatementType, auto_categorize: bool) -> FileCategory:
    if not auto_categorize:
        return FileCategory.UNFILED
    return FileCategory.for_statement_type(statement_type)


class FileService:
    """Statement file operations on behalf of an authenticated principal."""

    def __init__(self, settings: Settings, storage: ObjectStorage) -> None:
        self._settings = settings
        self._storage = storage

    # ------------------------------------------------------------------
    # Validation and detection
    # ------------------------------------------------------------------

    def _validation_failure(self, incoming: IncomingFile) -> str | None:
        """Reason a file can't be stored, ignoring name clashes."""
        if incoming.mime_type != ALLOWED_MIME_TYPE:
            return NOT_A_PDF_MESSAGE
        if incoming.size > self._settings.max_file_size_bytes:
            return max_size_message(self._settings.max_file_size_mb)
        if not incoming.data:
            return MISSING_PAYLOAD_MESSAGE
        return None

    def _detect(self, data: bytes) -> DetectionResult:
        text = extract_pdf_text(data, max_pages=self._settings.detection_max_pages)
        return classify_statement_text(text)

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(
        self,
        session_id: str,
        principal: AccessTokenPayload,
        files: list[IncomingFile],
        type_hints: dict[str, StatementType] | None = None,
    ) -> dict[str, Any]:
        """
        Validate, classify and store a batch of statements.

        Returns:
            {"uploaded": [...], "rejected": [...], "warnings": [...]}

        Raises:
            BadRequestError: Empty batch
            ForbiddenError / NotFoundError: See authorize_session_access
        """
        if not files:
            raise BadRequestError(NO_FILES_MESSAGE)

        session = authorize_session_access(session_id, principal, require_active=True)
        hints = type_hints or {}
        max_files = self._settings.max_files_per_upload

        uploaded: list[dict[str, Any]] = []
        rejected: list[dict[str, str]] = []
        warnings: list[dict[str, str]] = []

        accepted, overflow = files[:max_files], files[max_files:]
        for skipped in overflow:
            rejected.append(
                {"originalName": skipped.original_name, "reason": max_count_message(max_files)}
            )

        taken_names = FileRepository.taken_names(session.session_id)

        for incoming in accepted:
            name = incoming.original_name
            if name.lower() in taken_names:
                rejected.append({"originalName": name, "reason": duplicate_name_message(name)})
                continue

            reason = self._validation_failure(incoming)
            if reason:
                rejected.append({"originalName": name, "reason": reason})
                continue

            detection = self._detect(incoming.data or b"")
            statement_type = resolve_statement_type(hints.get(hint_key(name)), detection)
            category = resolve_category(statement_type, session.auto_categorize_on_upload)

            record = FileRecord(
                session_id=session.session_id,
                original_name=name,
                mime_type=incoming.mime_type,
                size=incoming.size,
                statement_type=statement_type,
                category=category,
                auto_detected_type=detection.auto_detected_type,
                detection_confidence=detection.detection_confidence,
                is_likely_statement=detection.is_likely_statement,
                status=FileStatus.PENDING,
                storage_bucket=self._storage.bucket,
            )
            record.storage_key = build_storage_key(
                session.session_id, category, record.id, name
            )

            try:
                FileRepository.insert(record)
            except sqlite3.IntegrityError:
                # A concurrent request stored the same name first
                rejected.append({"originalName": name, "reason": duplicate_name_message(name)})
                continue
            taken_names.add(name.lower())

            try:
                self._storage.put_object(record.storage_key, incoming.data or b"", record.mime_type)
            except StorageError as e:
                FileRepository.mark_rejected(record.id)
                taken_names.discard(name.lower())
                counter("files.upload.storage_failed")
                rejected.append({"originalName": name, "reason": e.message})
                continue

            uploaded_at = utc_now()
            FileRepository.mark_uploaded(record.id, uploaded_at)
            record.status = FileStatus.UPLOADED
            record.uploaded_at = uploaded_at

            uploaded.append(record.to_response())
            if not record.is_likely_statement:
                warnings.append({"originalName": name, "reason": NOT_A_STATEMENT_WARNING})

        log_event(
            "files.upload.completed",
            session_id=session.session_id,
            uploaded=len(uploaded),
            rejected=len(rejected),
            warnings=len(warnings),
        )
        return {"uploaded": uploaded, "rejected": rejected, "warnings": warnings}

    def detect_preview(
        self,
        session_id: str,
        principal: AccessTokenPayload,
        files: list[IncomingFile],
    ) -> dict[str, Any]:
        """
        Classify files without storing anything.

        Files that could not be uploaded get a ``warning`` instead of a
        detection.
        """
        if not files:
            raise BadRequestError(NO_FILES_MESSAGE)

        authorize_session_access(session_id, principal, require_active=True)
        max_files = self._settings.max_files_per_upload

        previews: list[dict[str, Any]] = []
        for index, incoming in enumerate(files):
            if index >= max_files:
                reason: str | None = max_count_message(max_files)
            else:
                reason = self._validation_failure(incoming)

            if reason:
                detection = DetectionResult.unknown()
            else:
                detection = self._detect(incoming.data or b"")
                if not detection.is_likely_statement:
                    reason = NOT_A_STATEMENT_WARNING

            item: dict[str, Any] = {
                "originalName": incoming.original_name,
                "autoDetectedType": detection.auto_detected_type.value,
                "detectionConfidence": detection.detection_confidence,
                "isLikelyStatement": detection.is_likely_statement,
            }
            if reason:
                item["warning"] = reason
            previews.append(item)

        return {"files": previews}

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def _get_authorized_file(self, file_id: str, principal: AccessTokenPayload) -> FileRecord:
        """
        Raises:
            NotFoundError: Malformed id, deleted file, or session not owned
            ForbiddenError: Token bound to another session
        """
        if not is_valid_file_id(file_id):
            raise NotFoundError(FILE_NOT_FOUND_MESSAGE)

        record = FileRepository.get_live(file_id)
        if record is None:
            raise NotFoundError(FILE_NOT_FOUND_MESSAGE)

        authorize_session_access(record.session_id, principal, require_active=False)
        return record

    def list_session_files(
        self, session_id: str, principal: AccessTokenPayload
    ) -> list[dict[str, Any]]:
        authorize_session_access(session_id, principal, require_active=False)
        return [record.to_response() for record in FileRepository.list_for_session(session_id)]

    def update_statement_type(
        self, file_id: str, statement_type: StatementType, principal: AccessTokenPayload
    ) -> dict[str, Any]:
        """
        Confirm a file's type. Unfiled files stay unfiled until moved.
        """
        record = self._get_authorized_file(file_id, principal)

        if record.category == FileCategory.UNFILED.value:
            category = FileCategory.UNFILED
        else:
            category = FileCategory.for_statement_type(statement_type)

        updated = FileRepository.update_statement_type(record.id, statement_type, category)
        if updated is None:
            raise NotFoundError(FILE_NOT_FOUND_MESSAGE)

        log_event("files.type_confirmed", file_id=record.id, statement_type=statement_type.value)
        return updated.to_response()

    def move_to_category(
        self,
        session_id: str,
        file_ids: list[str],
        category: FileCategory,
        principal: AccessTokenPayload,
    ) -> dict[str, Any]:
        """
        Re-file files in bulk. Moving to "unfiled" keeps each statement type.

        Raises:
            BadRequestError: Empty id list
        """
        try:
            ids = parse_file_ids(file_ids)
        except ValidationError as e:
            raise BadRequestError(str(e)) from e

        authorize_session_access(session_id, principal, require_active=False)

        # Malformed ids can't match a record
        ids = [file_id for file_id in ids if is_valid_file_id(file_id)]
        statement_type = (
            None if category is FileCategory.UNFILED else StatementType(category.value)
        )
        moved = (
            FileRepository.move_to_category(session_id, ids, category, statement_type)
            if ids
            else 0
        )
        return {"movedCount": moved, "category": category.value}

    def delete(self, file_id: str, principal: AccessTokenPayload) -> dict[str, Any]:
        """
        Delete one file. Unlike the session cascade, storage errors propagate.

        Raises:
            StorageError: Object delete failed; the record is left untouched
        """
        record = self._get_authorized_file(file_id, principal)

        if record.status == FileStatus.UPLOADED.value:
            self._storage.delete_object(record.storage_key, bucket=record.storage_bucket)

        FileRepository.mark_deleted(record.id, utc_now())
        log_event("files.deleted", file_id=record.id, session_id=record.session_id)
        return {"deleted": True, "fileId": record.id}

    def get_raw(self, file_id: str, principal: AccessTokenPayload) -> RawFile:
        """
        Raises:
            NotFoundError: Unknown file, or a file that never reached storage
            StorageError: Object fetch failed
        """
        record = self._get_authorized_file(file_id, principal)
        if record.status != FileStatus.UPLOADED.value:
            raise NotFoundError(FILE_NOT_FOUND_MESSAGE)

        stored = self._storage.get_object(record.storage_key, bucket=record.storage_bucket)
        return RawFile(
            body=stored.body,
            content_type=stored.content_type or record.mime_type,
            original_name=record.original_name,
        )
