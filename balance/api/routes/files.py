"""
Statement file endpoints.

Uploads arrive as multipart/form-data: repeated ``files`` parts plus an
optional ``meta`` field holding a JSON array of
``{clientFileName, statementType?}`` hints.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from starlette.concurrency import run_in_threadpool

from balance.api.dependencies import get_current_principal, get_file_service
from balance.auth.access_tokens import AccessTokenPayload
from balance.errors import BadRequestError
from balance.files.service import FileService, IncomingFile, hint_key
from balance.files.types import FileCategory, StatementType

router = APIRouter(tags=["files"])

META_PARSE_ERROR_MESSAGE = "meta must be a JSON array of { clientFileName, statementType? }."


class UploadFileMeta(BaseModel):
    """Client-side type hint for one file in an upload."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    client_file_name: str = Field(alias="clientFileName", min_length=1)
    statement_type: StatementType | None = Field(default=None, alias="statementType")


_META_ADAPTER = TypeAdapter(list[UploadFileMeta])


class UpdateFileRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    statement_type: StatementType = Field(alias="statementType")


class MoveFilesRequest(BaseModel):
    """Bulk re-file request."""

    model_config = ConfigDict(populate_by_name=True)

    file_ids: list[str] = Field(alias="fileIds")
    category: FileCategory


def parse_upload_meta(raw: str | None) -> dict[str, StatementType]:
    """
    Parse the ``meta`` form field into {client file name: statement type}.

    Raises:
        BadRequestError: Not a JSON array of well-formed entries
    """
    if raw is None or raw == "":
        return {}

    try:
        entries = _META_ADAPTER.validate_json(raw)
    except ValidationError as e:
        raise BadRequestError(META_PARSE_ERROR_MESSAGE) from e

    hints: dict[str, StatementType] = {}
    for entry in entries:
        name = hint_key(entry.client_file_name)
        if not name:
            raise BadRequestError(META_PARSE_ERROR_MESSAGE)
        hints[name] = entry.statement_type or StatementType.UNKNOWN
    return hints


async def _read_uploads(uploads: list[UploadFile] | None) -> list[IncomingFile]:
    incoming: list[IncomingFile] = []
    for upload in uploads or []:
        data = await upload.read()
        incoming.append(
            IncomingFile(
                original_name=upload.filename or "statement.pdf",
                mime_type=upload.content_type or "",
                size=upload.size if upload.size is not None else len(data),
                data=data or None,
            )
        )
    return incoming


def _content_disposition(filename: str) -> str:
    """inline disposition with an ASCII fallback and an RFC 5987 UTF-8 name."""
    fallback = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "statement.pdf"
    return f"inline; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


@router.post("/sessions/{session_id}/files")
async def upload_files(
    session_id: str,
    files: list[UploadFile] | None = File(default=None),
    meta: str | None = Form(default=None),
    principal: AccessTokenPayload = Depends(get_current_principal),
    service: FileService = Depends(get_file_service),
) -> dict[str, Any]:
    """
    Upload up to MAX_FILES_PER_UPLOAD statements.

    Side Effects:
        - Inserts file rows and writes objects to storage
    """
    hints = parse_upload_meta(meta)
    incoming = await _read_uploads(files)
    return await run_in_threadpool(service.upload, session_id, principal, incoming, hints)


@router.post("/sessions/{session_id}/files/detect")
async def detect_files(
    session_id: str,
    files: list[UploadFile] | None = File(default=None),
    principal: AccessTokenPayload = Depends(get_current_principal),
    service: FileService = Depends(get_file_service),
) -> dict[str, Any]:
    """Preview detected statement types. Nothing is stored."""
    incoming = await _read_uploads(files)
    return await run_in_threadpool(service.detect_preview, session_id, principal, incoming)


@router.get("/sessions/{session_id}/files")
def list_session_files(
    session_id: str,
    principal: AccessTokenPayload = Depends(get_current_principal),
    service: FileService = Depends(get_file_service),
) -> list[dict[str, Any]]:
    return service.list_session_files(session_id, principal)


@router.patch("/sessions/{session_id}/files/category")
def move_files_to_category(
    session_id: str,
    body: MoveFilesRequest,
    principal: AccessTokenPayload = Depends(get_current_principal),
    service: FileService = Depends(get_file_service),
) -> dict[str, Any]:
    return service.move_to_category(session_id, body.file_ids, body.category, principal)


@router.patch("/files/{file_id}")
def update_file(
    file_id: str,
    body: UpdateFileRequest,
    principal: AccessTokenPayload = Depends(get_current_principal),
    service: FileService = Depends(get_file_service),
) -> dict[str, Any]:
    return service.update_statement_type(file_id, body.statement_type, principal)


@router.delete("/files/{file_id}")
def delete_file(
    file_id: str,
    principal: AccessTokenPayload = Depends(get_current_principal),
    service: FileService = Depends(get_file_service),
) -> dict[str, Any]:
    """
    Side Effects:
        - Deletes the storage object, then marks the row deleted
    """
    return service.delete(file_id, principal)


@router.get("/files/{file_id}/raw")
def get_raw_file(
    file_id: str,
    principal: AccessTokenPayload = Depends(get_current_principal),
    service: FileService = Depends(get_file_service),
) -> Response:
    """Stream the stored PDF for inline viewing."""
    raw = service.get_raw(file_id, principal)
    return Response(
        content=raw.body,
        media_type=raw.content_type,
        headers={
            "Content-Disposition": _content_disposition(raw.original_name),
            "Cache-Control": "private, no-store",
        },
    )
