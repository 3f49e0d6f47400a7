"""
Session endpoints.

POST /sessions is public (it returns a bootstrap token for the new
session); everything else needs a bearer token.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from balance.api.dependencies import get_current_principal, get_session_service
from balance.auth.access_tokens import AccessTokenPayload
from balance.sessions.service import SessionService

router = APIRouter(prefix="/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
    """Request to open a new upload session."""

    email: EmailStr


class UpdateSessionSettingsRequest(BaseModel):
    """Per-session preferences."""

    model_config = ConfigDict(populate_by_name=True)

    auto_categorize_on_upload: bool = Field(alias="autoCategorizeOnUpload")


@router.post("")
def create_session(
    body: CreateSessionRequest,
    service: SessionService = Depends(get_session_service),
) -> dict[str, Any]:
    """
    Create a session and a bootstrap access token scoped to it.

    Side Effects:
        - Inserts a row into the sessions table
    """
    return service.create_session(body.email)


@router.get("")
def list_sessions(
    principal: AccessTokenPayload = Depends(get_current_principal),
    service: SessionService = Depends(get_session_service),
) -> list[dict[str, Any]]:
    """Active sessions visible to the caller, newest first."""
    return [summary.to_response() for summary in service.list_sessions_for_principal(principal)]


@router.get("/{session_id}")
def get_session(
    session_id: str,
    principal: AccessTokenPayload = Depends(get_current_principal),
    service: SessionService = Depends(get_session_service),
) -> dict[str, Any]:
    return service.get_active_session_by_id(session_id, principal).to_response()


@router.delete("/{session_id}")
def delete_session(
    session_id: str,
    principal: AccessTokenPayload = Depends(get_current_principal),
    service: SessionService = Depends(get_session_service),
) -> dict[str, Any]:
    """
    Soft-delete a session and reclaim its files.

    Side Effects:
        - Marks the session and its uploaded files deleted
        - Deletes the files' storage objects (best effort)
    """
    return service.delete_active_session_by_id(session_id, principal)


@router.patch("/{session_id}/settings")
def update_session_settings(
    session_id: str,
    body: UpdateSessionSettingsRequest,
    principal: AccessTokenPayload = Depends(get_current_principal),
    service: SessionService = Depends(get_session_service),
) -> dict[str, Any]:
    return service.update_session_settings(
        session_id, principal, body.auto_categorize_on_upload
    )
