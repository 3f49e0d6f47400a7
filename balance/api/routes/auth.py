"""
Magic-link endpoints.

The two request endpoints always answer 200 with the same message; see
balance/auth/service.py.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from balance.api.dependencies import get_auth_service, get_request_context
from balance.auth.service import AuthService, RequestContext
from balance.sessions.session_id import SESSION_ID_LENGTH

router = APIRouter(prefix="/auth", tags=["auth"])


class RequestLinkRequest(BaseModel):
    """Request a continue-session link for one session."""

    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    session_id: str = Field(
        alias="sessionId",
        min_length=SESSION_ID_LENGTH,
        max_length=SESSION_ID_LENGTH,
        pattern=r"^[A-Za-z0-9]+$",
    )

    @field_validator("session_id", mode="before")
    @classmethod
    def strip_session_id(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class RequestSessionsRequest(BaseModel):
    """Request a link listing every active session for an email."""

    email: EmailStr


class VerifyRequest(BaseModel):
    token: str = Field(min_length=1)

    @field_validator("token", mode="before")
    @classmethod
    def strip_token(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


@router.post("/request-link")
def request_link(
    body: RequestLinkRequest,
    context: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
) -> dict[str, str]:
    """
    Side Effects:
        - May insert an email token and send an email
    """
    return service.request_link(body.email, body.session_id, context)


@router.post("/request-sessions")
def request_sessions(
    body: RequestSessionsRequest,
    context: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_auth_service),
) -> dict[str, str]:
    """
    Side Effects:
        - May insert an email token and send an email
    """
    return service.request_sessions(body.email, context)


@router.post("/verify")
def verify(
    body: VerifyRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict[str, Any]:
    """
    Redeem a magic-link token for an access token.

    Side Effects:
        - Marks the email token used (single use)
    """
    return service.verify(body.token)


@router.get("/verify")
def verify_from_link(
    token: str = Query(min_length=1),
    service: AuthService = Depends(get_auth_service),
) -> dict[str, Any]:
    """Same as POST /auth/verify, for clients that forward the link's query string."""
    return service.verify(token)
