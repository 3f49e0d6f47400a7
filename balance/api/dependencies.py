"""
FastAPI dependencies: bearer authentication, client IP and service lookup.

Services are built once in ``create_app`` and parked on ``app.state``;
route handlers pull them in with ``Depends`` so tests can swap any of them.
"""

from __future__ import annotations

import ipaddress

from fastapi import Depends, HTTPException, Request, status

from balance.auth.access_tokens import AccessTokenIssuer, AccessTokenPayload
from balance.auth.service import AuthService, RequestContext
from balance.config import Settings
from balance.errors import UnauthorizedError
from balance.files.service import FileService
from balance.sessions.service import SessionService

MISSING_BEARER_MESSAGE = "Missing bearer token."
# Present on requests that came through the load balancer
TRUSTED_PROXY_HEADER = "X-Cloud-Trace-Context"
MAX_USER_AGENT_LENGTH = 512


def _extract_bearer_token(authorization: str | None) -> str:
    """Extract token from Authorization header."""
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=MISSING_BEARER_MESSAGE,
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=MISSING_BEARER_MESSAGE,
            headers={"WWW-Authenticate": "Bearer"},
        )

    return parts[1]


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_access_tokens(request: Request) -> AccessTokenIssuer:
    return request.app.state.access_tokens


def get_session_service(request: Request) -> SessionService:
    return request.app.state.session_service


def get_file_service(request: Request) -> FileService:
    return request.app.state.file_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_current_principal(
    request: Request,
    access_tokens: AccessTokenIssuer = Depends(get_access_tokens),
) -> AccessTokenPayload:
    """
    FastAPI dependency resolving the caller from ``Authorization: Bearer``.

    Usage:
        @router.get("/sessions")
        def list_sessions(principal: AccessTokenPayload = Depends(get_current_principal)):
            ...
    """
    token = _extract_bearer_token(request.headers.get("Authorization"))
    try:
        return access_tokens.verify(token)
    except UnauthorizedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from None


def _is_valid_ip(ip: str) -> bool:
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return False
    return True


def get_client_ip(request: Request, settings: Settings = Depends(get_settings_dep)) -> str:
    """
    Client IP with spoofing protection.

    X-Forwarded-For is trusted only behind the load balancer (trace header
    present) or in local environments. Malformed addresses are ignored.
    """
    if TRUSTED_PROXY_HEADER in request.headers or settings.is_local:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            ip = forwarded.split(",")[0].strip()
            if _is_valid_ip(ip):
                return ip

    if settings.is_local:
        real_ip = request.headers.get("X-Real-IP")
        if real_ip and _is_valid_ip(real_ip):
            return real_ip

    return request.client.host if request.client else "unknown"


def get_request_context(
    request: Request, ip: str = Depends(get_client_ip)
) -> RequestContext:
    user_agent = request.headers.get("User-Agent")
    if user_agent:
        user_agent = user_agent[:MAX_USER_AGENT_LENGTH]
    return RequestContext(ip=ip, user_agent=user_agent)
