"""
Magic-link sign-in flow.

- request_link: email a continue-session link for one session
- request_sessions: email a find-sessions link for every active session
- verify: redeem a link for an access token plus the sessions it unlocks

Both request endpoints answer with the same message whatever happened
(unknown email, rate limited, email provider down), so responses never
reveal whether an address has sessions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from balance.auth.access_tokens import AccessTokenIssuer, AccessTokenType
from balance.auth.email_tokens import EmailTokenPurpose, EmailTokenService
from balance.auth.rate_limiter import SlidingWindowRateLimiter
from balance.errors import BalanceError
from balance.infrastructure.email_delivery import MagicLinkMailer
from balance.observability.logging import get_logger
from balance.observability.telemetry import counter, log_event
from balance.sessions.repository import SessionRepository
from balance.sessions.service import SessionService
from balance.utils.redaction import redact
from balance.utils.timestamps import utc_now
from balance.utils.validators import normalize_email

logger = get_logger(__name__)

REQUEST_LINK_ENDPOINT = "request-link"
REQUEST_SESSIONS_ENDPOINT = "request-sessions"
REQUEST_LINK_MESSAGE = "If we found a session, you'll receive an email shortly."
REQUEST_SESSIONS_MESSAGE = "If we found sessions, you'll receive an email shortly."


@dataclass(frozen=True)
class RequestContext:
    """Caller details recorded alongside issued tokens."""

    ip: str | None = None
    user_agent: str | None = None


class AuthService:
    """Magic-link issuance and redemption."""

    def __init__(
        self,
        email_tokens: EmailTokenService,
        access_tokens: AccessTokenIssuer,
        sessions: SessionService,
        mailer: MagicLinkMailer,
        rate_limiter: SlidingWindowRateLimiter,
    ) -> None:
        self._email_tokens = email_tokens
        self._access_tokens = access_tokens
        self._sessions = sessions
        self._mailer = mailer
        self._rate_limiter = rate_limiter

    def _send_link(
        self,
        email: str,
        purpose: EmailTokenPurpose,
        context: RequestContext,
        session_id: str | None = None,
    ) -> None:
        """Issue a token and email it. Failures are logged, never raised."""
        try:
            raw_token = self._email_tokens.issue(
                email,
                purpose,
                session_id=session_id,
                ip=context.ip,
                user_agent=context.user_agent,
            )
            self._mailer.send_magic_link(email, raw_token)
        except (BalanceError, RuntimeError) as e:
            logger.error(
                "Failed to issue %s magic link for %s: %s",
                purpose.value,
                redact(email),
                e,
                exc_info=True,
            )
            counter(f"auth.{purpose.value}.send_failed")
            return

        log_event("auth.magic_link.sent", purpose=purpose.value, email=redact(email))

    def request_link(
        self, email: str, session_id: str, context: RequestContext
    ) -> dict[str, str]:
        """Email a continue-session link if the session exists for this email."""
        normalized = normalize_email(email)
        session_id = (session_id or "").strip()

        if self._rate_limiter.is_rate_limited(REQUEST_LINK_ENDPOINT, context.ip, normalized):
            return {"message": REQUEST_LINK_MESSAGE}

        session = self._sessions.find_active_session_by_id_and_email(session_id, normalized)
        if session is None:
            counter("auth.request_link.no_match")
            return {"message": REQUEST_LINK_MESSAGE}

        self._send_link(
            normalized,
            EmailTokenPurpose.CONTINUE_SESSION,
            context,
            session_id=session.session_id,
        )
        return {"message": REQUEST_LINK_MESSAGE}

    def request_sessions(self, email: str, context: RequestContext) -> dict[str, str]:
        """Email a find-sessions link if the email owns any active session."""
        normalized = normalize_email(email)

        if self._rate_limiter.is_rate_limited(REQUEST_SESSIONS_ENDPOINT, context.ip, normalized):
            return {"message": REQUEST_SESSIONS_MESSAGE}

        if not self._sessions.has_active_sessions_for_email(normalized):
            counter("auth.request_sessions.no_match")
            return {"message": REQUEST_SESSIONS_MESSAGE}

        self._send_link(normalized, EmailTokenPurpose.FIND_SESSIONS, context)
        return {"message": REQUEST_SESSIONS_MESSAGE}

    def verify(self, raw_token: str) -> dict[str, Any]:
        """
        Redeem a magic-link token.

        Raises:
            InvalidTokenError: Unknown, expired or already used
        """
        record = self._email_tokens.consume(raw_token)

        if record.purpose is EmailTokenPurpose.CONTINUE_SESSION and record.session_id:
            access_token, expires_in = self._access_tokens.issue(
                record.email, AccessTokenType.CONTINUE_SESSION, record.session_id
            )
            summary = SessionRepository.get_active_summary(
                record.session_id, record.email, utc_now()
            )
            sessions = [summary] if summary else []
        else:
            access_token, expires_in = self._access_tokens.issue(
                record.email, AccessTokenType.FIND_SESSIONS
            )
            sessions = self._sessions.list_active_sessions_for_email(record.email)

        log_event("auth.verified", purpose=record.purpose.value, sessions=len(sessions))
        return {
            "ok": True,
            "accessToken": access_token,
            "expiresIn": expires_in,
            "sessions": [summary.to_response() for summary in sessions],
        }
