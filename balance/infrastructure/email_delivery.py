"""
Magic-link email delivery.

Providers (EMAIL_PROVIDER):
- console: log the link (local development, tests)
- smtp: STARTTLS + login against SMTP_HOST
- resend: Resend HTTP API with bounded retries

Senders raise ``EmailDeliveryError``; the auth layer logs it and still
answers the caller with its generic message.
"""

from __future__ import annotations

import random
import smtplib
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

import httpx

from balance.config import Settings
from balance.errors import ConfigurationError, EmailDeliveryError
from balance.observability.logging import get_logger
from balance.observability.telemetry import counter, log_event
from balance.utils.redaction import redact

logger = get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
MAGIC_LINK_SUBJECT = "Your Balance sessions"
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})
MAX_RETRY_DELAY_MS = 10_000


@dataclass(frozen=True)
class EmailMessage:
    subject: str
    html: str
    text: str


def build_magic_link_message(link: str, ttl_minutes: int) -> EmailMessage:
    """Subject plus HTML and plain-text bodies for a magic-link email."""
    text = "\n".join(
        [
            "Balance",
            "",
            "Use this secure link to view and continue your sessions:",
            link,
            "",
            f"This link expires in {ttl_minutes} minutes.",
            "If you didn't request this, you can ignore this email.",
        ]
    )
    html = f"""<!doctype html>
<html lang="en">
  <body style="margin:0;padding:24px;background:#f5f7fb;font-family:-apple-system,'Segoe UI',Roboto,Helvetica,Arial,sans-serif;color:#0f172a;">
    <table role="presentation" width="600" cellspacing="0" cellpadding="0"
           style="max-width:600px;width:100%;margin:0 auto;background:#ffffff;border:1px solid #e2e8f0;border-radius:16px;padding:28px;">
      <tr>
        <td>
          <p style="margin:0 0 20px 0;font-size:22px;font-weight:700;">Balance</p>
          <h1 style="margin:0 0 12px 0;font-size:24px;line-height:1.3;">Your secure Balance link</h1>
          <p style="margin:0 0 18px 0;font-size:15px;line-height:1.6;color:#334155;">
            Use this secure link to view and continue your sessions.
          </p>
          <p style="margin:0 0 20px 0;">
            <a href="{link}" style="display:inline-block;background:#0f172a;color:#ffffff;text-decoration:none;font-weight:600;padding:12px 20px;border-radius:10px;">
              Continue session
            </a>
          </p>
          <p style="margin:0 0 8px 0;font-size:13px;color:#475569;">
            If the button does not work, copy and paste this link into your browser:
          </p>
          <p style="margin:0 0 16px 0;padding:12px;border:1px dashed #cbd5e1;background:#f8fafc;font-family:monospace;font-size:12px;word-break:break-all;">
            {link}
          </p>
          <p style="margin:0 0 14px 0;font-size:13px;color:#475569;">
            This link expires in {ttl_minutes} minutes.
          </p>
          <p style="margin:0;font-size:12px;color:#64748b;">
            If you didn't request this, you can ignore this email.
          </p>
        </td>
      </tr>
    </table>
  </body>
</html>
"""
    return EmailMessage(subject=MAGIC_LINK_SUBJECT, html=html, text=text)


class EmailSender(Protocol):
    def send(self, to_email: str, message: EmailMessage) -> None: ...


class ConsoleEmailSender:
    """Writes the message to the log instead of sending it."""

    def send(self, to_email: str, message: EmailMessage) -> None:
        logger.info("[console-email] to %s:\n%s", to_email, message.text)


class SmtpEmailSender:
    """Plain SMTP delivery (STARTTLS, then login)."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: str,
        smtp_password: str | None,
        from_email: str,
        from_name: str = "Balance",
        timeout_seconds: float = 10.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email
        self.from_name = from_name
        self.timeout_seconds = timeout_seconds

    def send(self, to_email: str, message: EmailMessage) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg["Date"] = datetime.now().astimezone().strftime("%a, %d %b %Y %H:%M:%S %z")
        msg.attach(MIMEText(message.text, "plain"))
        msg.attach(MIMEText(message.html, "html"))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout_seconds) as server:
                server.starttls()
                if self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP send to %s failed: %s", redact(to_email), e)
            raise EmailDeliveryError() from e


class ResendEmailSender:
    """
    Resend HTTP API sender.

    Retries timeouts, connection errors and 408/425/429/5xx responses with
    exponential backoff plus jitter, capped at 10 seconds per wait.
    """

    def __init__(
        self,
        api_key: str,
        from_email: str,
        timeout_ms: int = 8000,
        retry_count: int = 2,
        retry_base_delay_ms: int = 400,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.max_attempts = retry_count + 1
        self.retry_base_delay_ms = retry_base_delay_ms
        self._client = client or httpx.Client(timeout=timeout_ms / 1000)
        self._sleep = sleep

    def _retry_delay_seconds(self, attempt: int) -> float:
        base = self.retry_base_delay_ms
        exponential = base * (2 ** max(0, attempt - 1))
        jitter = random.randint(0, base - 1)
        return min(exponential + jitter, MAX_RETRY_DELAY_MS) / 1000

    def send(self, to_email: str, message: EmailMessage) -> None:
        payload = {
            "from": self.from_email,
            "to": [to_email],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        for attempt in range(1, self.max_attempts + 1):
            is_last = attempt >= self.max_attempts
            try:
                response = self._client.post(RESEND_API_URL, json=payload, headers=headers)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if not is_last:
                    delay = self._retry_delay_seconds(attempt)
                    logger.warning(
                        "Resend attempt %d/%d failed (%s), retrying in %.2fs",
                        attempt,
                        self.max_attempts,
                        type(e).__name__,
                        delay,
                    )
                    self._sleep(delay)
                    continue
                logger.error("Resend send to %s failed: %s", redact(to_email), e)
                counter("email.resend.failed")
                raise EmailDeliveryError() from e

            if response.is_success:
                log_event(
                    "email.resend.sent",
                    to=redact(to_email),
                    attempt=attempt,
                    resend_id=_response_id(response),
                )
                return

            if response.status_code in RETRYABLE_STATUS_CODES and not is_last:
                delay = self._retry_delay_seconds(attempt)
                logger.warning(
                    "Resend attempt %d/%d returned %d, retrying in %.2fs",
                    attempt,
                    self.max_attempts,
                    response.status_code,
                    delay,
                )
                self._sleep(delay)
                continue

            logger.error(
                "Resend send to %s failed (%d): %s",
                redact(to_email),
                response.status_code,
                response.text[:500],
            )
            counter("email.resend.failed")
            raise EmailDeliveryError()

        # Loop always returns or raises on its last attempt
        raise EmailDeliveryError()


def _response_id(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("id") if isinstance(body, dict) else None


class MagicLinkMailer:
    """Builds magic-link URLs and hands the message to the configured sender."""

    def __init__(self, settings: Settings, sender: EmailSender) -> None:
        self._settings = settings
        self._sender = sender

    def send_magic_link(self, email: str, raw_token: str) -> None:
        """
        Raises:
            EmailDeliveryError: If the provider rejected the message
        """
        link = self._settings.magic_link_url(raw_token)
        message = build_magic_link_message(link, self._settings.magic_link_ttl_minutes)
        self._sender.send(email, message)
        counter("email.magic_link.sent")


def build_email_sender(settings: Settings) -> EmailSender:
    """
    Sender for settings.email_provider.

    Raises:
        ConfigurationError: If the chosen provider is missing credentials
    """
    provider = settings.email_provider
    if provider == "resend":
        if not settings.resend_api_key:
            raise ConfigurationError("RESEND_API_KEY must be set when EMAIL_PROVIDER=resend.")
        return ResendEmailSender(
            api_key=settings.resend_api_key,
            from_email=settings.email_from,
            timeout_ms=settings.resend_timeout_ms,
            retry_count=settings.resend_retry_count,
            retry_base_delay_ms=settings.resend_retry_base_delay_ms,
        )
    if provider == "smtp":
        if not settings.smtp_host or not settings.smtp_user:
            raise ConfigurationError("SMTP_HOST and SMTP_USER must be set when EMAIL_PROVIDER=smtp.")
        return SmtpEmailSender(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            from_email=settings.email_from,
        )
    return ConsoleEmailSender()
