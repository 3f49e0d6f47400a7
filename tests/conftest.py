"""
Pytest configuration for Balance tests

Provides a throwaway SQLite database per test, in-memory stand-ins for
object storage and email delivery, and a TestClient wired to both.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from balance.auth.access_tokens import AccessTokenIssuer, AccessTokenPayload, AccessTokenType
from balance.config import Settings
from balance.errors import EmailDeliveryError, StorageError
from balance.infrastructure.database import init_database, reset_pool
from balance.infrastructure.email_delivery import EmailMessage
from balance.infrastructure.storage import StoredObject
from balance.observability.telemetry import reset_counters

TEST_JWT_SECRET = "test-secret-do-not-use-in-prod"
MAGIC_TOKEN_PATTERN = re.compile(r"token=([0-9a-f]{64})")


class FakeStorage:
    """Records writes and deletes; failures are switched on per test."""

    def __init__(self, bucket: str = "test-bucket") -> None:
        self.bucket = bucket
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.deleted: list[str] = []
        self.fail_put = False
        self.fail_delete_keys: set[str] = set()

    def put_object(self, key: str, body: bytes, content_type: str) -> None:
        if self.fail_put:
            raise StorageError("Storage service is unreachable.", code="network_unreachable")
        self.objects[key] = (body, content_type)

    def delete_object(self, key: str, bucket: str | None = None) -> None:
        if key in self.fail_delete_keys:
            raise StorageError("Storage service is unreachable.", code="network_unreachable")
        self.objects.pop(key, None)
        self.deleted.append(key)

    def get_object(self, key: str, bucket: str | None = None) -> StoredObject:
        if key not in self.objects:
            raise StorageError("Storage bucket not found.", code="bucket_not_found")
        body, content_type = self.objects[key]
        return StoredObject(body=body, content_type=content_type)

    def verify_bucket(self) -> None:
        return None


class FakeSender:
    """Captures outgoing magic-link emails."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, EmailMessage]] = []
        self.fail_send = False

    def send(self, to_email: str, message: EmailMessage) -> None:
        if self.fail_send:
            raise EmailDeliveryError()
        self.sent.append((to_email, message))

    def last_token(self) -> str:
        """Raw magic token from the most recent email."""
        _, message = self.sent[-1]
        match = MAGIC_TOKEN_PATTERN.search(message.text)
        assert match, "no magic link in email body"
        return match.group(1)


def pdf_text_from_bytes(data: bytes | None, max_pages: int = 5) -> str:
    """Stand-in for pdfplumber: test payloads are the statement text itself."""
    return (data or b"").decode("utf-8", "ignore").lower()


@pytest.fixture(autouse=True)
def clean_counters() -> Iterator[None]:
    """Telemetry counters are process-global."""
    reset_counters()
    yield
    reset_counters()


@pytest.fixture
def db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Fresh database file for each test."""
    db_path = tmp_path / "balance-test.db"
    monkeypatch.setenv("BALANCE_DB_PATH", str(db_path))
    reset_pool()
    init_database()
    yield db_path
    reset_pool()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        env="test",
        jwt_secret=TEST_JWT_SECRET,
        email_provider="console",
        client_public_url="http://localhost:4173",
    )


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def access_tokens(settings: Settings) -> AccessTokenIssuer:
    return AccessTokenIssuer(settings.jwt_secret)


@pytest.fixture
def fake_pdf_text(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make detection read the raw payload instead of parsing a PDF."""
    monkeypatch.setattr("balance.files.service.extract_pdf_text", pdf_text_from_bytes)


@pytest.fixture
def app(db: Path, settings: Settings, storage: FakeStorage, sender: FakeSender, fake_pdf_text):
    from balance.api.app import create_app

    return create_app(
        settings=settings, storage=storage, email_sender=sender, start_maintenance=False
    )


@pytest.fixture
def client(app) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def principal_for(
    email: str, session_id: str | None = None, token_type: AccessTokenType | None = None
) -> AccessTokenPayload:
    """Build a verified principal without minting a JWT."""
    if token_type is None:
        token_type = (
            AccessTokenType.CONTINUE_SESSION if session_id else AccessTokenType.FIND_SESSIONS
        )
    return AccessTokenPayload(email=email, type=token_type, session_id=session_id)


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
