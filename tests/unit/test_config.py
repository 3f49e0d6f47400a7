"""Unit tests for environment-driven settings"""

from __future__ import annotations

import pytest

from balance.config import Settings, normalize_env, normalize_public_url
from balance.errors import ConfigurationError


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('"1h"', "1h"),
        ("'abc' ", "abc"),
        ("  plain  ", "plain"),
        ('""', None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_env(raw, expected):
    assert normalize_env(raw) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("balance.example.com", "https://balance.example.com"),
        ("https://balance.example.com///", "https://balance.example.com"),
        ("http://localhost:4173/", "http://localhost:4173"),
        (None, None),
    ],
)
def test_normalize_public_url(raw, expected):
    assert normalize_public_url(raw) == expected


def test_from_env_reads_and_normalizes(monkeypatch):
    monkeypatch.setenv("BALANCE_ENV", "production")
    monkeypatch.setenv("JWT_SECRET", '"s3cret"')
    monkeypatch.setenv("CLIENT_PUBLIC_URL", "app.example.com/")
    monkeypatch.setenv("MAX_FILES_PER_UPLOAD", "-3")
    monkeypatch.setenv("RESEND_RETRY_COUNT", "99")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example.com/, https://b.example.com")

    settings = Settings.from_env()

    assert settings.env == "production"
    assert settings.jwt_secret == "s3cret"
    assert settings.client_public_url == "https://app.example.com"
    assert settings.max_files_per_upload == 10
    assert settings.resend_retry_count == 5
    assert settings.allowed_origins()[-3:] == [
        "https://app.example.com",
        "https://a.example.com",
        "https://b.example.com",
    ]


def test_local_public_url_falls_back_to_dev_server():
    settings = Settings(env="development", jwt_secret="x")

    assert settings.magic_link_url("abc") == "http://localhost:4173/auth/verify?token=abc"


def test_validate_requires_jwt_secret():
    with pytest.raises(ConfigurationError):
        Settings(env="test").validate()


def test_validate_requires_public_url_outside_local():
    with pytest.raises(ConfigurationError):
        Settings(env="production", jwt_secret="x").validate()


def test_validate_requires_provider_credentials():
    with pytest.raises(ConfigurationError):
        Settings(env="test", jwt_secret="x", email_provider="resend").validate()
    with pytest.raises(ConfigurationError):
        Settings(env="test", jwt_secret="x", email_provider="carrier-pigeon").validate()


def test_max_file_size_bytes():
    assert Settings(max_file_size_mb=15).max_file_size_bytes == 15 * 1024 * 1024
