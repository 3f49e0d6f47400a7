"""Unit tests for request parsing helpers

Tests cover:
- Upload ``meta`` field parsing
- Bearer header extraction
- Client IP resolution behind the load balancer
- Content-Disposition for non-ASCII file names
"""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient

from balance.api.dependencies import _extract_bearer_token, get_client_ip
from balance.api.routes.files import (
    META_PARSE_ERROR_MESSAGE,
    _content_disposition,
    parse_upload_meta,
)
from balance.config import Settings
from balance.errors import BadRequestError
from balance.files.types import StatementType


def test_parse_meta_maps_names_to_types():
    raw = '[{"clientFileName": "a.pdf", "statementType": "credit"}, {"clientFileName": " b.pdf "}]'

    assert parse_upload_meta(raw) == {
        "a.pdf": StatementType.CREDIT,
        "b.pdf": StatementType.UNKNOWN,
    }


@pytest.mark.parametrize("raw", [None, ""])
def test_parse_meta_absent(raw):
    assert parse_upload_meta(raw) == {}


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        '{"clientFileName": "a.pdf"}',
        '[{"statementType": "credit"}]',
        '[{"clientFileName": "a.pdf", "statementType": "mortgage"}]',
        '[{"clientFileName": "a.pdf", "extra": 1}]',
        '[{"clientFileName": "   "}]',
    ],
)
def test_parse_meta_rejects_malformed(raw):
    with pytest.raises(BadRequestError) as exc_info:
        parse_upload_meta(raw)
    assert exc_info.value.message == META_PARSE_ERROR_MESSAGE


def test_extract_bearer_token():
    assert _extract_bearer_token("Bearer abc.def") == "abc.def"
    assert _extract_bearer_token("bearer abc") == "abc"


@pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer", "Bearer a b"])
def test_extract_bearer_token_rejects(header):
    with pytest.raises(HTTPException) as exc_info:
        _extract_bearer_token(header)
    assert exc_info.value.status_code == 401
    assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}


def _ip_client(env: str) -> TestClient:
    app = FastAPI()
    app.state.settings = Settings(env=env, jwt_secret="x", client_public_url="https://x.test")

    @app.get("/ip")
    def ip(client_ip: str = Depends(get_client_ip)):
        return {"ip": client_ip}

    return TestClient(app)


def test_forwarded_for_ignored_without_load_balancer():
    client = _ip_client("production")

    response = client.get("/ip", headers={"X-Forwarded-For": "9.9.9.9"})

    assert response.json()["ip"] == "testclient"


def test_forwarded_for_trusted_behind_load_balancer():
    client = _ip_client("production")

    response = client.get(
        "/ip",
        headers={"X-Forwarded-For": "9.9.9.9, 10.0.0.1", "X-Cloud-Trace-Context": "abc/1"},
    )

    assert response.json()["ip"] == "9.9.9.9"


def test_local_env_accepts_real_ip_and_skips_garbage():
    client = _ip_client("development")

    response = client.get("/ip", headers={"X-Forwarded-For": "garbage", "X-Real-IP": "8.8.8.8"})

    assert response.json()["ip"] == "8.8.8.8"


def test_content_disposition_has_ascii_fallback():
    header = _content_disposition('Relevé "mars".pdf')

    assert header.startswith('inline; filename="Relev mars.pdf"')
    assert "filename*=UTF-8''Relev%C3%A9%20%22mars%22.pdf" in header
