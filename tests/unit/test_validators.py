"""Unit tests for input validation and storage key construction"""

from __future__ import annotations

import uuid

import pytest

from balance.files.models import build_storage_key
from balance.files.types import FileCategory
from balance.utils.validators import (
    ValidationError,
    is_valid_file_id,
    normalize_email,
    parse_file_ids,
    sanitize_file_name,
)


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("  Chase Credit (Jan 2024).PDF", "chase-credit-jan-2024"),
        ("statement.pdf", "statement"),
        ("___.pdf", "statement"),
        ("Résumé 2024.pdf", "r-sum-2024"),
        ("a" * 200 + ".pdf", "a" * 80),
    ],
)
def test_sanitize_file_name(name, expected):
    assert sanitize_file_name(name) == expected


def test_storage_key_layout():
    file_id = str(uuid.uuid4())
    key = build_storage_key("ABCD2345", FileCategory.CHECKING, file_id, "My Statement.pdf")

    assert key == f"sessions/ABCD2345/checking/{file_id}-my-statement.pdf"


def test_storage_keys_differ_for_same_name():
    a = build_storage_key("ABCD2345", "unfiled", str(uuid.uuid4()), "x.pdf")
    b = build_storage_key("ABCD2345", "unfiled", str(uuid.uuid4()), "x.pdf")

    assert a != b


def test_normalize_email():
    assert normalize_email("  Jane@Example.COM ") == "jane@example.com"
    assert normalize_email(None) == ""


def test_is_valid_file_id():
    assert is_valid_file_id(str(uuid.uuid4()))
    assert not is_valid_file_id("not-a-uuid")
    assert not is_valid_file_id("")


def test_parse_file_ids_dedupes_and_requires_one():
    assert parse_file_ids([" a ", "b", "a", ""]) == ["a", "b"]
    with pytest.raises(ValidationError):
        parse_file_ids([])
    with pytest.raises(ValidationError):
        parse_file_ids(["  "])
