"""Unit tests for the keyword statement classifier

Tests cover:
- Single-category text and its confidence
- Empty and keyword-free text
- Ranking by distinct phrases, then mentions
- The fixed credit > checking > savings tie-break
"""

from __future__ import annotations

import pytest

from balance.files.classifier import (
    STATEMENT_KEYWORDS,
    classify_statement_text,
    round_confidence,
)
from balance.files.types import DetectionResult, StatementType


def test_credit_statement_detected_with_coverage_confidence():
    text = """
    Your credit card statement
    Minimum Payment Due: $35.00
    Payment Due Date: 02/15/2024
    Credit Limit $5,000   Available Credit $4,200
    """
    result = classify_statement_text(text)

    assert result.auto_detected_type is StatementType.CREDIT
    # 5 of 8 credit markers
    assert result.detection_confidence == 0.63
    assert result.is_likely_statement is True


@pytest.mark.parametrize("text", [None, "", "   \n\t ", "grocery list: eggs, milk"])
def test_text_without_markers_is_unknown(text):
    assert classify_statement_text(text) == DetectionResult.unknown()


def test_matching_is_case_insensitive():
    result = classify_statement_text("CHECKING ACCOUNT summary, DIRECT DEPOSIT received")

    assert result.auto_detected_type is StatementType.CHECKING
    assert result.detection_confidence == 0.25


def test_more_distinct_phrases_beats_more_mentions():
    # savings: 1 phrase mentioned 4 times; checking: 2 distinct phrases once each
    text = "interest earned " * 4 + "checking account overdraft"
    result = classify_statement_text(text)

    assert result.auto_detected_type is StatementType.CHECKING


def test_mentions_break_a_distinct_phrase_tie():
    text = "savings account savings account savings account debit card"
    result = classify_statement_text(text)

    assert result.auto_detected_type is StatementType.SAVINGS
    assert result.detection_confidence == 0.13


def test_full_tie_prefers_credit_then_checking():
    assert classify_statement_text("credit card debit card").auto_detected_type is (
        StatementType.CREDIT
    )
    assert classify_statement_text("debit card savings account").auto_detected_type is (
        StatementType.CHECKING
    )


def test_every_keyword_set_has_eight_phrases():
    for keywords in STATEMENT_KEYWORDS.values():
        assert len(keywords) == 8
        assert all(keyword == keyword.lower() for keyword in keywords)


def test_confidence_stays_within_unit_interval():
    text = " ".join(STATEMENT_KEYWORDS[StatementType.SAVINGS])
    result = classify_statement_text(text)

    assert result.auto_detected_type is StatementType.SAVINGS
    assert result.detection_confidence == 1.0


@pytest.mark.parametrize(
    "coverage, expected",
    [(1 / 8, 0.13), (3 / 8, 0.38), (5 / 8, 0.63), (7 / 8, 0.88), (0.25, 0.25), (1.0, 1.0)],
)
def test_confidence_rounds_halves_up(coverage, expected):
    assert round_confidence(coverage) == expected


def test_single_weak_match_rounds_up():
    result = classify_statement_text("credit card")

    assert result.auto_detected_type is StatementType.CREDIT
    assert result.detection_confidence == 0.13
