"""
Keyword classifier for bank statements.

Scores extracted PDF text against a fixed list of marker phrases per
account type and picks the strongest match. Pure and deterministic: no I/O,
no clock, no randomness.

Ranking, strongest first:
1. Distinct marker phrases found
2. Total marker mentions (non-overlapping)
3. Coverage of the category's phrase list
4. Fixed priority: credit, then checking, then savings

The priority tie-break is a product decision carried over as-is; nothing
about the data says credit should beat checking on a perfect tie.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from balance.files.types import DetectionResult, StatementType

STATEMENT_KEYWORDS: dict[StatementType, tuple[str, ...]] = {
    StatementType.CREDIT: (
        "credit card",
        "minimum payment",
        "payment due date",
        "credit limit",
        "available credit",
        "annual percentage rate",
        "interest charge",
        "cash advance",
    ),
    StatementType.CHECKING: (
        "checking account",
        "debit card",
        "direct deposit",
        "checks paid",
        "overdraft",
        "atm withdrawal",
        "deposits and additions",
        "electronic withdrawal",
    ),
    StatementType.SAVINGS: (
        "savings account",
        "interest earned",
        "annual percentage yield",
        "interest paid",
        "money market",
        "savings balance",
        "withdrawal limit",
        "year-to-date interest",
    ),
}

# Lower index wins a full tie
CATEGORY_PRIORITY: tuple[StatementType, ...] = (
    StatementType.CREDIT,
    StatementType.CHECKING,
    StatementType.SAVINGS,
)


@dataclass(frozen=True)
class CategoryScore:
    statement_type: StatementType
    unique_keyword_matches: int
    mention_score: int
    total_keywords: int

    @property
    def coverage(self) -> float:
        if self.total_keywords == 0:
            return 0.0
        return self.unique_keyword_matches / self.total_keywords

    def sort_key(self) -> tuple[int, int, float, int]:
        # Ascending sort, so negate everything that should rank high
        return (
            -self.unique_keyword_matches,
            -self.mention_score,
            -self.coverage,
            CATEGORY_PRIORITY.index(self.statement_type),
        )


def score_category(
    text: str, statement_type: StatementType, keywords: tuple[str, ...]
) -> CategoryScore:
    """Count distinct phrases present and total non-overlapping mentions."""
    counts = [text.count(keyword) for keyword in keywords]
    return CategoryScore(
        statement_type=statement_type,
        unique_keyword_matches=sum(1 for count in counts if count > 0),
        mention_score=sum(counts),
        total_keywords=len(keywords),
    )


def round_confidence(coverage: float) -> float:
    """Two decimals, halves rounded up (1/8 -> 0.13)."""
    return float(Decimal(str(coverage)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def classify_statement_text(text: str | None) -> DetectionResult:
    """
    Classify extracted statement text.

    Args:
        text: Text extracted from a PDF, any case, possibly empty

    Returns:
        DetectionResult; (unknown, 0.0, False) when no category matches
    """
    normalized = (text or "").lower()
    if not normalized.strip():
        return DetectionResult.unknown()

    candidates = [
        score
        for statement_type, keywords in STATEMENT_KEYWORDS.items()
        if (score := score_category(normalized, statement_type, keywords)).unique_keyword_matches
        or score.mention_score
    ]
    if not candidates:
        return DetectionResult.unknown()

    winner = min(candidates, key=CategoryScore.sort_key)
    return DetectionResult(
        auto_detected_type=winner.statement_type,
        detection_confidence=round_confidence(winner.coverage),
        is_likely_statement=True,
    )
