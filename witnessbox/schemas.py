"""
Data schemas for WitnessBox.

Classification, policy and usage-check result structures.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional


class Category(str, Enum):
    """Off-topic subject areas the content filter recognises."""
    MATH = "math"
    SCIENCE = "science"
    TECHNOLOGY = "technology"
    OTHER = "other"


# Tie-break precedence when two categories score the same.
CATEGORY_ORDER: tuple[Category, ...] = (
    Category.MATH,
    Category.SCIENCE,
    Category.TECHNOLOGY,
    Category.OTHER,
)


class FilterMode(str, Enum):
    """Global content filter strictness."""
    NORMAL = "normal"  # block only high-confidence violations
    STRICT = "strict"  # block every detected violation


class MatchMode(str, Enum):
    """How lexicon keywords are located in text."""
    SUBSTRING = "substring"
    WORD = "word"


class ViolationCategory(str, Enum):
    """Kinds of audit events."""
    NON_ENGLISH = "non-english"
    RATE_LIMIT = "rate-limit"
    AUTH = "auth"


class ViolationStatus(str, Enum):
    """Lifecycle state of a violation event."""
    FLAGGED = "flagged"
    PROCEEDED = "proceeded"
    BLOCKED = "blocked"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Responder(str, Enum):
    """Which persona produced a generated reply."""
    CHARACTER = "character"
    PROFESSOR = "professor"


@dataclass(frozen=True)
class ClassificationResult:
    """
    Verdict of the content relevance classifier.

    Built fresh for each question and never persisted directly; the
    details string is what ends up in the audit trail.
    """
    is_violation: bool
    confidence: float
    details: str
    category: Optional[Category] = None
    matched_keywords: tuple[str, ...] = ()
    off_topic_count: int = 0
    literature_count: int = 0
    is_homework_pattern: bool = False


@dataclass(frozen=True)
class BlockDecision:
    """Recommendation from the blocking policy."""
    block: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class ContentCheck:
    """Blocking decision together with the classification behind it."""
    block: bool
    classification: ClassificationResult
    mode: FilterMode = FilterMode.NORMAL
    reason: Optional[str] = None


@dataclass(frozen=True)
class UsageWindow:
    """Token and cost totals for one time window."""
    total_tokens: int = 0
    total_cost: Decimal = Decimal("0")


@dataclass(frozen=True)
class LimitsInfo:
    """Current usage figures attached to every usage check."""
    daily_tokens: int = 0
    monthly_tokens: int = 0
    daily_cost: Decimal = Decimal("0")
    monthly_cost: Decimal = Decimal("0")

    def to_dict(self) -> dict:
        return {
            "daily_tokens": self.daily_tokens,
            "monthly_tokens": self.monthly_tokens,
            "daily_cost": str(self.daily_cost),
            "monthly_cost": str(self.monthly_cost),
        }


@dataclass(frozen=True)
class UsageCheck:
    """Outcome of a usage-limit check."""
    can_proceed: bool
    limits_info: LimitsInfo = field(default_factory=LimitsInfo)
    reason: Optional[str] = None
