"""
Content Relevance Classifier for WitnessBox.

Decides whether a student question belongs to the literary domain using
keyword counts and homework-style question patterns.
"""

import re
from typing import Iterable, Optional

from witnessbox.config import get_match_mode
from witnessbox.lexicon import LITERATURE_KEYWORDS, iter_categories
from witnessbox.patterns import is_homework_question
from witnessbox.schemas import (
    Category,
    CATEGORY_ORDER,
    ClassificationResult,
    MatchMode,
)


MAX_KEYWORDS_IN_DETAILS = 5


class ContentClassifier:
    """
    Rule-based relevance classifier.

    Verdict ladder (first match wins):
    - direct homework question, off-topic terms, no literature -> violation (0.85)
    - 3+ literature terms, at most 2 off-topic                 -> allowed (0.9)
    - some literature, at most 2 off-topic                     -> allowed (0.8)
    - 3+ off-topic terms                                       -> violation (n/5, max 0.95)
    - exactly 2 off-topic terms                                -> violation (0.7)
    - 1 off-topic term, not a homework question                -> allowed (0.6)
    - nothing off-topic                                        -> allowed (0.95)
    """

    def __init__(self, match_mode: MatchMode = MatchMode.SUBSTRING):
        self.match_mode = MatchMode(match_mode)

        # Word-mode patterns are compiled once per classifier
        self._word_patterns: dict[str, re.Pattern] = {}
        if self.match_mode == MatchMode.WORD:
            all_keywords = set(LITERATURE_KEYWORDS)
            for _, keywords in iter_categories():
                all_keywords.update(keywords)
            self._word_patterns = {
                kw: re.compile(rf"\b{re.escape(kw)}\b") for kw in all_keywords
            }

    def classify(self, text: str) -> ClassificationResult:
        """
        Classify a question.

        Args:
            text: Raw question text. None and empty strings are accepted.

        Returns:
            ClassificationResult with verdict, category and confidence.
        """
        text = text or ""
        lowered = text.lower()

        detected: dict[Category, list[str]] = {
            category: self._find(lowered, keywords)
            for category, keywords in iter_categories()
        }
        scores = {category: len(found) for category, found in detected.items()}

        total_non_lit = sum(scores.values())
        total_lit = len(self._find(lowered, LITERATURE_KEYWORDS))
        homework = is_homework_question(text)

        def result(is_violation: bool, confidence: float, details: str,
                   category: Optional[Category] = None) -> ClassificationResult:
            return ClassificationResult(
                is_violation=is_violation,
                confidence=confidence,
                details=details,
                category=category,
                matched_keywords=tuple(detected[category]) if category else (),
                off_topic_count=total_non_lit,
                literature_count=total_lit,
                is_homework_pattern=homework,
            )

        if total_non_lit >= 1 and homework and total_lit == 0:
            primary = self._primary_category(scores)
            return result(
                True, 0.85,
                f"Direct {primary.value} question detected. "
                f"Keywords: {self._keyword_list(detected[primary])}. "
                f"No literature context found.",
                primary,
            )

        if total_lit >= 3 and total_non_lit <= 2:
            return result(
                False, 0.9,
                f"Strong literature context detected "
                f"({total_lit} lit keywords, {total_non_lit} other keywords)",
            )

        if total_lit > 0 and total_non_lit <= 2:
            return result(
                False, 0.8,
                f"Literature context detected "
                f"({total_lit} lit keywords, {total_non_lit} other keywords)",
            )

        if total_non_lit >= 3:
            primary = self._primary_category(scores)
            return result(
                True, min(0.95, total_non_lit / 5),
                f"{total_non_lit} non-literature keywords detected, "
                f"primarily {primary.value}. "
                f"Keywords: {self._keyword_list(detected[primary])}",
                primary,
            )

        if total_non_lit == 2:
            primary = self._primary_category(scores)
            return result(
                True, 0.7,
                f"{total_non_lit} non-literature keywords detected, "
                f"possibly {primary.value}. "
                f"Keywords: {self._keyword_list(detected[primary])}",
                primary,
            )

        if total_non_lit == 1 and not homework:
            return result(
                False, 0.6,
                "Single non-literature keyword detected but appears contextual",
            )

        return result(False, 0.95, "Content appears to be literature-focused")

    def _find(self, lowered: str, keywords: Iterable[str]) -> list[str]:
        """Return keywords present in the text, in lexicon order."""
        if self.match_mode == MatchMode.WORD:
            return [kw for kw in keywords if self._word_patterns[kw].search(lowered)]
        return [kw for kw in keywords if kw in lowered]

    @staticmethod
    def _primary_category(scores: dict[Category, int]) -> Category:
        # max() keeps the first of equal scores, so ties follow CATEGORY_ORDER
        return max(CATEGORY_ORDER, key=lambda category: scores[category])

    @staticmethod
    def _keyword_list(keywords: list[str]) -> str:
        return ", ".join(keywords[:MAX_KEYWORDS_IN_DETAILS])


_default_classifier: Optional[ContentClassifier] = None


def get_classifier() -> ContentClassifier:
    """Get or create the default classifier (match mode from config)."""
    global _default_classifier
    if _default_classifier is None:
        _default_classifier = ContentClassifier(match_mode=get_match_mode())
    return _default_classifier


def classify_content(text: str) -> ClassificationResult:
    """Classify a question with the default classifier."""
    return get_classifier().classify(text)
