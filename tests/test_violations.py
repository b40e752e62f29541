"""Tests for violation recording."""

from unittest.mock import MagicMock

import pytest
from witnessbox.classifier import classify_content
from witnessbox.schemas import FilterMode, ViolationCategory, ViolationStatus
from witnessbox.storage import InMemoryStorage
from witnessbox.violations import (
    ViolationMismatchError,
    ViolationStateError,
    format_content_detail,
    log_auth_violation,
    log_content_violation,
    log_usage_violation,
    mark_proceeded,
)


QUESTION = "What is the derivative of x^2?"


class TestContentViolations:
    """Flagged content events and the proceed transition."""

    def setup_method(self):
        """Set up test fixtures."""
        self.store = InMemoryStorage()
        self.classification = classify_content(QUESTION)

    def test_detail_format(self):
        """Detail keeps the full question and the filter analysis."""
        detail = format_content_detail(QUESTION, self.classification)

        assert detail == (
            '[MATH] Student asked: "What is the derivative of x^2?"\n\n'
            "Filter Analysis: Direct math question detected. Keywords: derivative. "
            "No literature context found. (confidence: 85%)"
        )

    def test_log_returns_event_id(self):
        event_id = log_content_violation(
            self.store, "ana@school.edu", "s1", QUESTION, self.classification,
        )

        event = self.store.get_violation(event_id)
        assert event.category == ViolationCategory.NON_ENGLISH
        assert event.status == ViolationStatus.FLAGGED
        assert event.session_id == "s1"
        assert event.bypassed_at is None

    def test_log_failure_returns_none(self):
        """A failed write is logged, not raised."""
        store = MagicMock()
        store.create_violation.side_effect = RuntimeError("read-only database")

        assert log_content_violation(store, "ana@school.edu", "s1", QUESTION, self.classification) is None

    def test_mark_proceeded_once(self):
        """flagged -> proceeded happens exactly once."""
        event_id = log_content_violation(
            self.store, "ana@school.edu", "s1", QUESTION, self.classification,
        )

        event = mark_proceeded(self.store, event_id, "ana@school.edu")

        assert event.status == ViolationStatus.PROCEEDED
        assert event.bypassed_at is not None
        assert self.store.get_violation(event_id).status == ViolationStatus.PROCEEDED

        with pytest.raises(ViolationStateError):
            mark_proceeded(self.store, event_id, "ana@school.edu")

    def test_mark_proceeded_other_student(self):
        event_id = log_content_violation(
            self.store, "ana@school.edu", "s1", QUESTION, self.classification,
        )

        with pytest.raises(ViolationStateError):
            mark_proceeded(self.store, event_id, "ben@school.edu")
        assert self.store.get_violation(event_id).status == ViolationStatus.FLAGGED

    def test_content_event_keeps_question_and_mode(self):
        event_id = log_content_violation(
            self.store, "ana@school.edu", "s1", QUESTION, self.classification, mode=FilterMode.NORMAL,
        )

        event = self.store.get_violation(event_id)
        assert event.content == QUESTION
        assert event.filter_mode == FilterMode.NORMAL

    def test_mark_proceeded_different_question(self):
        event_id = log_content_violation(
            self.store, "ana@school.edu", "s1", QUESTION, self.classification, mode=FilterMode.NORMAL,
        )

        with pytest.raises(ViolationMismatchError):
            mark_proceeded(self.store, event_id, "ana@school.edu", content="Explain the python code")
        assert self.store.get_violation(event_id).status == ViolationStatus.FLAGGED

        event = mark_proceeded(self.store, event_id, "ana@school.edu", content=f"  {QUESTION} ")
        assert event.status == ViolationStatus.PROCEEDED

    def test_mark_proceeded_strict_event(self):
        event_id = log_content_violation(
            self.store, "ana@school.edu", "s1", QUESTION, self.classification, mode=FilterMode.STRICT,
        )

        with pytest.raises(ViolationMismatchError):
            mark_proceeded(self.store, event_id, "ana@school.edu", content=QUESTION)

    def test_mark_proceeded_unknown(self):
        with pytest.raises(ViolationStateError):
            mark_proceeded(self.store, "missing", "ana@school.edu")


class TestOtherViolations:
    """Usage and auth events."""

    def setup_method(self):
        """Set up test fixtures."""
        self.store = InMemoryStorage()

    def test_usage_violation_is_blocked(self):
        event = log_usage_violation(
            self.store, "ana@school.edu", "s1", "Daily token limit reached (10 tokens). Resets at midnight.",
        )

        assert event.category == ViolationCategory.RATE_LIMIT
        assert event.status == ViolationStatus.BLOCKED
        assert event.detail.startswith("Daily token limit reached")

    def test_usage_violation_cannot_be_bypassed(self):
        event = log_usage_violation(self.store, "ana@school.edu", "s1", None)

        assert event.detail == "Usage limit exceeded"
        with pytest.raises(ViolationStateError):
            mark_proceeded(self.store, event.event_id, "ana@school.edu")

    def test_auth_violation(self):
        event = log_auth_violation(self.store, "10.0.0.7", "Admin login throttled")

        assert event.category == ViolationCategory.AUTH
        assert self.store.list_violations(category="auth") == [event]
