"""
Violation recording.

Every blocked or flagged request leaves one audit event behind. Content
events start out ``flagged`` and may be moved to ``proceeded`` exactly
once when the student chooses to continue anyway.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from witnessbox.models import ViolationEvent
from witnessbox.schemas import ClassificationResult, FilterMode, ViolationCategory, ViolationStatus


logger = logging.getLogger("witnessbox.violations")


class ViolationStateError(Exception):
    """Raised when a violation cannot be moved to the requested state."""
    pass


class ViolationMismatchError(ViolationStateError):
    """Raised when a bypass does not match the question that was flagged."""
    pass


def format_content_detail(content: str, classification: ClassificationResult) -> str:
    """Audit text holding the full question and the filter analysis."""
    label = classification.category.value if classification.category else "mixed subjects"
    return (
        f'[{label.upper()}] Student asked: "{content}"\n\n'
        f"Filter Analysis: {classification.details} "
        f"(confidence: {classification.confidence * 100:.0f}%)"
    )


def log_content_violation(
    store,
    student_email: str,
    session_id: Optional[str],
    content: str,
    classification: ClassificationResult,
    status: ViolationStatus = ViolationStatus.FLAGGED,
    mode: Optional[FilterMode] = None,
) -> Optional[str]:
    """
    Record a content-filter violation.

    Returns:
        The new event id, or None if the store rejected the write.
    """
    event = ViolationEvent(
        student_email=student_email,
        session_id=session_id,
        category=ViolationCategory.NON_ENGLISH,
        detail=format_content_detail(content, classification),
        status=status,
        content=content,
        filter_mode=mode,
    )
    try:
        store.create_violation(event)
    except Exception:
        logger.exception("Failed to log content violation for %s", student_email)
        return None

    label = classification.category.value if classification.category else "mixed subjects"
    logger.info(
        "Content violation logged for %s: %s question %s",
        student_email, label, status.value,
    )
    return event.event_id


def log_usage_violation(
    store,
    student_email: str,
    session_id: Optional[str],
    reason: Optional[str],
) -> ViolationEvent:
    """Record a denied request caused by usage limits."""
    event = ViolationEvent(
        student_email=student_email,
        session_id=session_id,
        category=ViolationCategory.RATE_LIMIT,
        detail=reason or "Usage limit exceeded",
        status=ViolationStatus.BLOCKED,
    )
    store.create_violation(event)
    logger.info("Usage limit violation logged for %s", student_email)
    return event


def log_auth_violation(store, identifier: str, detail: str) -> ViolationEvent:
    """Record a throttled or otherwise refused admin login."""
    event = ViolationEvent(
        student_email=identifier,
        category=ViolationCategory.AUTH,
        detail=detail,
        status=ViolationStatus.BLOCKED,
    )
    store.create_violation(event)
    logger.warning("Auth violation logged for %s", identifier)
    return event


def mark_proceeded(
    store,
    event_id: str,
    student_email: str,
    content: Optional[str] = None,
) -> ViolationEvent:
    """
    Record that a student chose to proceed past a content warning.

    Raises:
        ViolationStateError: If the event is unknown, belongs to someone
            else, is not a content event, or was already resolved.
        ViolationMismatchError: If the event was raised in strict mode, or
            ``content`` is not the question that was flagged.
    """
    event = store.get_violation(event_id)
    if event is None:
        raise ViolationStateError(f"Violation '{event_id}' not found")
    if event.student_email != student_email:
        raise ViolationStateError(f"Violation '{event_id}' belongs to another student")
    if event.category != ViolationCategory.NON_ENGLISH:
        raise ViolationStateError(f"Violation '{event_id}' cannot be bypassed")
    if event.status != ViolationStatus.FLAGGED:
        raise ViolationStateError(
            f"Violation '{event_id}' is already {event.status.value}"
        )
    if event.filter_mode == FilterMode.STRICT:
        raise ViolationMismatchError(f"Violation '{event_id}' was blocked in strict mode")
    if content is not None and event.content is not None and content.strip() != event.content.strip():
        raise ViolationMismatchError(f"Violation '{event_id}' was raised for a different question")

    event.status = ViolationStatus.PROCEEDED
    event.bypassed_at = datetime.now(timezone.utc)
    store.update_violation(event)

    logger.info("Student %s proceeded past violation %s", student_email, event_id)
    return event
