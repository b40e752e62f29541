"""
Blocking policy for the content filter.

Turns a classification plus the configured filter mode into an
allow/block recommendation. The policy itself has no side effects;
callers decide whether to record a violation.
"""

import logging
from typing import Optional

from witnessbox.classifier import ContentClassifier, get_classifier
from witnessbox.config import get_work_title
from witnessbox.schemas import BlockDecision, ClassificationResult, ContentCheck, FilterMode


NORMAL_MODE_THRESHOLD = 0.7

logger = logging.getLogger("witnessbox.policy")


def evaluate_blocking_policy(
    classification: ClassificationResult,
    mode: FilterMode = FilterMode.NORMAL,
) -> BlockDecision:
    """
    Decide whether a classified question should be blocked.

    Args:
        classification: Result from the content classifier.
        mode: "strict" blocks every violation; "normal" only those with
            confidence >= 0.7.

    Returns:
        BlockDecision with a student-facing reason when blocking.
    """
    if not classification.is_violation:
        return BlockDecision(block=False)

    mode = FilterMode(mode)
    category = classification.category.value if classification.category else "another subject"
    work = get_work_title()

    if mode == FilterMode.STRICT:
        return BlockDecision(
            block=True,
            reason=(
                f"Content appears to be about {category} rather than English literature. "
                f"Please focus your questions on {work} characters, plot, themes, "
                f"or literary analysis."
            ),
        )

    if classification.confidence >= NORMAL_MODE_THRESHOLD:
        return BlockDecision(
            block=True,
            reason=(
                f"This question seems to be about {category} rather than English literature. "
                f"Please ask questions related to the {work} story, characters, "
                f"or literary analysis."
            ),
        )

    return BlockDecision(block=False)


def should_block_content(
    text: str,
    store,
    classifier: Optional[ContentClassifier] = None,
) -> ContentCheck:
    """
    Classify a question and apply the globally configured policy.

    Fails open: if the settings store cannot be read the question is
    allowed through and the error is logged.
    """
    classifier = classifier or get_classifier()
    classification = classifier.classify(text)

    try:
        settings = store.get_settings()
    except Exception:
        logger.exception("Content filter could not read settings; allowing request")
        return ContentCheck(block=False, classification=classification)

    mode = settings.content_filter_mode if settings else FilterMode.NORMAL
    decision = evaluate_blocking_policy(classification, mode)

    return ContentCheck(
        block=decision.block,
        classification=classification,
        mode=FilterMode(mode),
        reason=decision.reason,
    )
