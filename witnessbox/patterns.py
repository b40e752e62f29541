"""
Surface patterns for homework-style questions.

Both patterns are anchored at the start of the (stripped) question.
"""

import re


HOMEWORK_PATTERN = re.compile(
    r"^(what is|explain|define|how does|calculate|solve|find the|prove|show that)",
    re.IGNORECASE,
)

DIRECT_ANSWER_PATTERN = re.compile(
    r"^(what'?s|whats|tell me about|give me|list)",
    re.IGNORECASE,
)


def is_homework_question(text: str) -> bool:
    """True if the question opens like a homework or direct-answer request."""
    stripped = (text or "").strip()
    return bool(
        HOMEWORK_PATTERN.match(stripped)
        or DIRECT_ANSWER_PATTERN.match(stripped)
    )
