"""
WitnessBox - Question literary characters, stay on topic.

Content filter:
    from witnessbox import classify_content, evaluate_blocking_policy

    result = classify_content("What is the derivative of x^2?")
    print(result.is_violation)  # True
    print(result.category)      # Category.MATH
    print(result.confidence)    # 0.85

    decision = evaluate_blocking_policy(result, "strict")
    print(decision.block)       # True

Usage limits (fail closed):
    from witnessbox import SQLiteStorage, check_usage_limits

    store = SQLiteStorage("witnessbox.db")
    check = check_usage_limits(store, "ana@school.edu")
    if not check.can_proceed:
        print(check.reason)

Chat pipeline:
    from witnessbox import ChatPipeline, OpenAIResponder

    pipeline = ChatPipeline(store, OpenAIResponder())
    session = pipeline.start_session("ana@school.edu", "Ana", "Inigo Montoya", "Who hired Rugen?")
    result = pipeline.send_message(session.session_id, "Why did you chase the six fingered man?")
    print(result.assistant_message.content)
"""

from witnessbox.classifier import ContentClassifier, classify_content, get_classifier
from witnessbox.config import configure_logging, set_pricing, set_timezone
from witnessbox.policy import evaluate_blocking_policy, should_block_content
from witnessbox.schemas import (
    Category,
    ClassificationResult,
    BlockDecision,
    ContentCheck,
    FilterMode,
    MatchMode,
    UsageCheck,
    LimitsInfo,
    ViolationCategory,
    ViolationStatus,
)
from witnessbox.models import Student, Settings, UsageEntry, ViolationEvent
from witnessbox.usage import UsageAccountant, calculate_cost, check_usage_limits
from witnessbox.violations import (
    log_content_violation,
    log_usage_violation,
    log_auth_violation,
    mark_proceeded,
    ViolationStateError,
    ViolationMismatchError,
)
from witnessbox.storage import InMemoryStorage, SQLiteStorage, DuplicateStudentError
from witnessbox.generation import OpenAIResponder, GenerationResult
from witnessbox.pipeline import (
    ChatPipeline,
    ExchangeResult,
    SessionNotFoundError,
    StudentNotAuthorizedError,
    UsageLimitError,
    ContentBlockedError,
)
from witnessbox.auth import AdminAuth, InvalidCredentialsError, LoginThrottledError
from witnessbox.rate_limiter import LoginThrottle, ThrottleConfig


__all__ = [
    "ContentClassifier",
    "classify_content",
    "get_classifier",
    "configure_logging",
    "set_pricing",
    "set_timezone",
    "evaluate_blocking_policy",
    "should_block_content",
    "Category",
    "ClassificationResult",
    "BlockDecision",
    "ContentCheck",
    "FilterMode",
    "MatchMode",
    "UsageCheck",
    "LimitsInfo",
    "ViolationCategory",
    "ViolationStatus",
    "Student",
    "Settings",
    "UsageEntry",
    "ViolationEvent",
    "UsageAccountant",
    "calculate_cost",
    "check_usage_limits",
    "log_content_violation",
    "log_usage_violation",
    "log_auth_violation",
    "mark_proceeded",
    "ViolationStateError",
    "ViolationMismatchError",
    "InMemoryStorage",
    "SQLiteStorage",
    "DuplicateStudentError",
    "OpenAIResponder",
    "GenerationResult",
    "ChatPipeline",
    "ExchangeResult",
    "SessionNotFoundError",
    "StudentNotAuthorizedError",
    "UsageLimitError",
    "ContentBlockedError",
    "AdminAuth",
    "InvalidCredentialsError",
    "LoginThrottledError",
    "LoginThrottle",
    "ThrottleConfig",
]

__version__ = "0.1.0"
