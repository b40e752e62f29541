"""
Chat pipeline for WitnessBox.

Every student question goes through the same gates:
usage limits -> content filter -> model call -> usage ledger.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from witnessbox.classifier import ContentClassifier
from witnessbox.config import get_professor_name
from witnessbox.generation import CharacterResponder, GenerationResult
from witnessbox.models import ChatMessage, ChatSession, UsageEntry
from witnessbox.policy import should_block_content
from witnessbox.schemas import (
    ClassificationResult,
    FilterMode,
    LimitsInfo,
    MessageRole,
    Responder,
)
from witnessbox.usage import UsageAccountant, calculate_cost
from witnessbox.validation import validate_email, validate_message
from witnessbox.violations import (
    log_content_violation,
    log_usage_violation,
    ViolationMismatchError,
    mark_proceeded,
)


logger = logging.getLogger("witnessbox.pipeline")


class SessionNotFoundError(Exception):
    """Raised when a chat session id is unknown."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' not found")


class StudentNotAuthorizedError(Exception):
    """Raised when a student is not whitelisted or has been deactivated."""

    def __init__(self, email: str, message: str):
        self.email = email
        self.message = message
        super().__init__(message)


class UsageLimitError(Exception):
    """Raised when a usage ceiling denies the request."""

    def __init__(self, reason: str, limits_info: LimitsInfo):
        self.reason = reason
        self.limits_info = limits_info
        super().__init__(reason)


class ContentBlockedError(Exception):
    """
    Raised when the content filter blocks a question.

    ``can_proceed`` is True for normal-mode warnings, which the student
    may override by resending with the ``violation_id``.
    """

    def __init__(
        self,
        reason: str,
        classification: ClassificationResult,
        violation_id: Optional[str],
        can_proceed: bool,
    ):
        self.reason = reason
        self.classification = classification
        self.violation_id = violation_id
        self.can_proceed = can_proceed
        super().__init__(reason)


@dataclass
class ExchangeResult:
    """One completed question/answer exchange."""
    user_message: ChatMessage
    assistant_message: ChatMessage
    generation: GenerationResult
    cost: Decimal
    usage_entry: UsageEntry


class ChatPipeline:
    """
    Runs student questions through limits, filtering and generation.

    Example:
        ```python
        pipeline = ChatPipeline(store, OpenAIResponder())
        session = pipeline.start_session("ana@school.edu", "Ana", "Fezzik", "Who hired you?")
        result = pipeline.send_message(session.session_id, "Why did you climb the cliff?")
        print(result.assistant_message.content)
        ```
    """

    def __init__(
        self,
        store,
        responder: CharacterResponder,
        classifier: Optional[ContentClassifier] = None,
        accountant: Optional[UsageAccountant] = None,
    ):
        self.store = store
        self.responder = responder
        self.classifier = classifier
        self.accountant = accountant or UsageAccountant(store)

    # =========================================================================
    # Sessions
    # =========================================================================

    def start_session(
        self,
        student_email: str,
        student_name: Optional[str],
        character_name: str,
        situation: str,
    ) -> ChatSession:
        """Open a session for a whitelisted, active student."""
        professor = get_professor_name()
        email = validate_email(student_email)
        student = self.store.get_student(email)
        if student is None:
            raise StudentNotAuthorizedError(
                email,
                f"Your email is not in the class whitelist. Please contact {professor}.",
            )
        if not student.is_active:
            raise StudentNotAuthorizedError(
                email,
                f"Your account has been temporarily deactivated. Please contact {professor}.",
            )

        session = ChatSession(
            student_email=email,
            student_name=student_name or student.name,
            character_name=character_name,
            situation=situation,
        )
        return self.store.create_session(session)

    def get_session(self, session_id: str) -> ChatSession:
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    # =========================================================================
    # Questions
    # =========================================================================

    def send_message(
        self,
        session_id: str,
        content: str,
        bypass_warning: bool = False,
        violation_id: Optional[str] = None,
    ) -> ExchangeResult:
        """
        Ask the session's character a question.

        Args:
            session_id: Target session.
            content: The student's question.
            bypass_warning: Student confirmed they want to proceed past a
                normal-mode content warning.
            violation_id: The warning being overridden.

        Raises:
            SessionNotFoundError, UsageLimitError, ContentBlockedError,
            ViolationStateError, ValidationError
        """
        validate_message(content)
        session = self.get_session(session_id)
        self._enforce_limits(session)

        check = should_block_content(content, self.store, self.classifier)

        bypassed = False
        if check.block and bypass_warning and violation_id and check.mode == FilterMode.NORMAL:
            try:
                mark_proceeded(self.store, violation_id, session.student_email, content=content)
                bypassed = True
            except ViolationMismatchError as exc:
                logger.warning("Bypass refused for %s: %s", session.student_email, exc)

        if check.block and not bypassed:
            event_id = log_content_violation(
                self.store,
                session.student_email,
                session_id,
                content,
                check.classification,
                mode=check.mode,
            )
            raise ContentBlockedError(
                reason=check.reason,
                classification=check.classification,
                violation_id=event_id,
                can_proceed=check.mode == FilterMode.NORMAL and event_id is not None,
            )

        history = [
            {"role": MessageRole(m.role).value, "content": m.content}
            for m in self.store.list_messages(session_id)
        ]
        user_message = self.store.add_message(
            ChatMessage(session_id=session_id, role=MessageRole.USER, content=content)
        )

        generation = self.responder.respond(
            session.character_name,
            session.situation,
            history + [{"role": "user", "content": content}],
        )

        reply = generation.content
        if generation.responder == Responder.PROFESSOR:
            reply = f"[{get_professor_name()}]: {reply}"

        return self._finish(session, user_message, reply, generation)

    def ask_professor(self, session_id: str, question: str) -> ExchangeResult:
        """
        Ask the professor directly. Usage limits apply; the content filter
        does not, since the professor steers the student back on topic.
        """
        validate_message(question)
        session = self.get_session(session_id)
        self._enforce_limits(session)

        professor = get_professor_name()
        generation = self.responder.respond(
            session.character_name,
            session.situation,
            [{"role": "user", "content": question}],
            professor_mode=True,
        )

        user_message = self.store.add_message(
            ChatMessage(
                session_id=session_id,
                role=MessageRole.USER,
                content=f"[Asked {professor}]: {question}",
            )
        )
        return self._finish(
            session, user_message, f"[{professor}]: {generation.content}", generation,
        )

    def _enforce_limits(self, session: ChatSession) -> None:
        usage = self.accountant.check_limits(session.student_email)
        if not usage.can_proceed:
            try:
                log_usage_violation(
                    self.store, session.student_email, session.session_id, usage.reason,
                )
            except Exception:
                logger.exception("Failed to log usage violation for %s", session.student_email)
            raise UsageLimitError(usage.reason, usage.limits_info)

    def _finish(
        self,
        session: ChatSession,
        user_message: ChatMessage,
        reply: str,
        generation: GenerationResult,
    ) -> ExchangeResult:
        assistant_message = self.store.add_message(
            ChatMessage(
                session_id=session.session_id,
                role=MessageRole.ASSISTANT,
                content=reply,
            )
        )

        cost = calculate_cost(
            generation.prompt_tokens,
            generation.completion_tokens,
            generation.model or None,
        )
        entry = self.accountant.record_usage(
            student_email=session.student_email,
            session_id=session.session_id,
            tokens_used=generation.total_tokens,
            cost=cost,
            student_name=session.student_name,
        )
        logger.info(
            "Session %s: %d tokens, $%s", session.session_id, generation.total_tokens, cost,
        )

        return ExchangeResult(
            user_message=user_message,
            assistant_message=assistant_message,
            generation=generation,
            cost=cost,
            usage_entry=entry,
        )
