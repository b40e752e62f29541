"""
Input validation for WitnessBox.

Validates student and admin input before it reaches storage or the model.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


MAX_MESSAGE_LENGTH = 4_000
MAX_NAME_LENGTH = 100
MIN_NAME_LENGTH = 2
MAX_EMAIL_LENGTH = 255

EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email or ""))


def validate_email(email: str) -> str:
    """
    Validate and normalize an email address.

    Returns:
        The lowercased, stripped email.

    Raises:
        ValidationError: If the email is malformed or too long.
    """
    if not isinstance(email, str):
        raise ValidationError(f"Email must be a string, got {type(email).__name__}")
    email = email.strip().lower()
    if len(email) > MAX_EMAIL_LENGTH:
        raise ValidationError(f"Email too long (maximum {MAX_EMAIL_LENGTH} characters)")
    if not is_valid_email(email):
        raise ValidationError(f"Invalid email format: {email!r}")
    return email


def validate_message(content: str) -> None:
    """
    Validate a student message.

    Raises:
        ValidationError: If the message is empty or too long.
    """
    if not isinstance(content, str):
        raise ValidationError(f"Message must be a string, got {type(content).__name__}")

    if not content or not content.strip():
        raise ValidationError("Message content is required")

    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"Message too long: {len(content):,} characters "
            f"(max: {MAX_MESSAGE_LENGTH:,})"
        )


def validate_token_limit(limit: Optional[int]) -> Optional[int]:
    """None means unbounded; otherwise a non-negative integer."""
    if limit is None:
        return None
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(f"Token limit must be an integer, got {type(limit).__name__}")
    if limit < 0:
        raise ValidationError(f"Token limit must be non-negative, got {limit}")
    return limit


def validate_cost_limit(limit) -> Optional[Decimal]:
    """
    Parse a cost ceiling into a Decimal.

    Accepts Decimal, int or numeric strings. Floats are rejected so that
    limits never pick up binary rounding.
    """
    if limit is None or limit == "":
        return None
    if isinstance(limit, float):
        raise ValidationError("Cost limit must be given as a decimal string, not a float")
    try:
        value = Decimal(str(limit))
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid cost limit: {limit!r}") from exc
    if not value.is_finite() or value < 0:
        raise ValidationError(f"Cost limit must be a non-negative amount, got {limit!r}")
    return value
