"""
Student list parser.

Turns a pasted class list into name/email pairs for bulk whitelisting.
Accepts ``Name (email)`` entries separated by commas, semicolons, tabs or
newlines, or failing that a plain list of email addresses.
"""

import re
from dataclasses import dataclass, field

from witnessbox.validation import (
    MAX_EMAIL_LENGTH,
    MAX_NAME_LENGTH,
    MIN_NAME_LENGTH,
    is_valid_email,
)


NAME_EMAIL_PATTERN = re.compile(r"([^(,;\n\t]+?)\s*\(([^)]+)\)")
EMAIL_ONLY_PATTERN = re.compile(
    r"\b([a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*)\b"
)


@dataclass
class ParsedStudent:
    name: str
    email: str


@dataclass
class ParseResult:
    students: list[ParsedStudent] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)  # {"line": ..., "error": ...}
    duplicates: list[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    valid: list[ParsedStudent] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    invalid: list[tuple[ParsedStudent, str]] = field(default_factory=list)


def normalize_text(text: str) -> str:
    """Collapse whitespace and straighten curly quotes."""
    text = re.sub(r"[“”]", '"', text)
    text = re.sub(r"[‘’]", "'", text)
    return re.sub(r"[ \t\r\f\v]+", " ", text).strip()


def parse_student_list(text: str) -> ParseResult:
    """Extract students from pasted text."""
    result = ParseResult()
    if not text or not text.strip():
        return result

    normalized = normalize_text(text)
    seen: set[str] = set()

    matches = list(NAME_EMAIL_PATTERN.finditer(normalized))
    for match in matches:
        name = match.group(1).strip().rstrip(",;").strip()
        email = match.group(2).strip().lower()

        if not is_valid_email(email):
            result.errors.append({"line": f"{name} ({email})", "error": "Invalid email format"})
            continue
        if email in seen:
            result.duplicates.append(email)
            continue

        seen.add(email)
        result.students.append(ParsedStudent(name=name, email=email))

    if matches:
        return result

    for match in EMAIL_ONLY_PATTERN.finditer(normalized):
        email = match.group(1).strip().lower()
        if not is_valid_email(email):
            continue
        if email in seen:
            result.duplicates.append(email)
            continue

        seen.add(email)
        username = email.split("@")[0]
        result.students.append(ParsedStudent(name=username[:1].upper() + username[1:], email=email))

    return result


def validate_students(parsed: list[ParsedStudent], existing_emails: set[str]) -> ValidationResult:
    """Split parsed students into new, already-whitelisted and invalid."""
    result = ValidationResult()
    existing_lower = {e.lower() for e in existing_emails}

    for student in parsed:
        if student.email.lower() in existing_lower:
            result.existing.append(student.email)
        elif not student.name or len(student.name) < MIN_NAME_LENGTH:
            result.invalid.append((student, f"Name too short (minimum {MIN_NAME_LENGTH} characters)"))
        elif len(student.name) > MAX_NAME_LENGTH:
            result.invalid.append((student, f"Name too long (maximum {MAX_NAME_LENGTH} characters)"))
        elif len(student.email) > MAX_EMAIL_LENGTH:
            result.invalid.append((student, f"Email too long (maximum {MAX_EMAIL_LENGTH} characters)"))
        else:
            result.valid.append(student)

    return result
