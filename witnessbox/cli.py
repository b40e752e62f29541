"""
Command-line interface for WitnessBox.

Provides commands for:
- Trying the content filter on a question
- Checking a student's usage limits
- Bulk-adding students from a class list
- Initializing the database
- Listing violation events
"""

import argparse
import json
import sys
from pathlib import Path

from witnessbox.classifier import classify_content
from witnessbox.config import configure_logging, get_db_path
from witnessbox.models import Student
from witnessbox.policy import evaluate_blocking_policy
from witnessbox.roster import parse_student_list, validate_students
from witnessbox.schemas import FilterMode
from witnessbox.storage import SQLiteStorage
from witnessbox.usage import check_usage_limits


def _storage(args) -> SQLiteStorage:
    return SQLiteStorage(db_path=args.db or get_db_path())


def cmd_classify(args):
    """Run the content filter on one question."""
    result = classify_content(args.text)
    decision = evaluate_blocking_policy(result, FilterMode(args.mode))

    if args.json:
        print(json.dumps({
            "is_violation": result.is_violation,
            "category": result.category.value if result.category else None,
            "confidence": result.confidence,
            "details": result.details,
            "block": decision.block,
            "reason": decision.reason,
        }, indent=2))
        return

    print("\n" + "=" * 60)
    print("CONTENT FILTER")
    print("=" * 60)
    print(f"\nQuestion: {args.text[:100]}")
    print(f"Mode: {args.mode}")
    print()
    print("-" * 60)
    print("VERDICT")
    print("-" * 60)
    print(f"Violation: {result.is_violation}")
    print(f"Category: {result.category.value if result.category else '-'}")
    print(f"Confidence: {result.confidence:.0%}")
    print(f"Details: {result.details}")
    print(f"Blocked: {decision.block}")
    if decision.reason:
        print(f"Reason: {decision.reason}")
    print("=" * 60)


def cmd_check_usage(args):
    """Show a student's usage and whether they may continue."""
    storage = _storage(args)
    try:
        check = check_usage_limits(storage, args.email)
    finally:
        storage.close()

    info = check.limits_info
    print(f"\nStudent: {args.email}")
    print(f"Can proceed: {check.can_proceed}")
    if check.reason:
        print(f"Reason: {check.reason}")
    print(f"Today: {info.daily_tokens} tokens, ${info.daily_cost}")
    print(f"This month: {info.monthly_tokens} tokens, ${info.monthly_cost}")
    if not check.can_proceed:
        sys.exit(2)


def cmd_add_students(args):
    """Whitelist every student found in a class list file."""
    text = Path(args.file).read_text(encoding="utf-8")
    parsed = parse_student_list(text)

    storage = _storage(args)
    try:
        existing = {s.email for s in storage.list_students()}
        checked = validate_students(parsed.students, existing)
        for student in checked.valid:
            storage.create_student(Student(email=student.email, name=student.name))
    finally:
        storage.close()

    print(f"Added: {len(checked.valid)}")
    print(f"Already whitelisted: {len(checked.existing)}")
    print(f"Duplicates in file: {len(parsed.duplicates)}")
    for error in parsed.errors:
        print(f"  Error: {error['line']} - {error['error']}")
    for student, reason in checked.invalid:
        print(f"  Invalid: {student.email} - {reason}")


def cmd_init_db(args):
    """Create the database schema."""
    storage = _storage(args)
    storage.close()
    print(f"Database initialized at {args.db or get_db_path()}")
    print("Next steps:")
    print("  1. Start the API: uvicorn api.main:app")
    print("  2. Log in to the admin endpoints with ADMIN_PASSWORD")
    print("  3. Add students to the whitelist")


def cmd_violations(args):
    """List violation events, newest first."""
    storage = _storage(args)
    try:
        events = storage.list_violations(student_email=args.student, category=args.category)
    finally:
        storage.close()

    for event in events:
        print(
            f"{event.timestamp.isoformat()}  {event.student_email}  "
            f"{event.category.value}  {event.status.value}"
        )
        print(f"    {event.detail.splitlines()[0][:120]}")
    print(f"\n{len(events)} event(s)")


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="WitnessBox: literary character tutor admin CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Try the content filter
  witnessbox classify "What is the derivative of x^2?" --mode strict

  # Check whether a student has hit a limit
  witnessbox check-usage ana@school.edu

  # Whitelist a class list
  witnessbox add-students roster.txt
""",
    )
    parser.add_argument("--db", help="SQLite database path (default: WITNESSBOX_DB_PATH)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    classify_parser = subparsers.add_parser("classify", help="Run the content filter")
    classify_parser.add_argument("text", help="Question to classify")
    classify_parser.add_argument("--mode", "-m", default="normal",
                                 choices=["normal", "strict"],
                                 help="Filter mode to apply")
    classify_parser.add_argument("--json", action="store_true", help="Print JSON")

    usage_parser = subparsers.add_parser("check-usage", help="Check a student's limits")
    usage_parser.add_argument("email", help="Student email")

    add_parser = subparsers.add_parser("add-students", help="Bulk-add students")
    add_parser.add_argument("file", help="Text file with 'Name (email)' entries or emails")

    subparsers.add_parser("init-db", help="Create the database schema")

    viol_parser = subparsers.add_parser("violations", help="List violation events")
    viol_parser.add_argument("--student", help="Filter by student email")
    viol_parser.add_argument("--category", choices=["non-english", "rate-limit", "auth"])

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    configure_logging("DEBUG" if args.verbose else "WARNING")

    commands = {
        "classify": cmd_classify,
        "check-usage": cmd_check_usage,
        "add-students": cmd_add_students,
        "init-db": cmd_init_db,
        "violations": cmd_violations,
    }

    handler = commands.get(args.command)
    if handler:
        handler(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
