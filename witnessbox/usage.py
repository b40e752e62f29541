"""
Usage accounting for WitnessBox.

Tracks token and cost usage per student and across the whole class, and
enforces daily token and monthly cost ceilings before any model call.

Features:
- Calendar day and month windows in the deployment time zone
- Per-student and global ceilings, checked in a fixed order
- Exact decimal cost arithmetic
- Fail-closed verification: if usage cannot be read, the request is denied
"""

import logging
from datetime import datetime, tzinfo
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Callable, Optional

from witnessbox.config import COST_PRECISION, get_model, get_pricing, get_timezone
from witnessbox.models import UsageEntry
from witnessbox.schemas import LimitsInfo, UsageCheck, UsageWindow


logger = logging.getLogger("witnessbox.usage")

UNVERIFIED_REASON = "Unable to verify usage limits. Please try again."
INACTIVE_REASON = "Student not found or inactive"


class Window(str, Enum):
    """Usage aggregation windows."""
    DAY = "day"
    MONTH = "month"


def window_start(window: Window, now: datetime, tz: tzinfo) -> datetime:
    """Local midnight today, or local midnight on the 1st of the month."""
    local = now.astimezone(tz)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    if Window(window) == Window.MONTH:
        start = start.replace(day=1)
    return start


def calculate_cost(
    prompt_tokens: int,
    completion_tokens: int,
    model: Optional[str] = None,
) -> Decimal:
    """
    Cost of one completion from per-1K-token pricing.

    Unknown models are priced as the configured default model.
    """
    pricing = get_pricing()
    model = model or get_model()
    rates = pricing.get(model) or pricing.get(get_model()) or {
        "input": Decimal("0"), "output": Decimal("0"),
    }
    thousand = Decimal(1000)
    input_cost = Decimal(prompt_tokens) / thousand * rates["input"]
    output_cost = Decimal(completion_tokens) / thousand * rates["output"]
    return (input_cost + output_cost).quantize(COST_PRECISION, rounding=ROUND_HALF_UP)


def summarize(entries) -> UsageWindow:
    """Sum a collection of ledger entries."""
    total_tokens = 0
    total_cost = Decimal("0")
    for entry in entries:
        total_tokens += entry.tokens_used
        total_cost += Decimal(entry.cost)
    return UsageWindow(total_tokens=total_tokens, total_cost=total_cost)


class UsageAccountant:
    """
    Usage ledger and limit enforcement.

    Example:
        ```python
        accountant = UsageAccountant(store)

        check = accountant.check_limits("student@school.edu")
        if not check.can_proceed:
            return check.reason

        accountant.record_usage(
            student_email="student@school.edu",
            session_id=session.session_id,
            tokens_used=512,
            cost=Decimal("0.0042"),
        )
        ```
    """

    def __init__(
        self,
        store,
        clock: Optional[Callable[[], datetime]] = None,
        tz: Optional[tzinfo] = None,
    ):
        self.store = store
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._tz = tz

    @property
    def tz(self) -> tzinfo:
        return self._tz or get_timezone()

    # =========================================================================
    # Aggregation
    # =========================================================================

    def get_usage(self, window: Window, student_email: Optional[str] = None) -> UsageWindow:
        """
        Totals since the start of the current window.

        Args:
            window: Day or month.
            student_email: Restrict to one student; None for global usage.
        """
        now = self._clock()
        cutoff = window_start(window, now, self.tz)
        entries = self.store.list_usage_since(cutoff, student_email=student_email)
        return summarize(e for e in entries if e.timestamp < now)

    # =========================================================================
    # Limit checks
    # =========================================================================

    def check_limits(self, student_email: str) -> UsageCheck:
        """
        Check whether a student may make another model call.

        Ceilings are checked in order: student daily tokens, student
        monthly cost, global daily tokens, global monthly cost. Reaching a
        limit exactly already blocks.

        Never raises: any failure to read student, settings or usage data
        denies the request.
        """
        try:
            return self._check_limits(student_email)
        except Exception:
            logger.exception("Error checking usage limits for %s", student_email)
            return UsageCheck(can_proceed=False, reason=UNVERIFIED_REASON)

    def _check_limits(self, student_email: str) -> UsageCheck:
        student = self.store.get_student(student_email)
        if student is None or not student.is_active:
            return UsageCheck(can_proceed=False, reason=INACTIVE_REASON)

        settings = self.store.get_settings()

        daily = self.get_usage(Window.DAY, student_email)
        monthly = self.get_usage(Window.MONTH, student_email)
        global_daily = self.get_usage(Window.DAY)
        global_monthly = self.get_usage(Window.MONTH)

        info = LimitsInfo(
            daily_tokens=daily.total_tokens,
            monthly_tokens=monthly.total_tokens,
            daily_cost=daily.total_cost,
            monthly_cost=monthly.total_cost,
        )

        global_daily_limit = settings.global_daily_token_limit if settings else None
        global_monthly_limit = settings.global_monthly_cost_limit if settings else None

        checks = [
            (
                student.daily_token_limit,
                daily.total_tokens,
                f"Daily token limit reached ({student.daily_token_limit} tokens). "
                f"Resets at midnight.",
            ),
            (
                student.monthly_cost_limit,
                monthly.total_cost,
                f"Monthly cost limit reached (${student.monthly_cost_limit}). "
                f"Resets on the 1st of next month.",
            ),
            (
                global_daily_limit,
                global_daily.total_tokens,
                f"Global daily token limit reached ({global_daily_limit} tokens). "
                f"Resets at midnight.",
            ),
            (
                global_monthly_limit,
                global_monthly.total_cost,
                f"Global monthly cost limit reached (${global_monthly_limit}). "
                f"Resets on the 1st of next month.",
            ),
        ]

        for limit, used, reason in checks:
            if limit is None:
                continue
            if used >= Decimal(limit):
                logger.info("Usage denied for %s: %s", student_email, reason)
                return UsageCheck(can_proceed=False, reason=reason, limits_info=info)

        return UsageCheck(can_proceed=True, limits_info=info)

    # =========================================================================
    # Recording
    # =========================================================================

    def record_usage(
        self,
        student_email: str,
        session_id: str,
        tokens_used: int,
        cost: Decimal,
        student_name: Optional[str] = None,
    ) -> UsageEntry:
        """Append one ledger entry after a model call completes."""
        if tokens_used < 0:
            raise ValueError("tokens_used must be non-negative")
        cost = Decimal(cost)
        if cost < 0:
            raise ValueError("cost must be non-negative")

        entry = UsageEntry(
            student_email=student_email,
            session_id=session_id,
            tokens_used=tokens_used,
            cost=cost,
            student_name=student_name,
        )
        return self.store.add_usage(entry)

    # =========================================================================
    # Reports
    # =========================================================================

    def usage_summary(self, student_email: Optional[str] = None) -> dict:
        """
        Day and month totals for the admin dashboard.

        With a student email, returns that student's figures; otherwise the
        global figures plus a per-student breakdown.
        """
        if student_email:
            return {
                "student_email": student_email,
                "daily": self.get_usage(Window.DAY, student_email),
                "monthly": self.get_usage(Window.MONTH, student_email),
            }

        students = [
            {
                "email": s.email,
                "name": s.name,
                "daily": self.get_usage(Window.DAY, s.email),
                "monthly": self.get_usage(Window.MONTH, s.email),
            }
            for s in self.store.list_students()
        ]
        return {
            "global": {
                "daily": self.get_usage(Window.DAY),
                "monthly": self.get_usage(Window.MONTH),
            },
            "students": students,
        }


def check_usage_limits(store, student_email: str) -> UsageCheck:
    """Check limits for a student against the given store."""
    return UsageAccountant(store).check_limits(student_email)
