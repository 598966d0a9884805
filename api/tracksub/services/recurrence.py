"""
Billing-cycle date arithmetic.

Pure functions, no I/O. Month arithmetic clamps to the last day of the target
month (Jan 31 + 1 month = Feb 29 in a leap year), and series are always
computed from their anchor date so the clamping never drifts the day-of-month.
"""
import math
from calendar import monthrange
from datetime import date, datetime, timedelta, timezone

from tracksub.services.errors import InvalidCycle

CYCLE_MONTHS: dict[str, int] = {
    "monthly": 1,
    "yearly": 12,
}

# Shortest possible cycle, used to bound roll_forward
MIN_CYCLE_DAYS = 28


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _cycle_months(cycle: str) -> int:
    try:
        return CYCLE_MONTHS[cycle]
    except (KeyError, TypeError):
        raise InvalidCycle(cycle) from None


def _add_months(d: date, months: int) -> date:
    total = d.month - 1 + months
    year = d.year + total // 12
    month = total % 12 + 1
    _, last_day = monthrange(year, month)
    return date(year, month, min(d.day, last_day))


def to_utc_date(value: date | datetime) -> date:
    """Calendar date of `value` in UTC. Naive datetimes are taken as UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


# ─── Public API ──────────────────────────────────────────────────────────────

def add_cycle(d: date, cycle: str) -> date:
    """`d` plus one billing cycle."""
    return _add_months(d, _cycle_months(cycle))


def roll_forward(start_date: date, cycle: str, as_of: date) -> date:
    """First charge date in the series starting at `start_date` that is after `as_of`."""
    months = _cycle_months(cycle)
    step = 0
    candidate = start_date
    while candidate <= as_of:
        step += 1
        candidate = _add_months(start_date, step * months)
    return candidate


def max_roll_steps(start_date: date, as_of: date) -> int:
    """Upper bound on the loop iterations roll_forward needs."""
    return math.ceil(max(0, days_between(start_date, as_of)) / MIN_CYCLE_DAYS) + 1


def days_between(a: date | datetime, b: date | datetime) -> int:
    """Whole calendar days from `a` to `b` (negative if `b` is earlier)."""
    return (to_utc_date(b) - to_utc_date(a)).days


def utc_today(now: datetime | None = None) -> date:
    return to_utc_date(now or datetime.now(timezone.utc))


def month_key(moment: date | datetime) -> str:
    """`YYYY-MM` bucket used by the monthly sync quota."""
    d = to_utc_date(moment)
    return f"{d.year:04d}-{d.month:02d}"


def reminder_target(today: date, lead_days: int | None, default: int = 7) -> date:
    """Charge date that a reminder sent `today` is for."""
    return today + timedelta(days=lead_days or default)
