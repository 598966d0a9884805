"""
iCalendar (RFC 5545) export of upcoming subscription charges.

One all-day VEVENT per active subscription, starting on its next payment date
and repeating with the billing cycle.
"""
import secrets
from collections.abc import Iterable
from datetime import date, datetime, timezone

from tracksub.core.config import settings
from tracksub.models.subscription import Subscription
from tracksub.services.errors import InvalidCycle

_RRULE_FREQ = {
    "monthly": "MONTHLY",
    "yearly": "YEARLY",
}


def escape_text(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace(",", "\\,")
        .replace(";", "\\;")
    )


def fold_line(line: str, limit: int = 75) -> str:
    """Split a content line into CRLF + space continuations of at most `limit` octets."""
    parts: list[str] = []
    current, size = "", 0
    for ch in line:
        width = len(ch.encode("utf-8"))
        if size + width > limit:
            parts.append(current)
            current, size = " ", 1
        current += ch
        size += width
    parts.append(current)
    return "\r\n".join(parts)


def _ics_date(d: date) -> str:
    return d.strftime("%Y%m%d")


def new_calendar_token() -> str:
    return secrets.token_hex(24)


def calendar_url(token: str) -> str:
    return f"{settings.app_url.rstrip('/')}/api/v1/calendar/ics/{token}"


def build_ics(user_id, subscriptions: Iterable[Subscription], now: datetime | None = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Tracksub//Calendar//EN",
        "CALSCALE:GREGORIAN",
    ]
    for sub in subscriptions:
        if sub.status != "active":
            continue
        freq = _RRULE_FREQ.get(sub.billing_cycle)
        if freq is None:
            raise InvalidCycle(sub.billing_cycle)
        lines += [
            "BEGIN:VEVENT",
            f"UID:sub-{sub.id}-{user_id}@tracksub",
            f"DTSTAMP:{stamp}",
            f"DTSTART;VALUE=DATE:{_ics_date(sub.next_payment_date)}",
            f"SUMMARY:{escape_text(sub.name)}",
            f"DESCRIPTION:{escape_text(f'Subscription charge {sub.amount:.2f} ({sub.billing_cycle})')}",
            f"RRULE:FREQ={freq}",
            "END:VEVENT",
        ]
    lines.append("END:VCALENDAR")
    return "\r\n".join(fold_line(line) for line in lines) + "\r\n"
