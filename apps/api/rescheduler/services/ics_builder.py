"""iCalendar (RFC 5545) builder for session invites.

Pure: the same inputs always yield the same text, except DTSTAMP, which is
the generation time unless passed in explicitly. SEQUENCE is emitted
verbatim; incrementing it is the caller's job.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import NamedTuple

from rescheduler.db.enums import IcsMethod


PRODID = "-//Practice Hub//Reschedule//EN"
DEFAULT_LOCATION = "Online"
ICS_LINE_BREAK = "\r\n"


class Attendee(NamedTuple):
    email: str
    name: str | None = None


def to_ics_date(value: datetime) -> str:
    """Format as UTC basic form, e.g. 20260105T140000Z (no fractional seconds)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def escape_text(value: str) -> str:
    """Escape a TEXT value (backslash first, then newline, semicolon, comma)."""
    return (
        value.replace("\\", "\\\\")
        .replace("\r\n", "\n")
        .replace("\n", "\\n")
        .replace(";", "\\;")
        .replace(",", "\\,")
    )


def _param_value(value: str) -> str:
    # Parameter values may not contain DQUOTE; quote when they contain : ; ,
    value = value.replace('"', "'")
    if any(ch in value for ch in ":;,"):
        return f'"{value}"'
    return value


def _cal_address(prop: str, person: Attendee) -> str:
    cn = _param_value(person.name or person.email)
    return f"{prop};CN={cn}:mailto:{person.email}"


def build_ics(
    *,
    uid: str,
    method: IcsMethod,
    sequence: int,
    start_utc: datetime,
    end_utc: datetime,
    summary: str,
    organizer: Attendee,
    attendee: Attendee,
    description: str,
    location: str = DEFAULT_LOCATION,
    dtstamp: datetime | None = None,
) -> str:
    """Build a single-VEVENT VCALENDAR for one attendee."""
    method = IcsMethod(method)
    if sequence < 0:
        raise ValueError("SEQUENCE must be non-negative")
    stamp = dtstamp or datetime.now(timezone.utc)
    status = "CANCELLED" if method == IcsMethod.CANCEL else "CONFIRMED"

    lines = [
        "BEGIN:VCALENDAR",
        f"PRODID:{PRODID}",
        "VERSION:2.0",
        f"METHOD:{method.value}",
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"SEQUENCE:{sequence}",
        f"DTSTAMP:{to_ics_date(stamp)}",
        f"DTSTART:{to_ics_date(start_utc)}",
        f"DTEND:{to_ics_date(end_utc)}",
        _cal_address("ORGANIZER", organizer),
        _cal_address("ATTENDEE", attendee),
        f"SUMMARY:{escape_text(summary)}",
        f"DESCRIPTION:{escape_text(description)}",
        f"LOCATION:{escape_text(location)}",
        f"STATUS:{status}",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return ICS_LINE_BREAK.join(lines) + ICS_LINE_BREAK
