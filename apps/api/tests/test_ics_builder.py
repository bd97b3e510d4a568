"""Tests for the iCalendar builder."""

from datetime import datetime, timedelta, timezone

import pytest

from rescheduler.db.enums import IcsMethod
from rescheduler.services.ics_builder import (
    Attendee,
    build_ics,
    escape_text,
    to_ics_date,
)


START = datetime(2026, 1, 5, 14, 0, tzinfo=timezone.utc)
STAMP = datetime(2026, 1, 1, 9, 30, 15, 123456, tzinfo=timezone.utc)


def _build(**overrides) -> str:
    kwargs = dict(
        uid="abc@rescheduler",
        method=IcsMethod.REQUEST,
        sequence=4,
        start_utc=START,
        end_utc=START + timedelta(hours=1),
        summary="Rescheduled: Practice Session with Dana Host",
        organizer=Attendee("notifications@practice.test", "Practice Hub"),
        attendee=Attendee("guest@practice.test", "Gil Guest"),
        description="See you then",
        dtstamp=STAMP,
    )
    kwargs.update(overrides)
    return build_ics(**kwargs)


def test_date_format_is_utc_basic_form():
    assert to_ics_date(START) == "20260105T140000Z"
    assert to_ics_date(STAMP) == "20260101T093015Z"


def test_date_format_converts_offsets_to_utc():
    local = datetime(2026, 1, 5, 9, 0, tzinfo=timezone(timedelta(hours=-5)))
    assert to_ics_date(local) == "20260105T140000Z"


def test_escape_text():
    assert escape_text("a,b;c\\d\ne") == r"a\,b\;c\\d\ne"
    assert escape_text("line1\r\nline2") == r"line1\nline2"


def test_request_artifact_fields():
    ics = _build()
    lines = ics.split("\r\n")

    assert lines[0] == "BEGIN:VCALENDAR"
    assert "METHOD:REQUEST" in lines
    assert "UID:abc@rescheduler" in lines
    assert "SEQUENCE:4" in lines
    assert "DTSTART:20260105T140000Z" in lines
    assert "DTEND:20260105T150000Z" in lines
    assert "DTSTAMP:20260101T093015Z" in lines
    assert "STATUS:CONFIRMED" in lines
    assert "ATTENDEE;CN=Gil Guest:mailto:guest@practice.test" in lines
    assert "ORGANIZER;CN=Practice Hub:mailto:notifications@practice.test" in lines
    assert ics.endswith("END:VCALENDAR\r\n")


def test_cancel_artifact_status():
    ics = _build(method=IcsMethod.CANCEL)
    assert "METHOD:CANCEL\r\n" in ics
    assert "STATUS:CANCELLED\r\n" in ics


def test_summary_is_escaped():
    ics = _build(summary="Lunch, then; more")
    assert r"SUMMARY:Lunch\, then\; more" + "\r\n" in ics


def test_cn_with_separator_is_quoted():
    ics = _build(attendee=Attendee("g@x.test", "Guest, Gil"))
    assert 'ATTENDEE;CN="Guest, Gil":mailto:g@x.test' in ics


def test_same_inputs_same_output():
    assert _build() == _build()


def test_negative_sequence_is_rejected():
    with pytest.raises(ValueError):
        _build(sequence=-1)
