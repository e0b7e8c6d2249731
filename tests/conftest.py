"""Shared fixtures for the calsync test suite."""

from __future__ import annotations

from datetime import datetime

import pytest

from calsync.config import Config, RemoteConfig, SourceConfig, SyncConfig
from calsync.models import CalendarEventRecord, EventTime, RemoteEvent
from calsync.remote_client import InMemoryCalendarClient
from calsync.timezone_utils import TimezoneResolver


SAMPLE_ICS = """\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Example//Feed//EN
BEGIN:VEVENT
UID:lecture-1@example.com
SUMMARY:Linear Algebra
DTSTART:20240115T090000Z
DTEND:20240115T103000Z
LOCATION:Room 101
STATUS:CONFIRMED
END:VEVENT
BEGIN:VEVENT
UID:lecture-2@example.com
SUMMARY:Calculus
DTSTART;TZID=Europe/Moscow:20240116T120000
DTEND;TZID=Europe/Moscow:20240116T133000
END:VEVENT
BEGIN:VEVENT
UID:holiday@example.com
SUMMARY:Holiday
DTSTART;VALUE=DATE:20240117
END:VEVENT
END:VCALENDAR
"""


def utc(*args) -> EventTime:
    """Shorthand for an absolute EventTime."""
    return EventTime.utc(datetime(*args))


def make_record(uid: str, summary: str = "Meeting", start=None, end=None, **kwargs) -> CalendarEventRecord:
    """Build a source record with UTC times given as tuples."""
    return CalendarEventRecord(
        uid=uid,
        summary=summary,
        start=utc(*start) if start else None,
        end=utc(*end) if end else None,
        **kwargs,
    )


def make_remote(
    uid: str,
    summary: str = "Meeting",
    start=None,
    end=None,
    remote_id: str = "",
    is_managed: bool = True,
    **kwargs,
) -> RemoteEvent:
    """Build a remote event with UTC times given as tuples."""
    return RemoteEvent(
        uid=uid,
        summary=summary,
        start=utc(*start) if start else None,
        end=utc(*end) if end else None,
        remote_id=remote_id or f"remote-{uid}",
        is_managed=is_managed,
        **kwargs,
    )


@pytest.fixture
def resolver() -> TimezoneResolver:
    return TimezoneResolver("Europe/Moscow")


@pytest.fixture
def memory_client(resolver) -> InMemoryCalendarClient:
    return InMemoryCalendarClient(resolver=resolver)


@pytest.fixture
def sample_ics() -> str:
    return SAMPLE_ICS


@pytest.fixture
def config() -> Config:
    return Config(
        source=SourceConfig(url="https://example.com/feed.ics"),
        remote=RemoteConfig(backend="memory"),
        sync=SyncConfig(default_timezone="Europe/Moscow", window_days=30),
    )
