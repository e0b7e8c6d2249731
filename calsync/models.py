"""
Event records shared by the parser, the reconciliation engine and the clients.

Every timestamp carries an explicit TimeProvenance so that nothing downstream
has to guess whether a value is an absolute instant or a civil time that still
needs a zone. Records are frozen: the engine classifies them or builds new
ones, it never edits the inputs.
"""

from dataclasses import dataclass, field
from datetime import datetime, date
from enum import Enum
from typing import Optional, Union
import pytz


class TimeProvenance(Enum):
    """Where a timestamp's meaning comes from."""
    UTC = "utc"                      # Absolute instant (trailing 'Z' or tz-aware server value)
    DECLARED_ZONE = "declared_zone"  # Civil time with a TZID parameter
    UNSPECIFIED = "unspecified"      # Floating civil time


class EventStatus(Enum):
    """Status of an event."""
    TENTATIVE = "TENTATIVE"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"

    @classmethod
    def from_ical(cls, value: Optional[str]) -> 'EventStatus':
        """Map an iCalendar STATUS value; anything unknown is tentative."""
        normalized = (value or "").strip().upper()
        if normalized == "CONFIRMED":
            return cls.CONFIRMED
        if normalized == "CANCELLED":
            return cls.CANCELLED
        return cls.TENTATIVE


@dataclass(frozen=True)
class EventTime:
    """
    A timestamp plus its provenance.

    Civil values are naive datetimes (or dates for all-day events); absolute
    values are UTC-aware datetimes. Use TimezoneResolver.to_absolute() to
    turn any EventTime into an instant.
    """
    value: Union[datetime, date]
    provenance: TimeProvenance
    zone: str = ""

    @classmethod
    def utc(cls, value: datetime) -> 'EventTime':
        """Build an absolute EventTime from a naive-UTC or aware datetime."""
        if value.tzinfo is None:
            value = pytz.UTC.localize(value)
        else:
            value = value.astimezone(pytz.UTC)
        return cls(value=value, provenance=TimeProvenance.UTC)

    @classmethod
    def civil(cls, value: datetime, zone: str = "") -> 'EventTime':
        """Build a civil EventTime; a non-empty zone marks it as declared."""
        provenance = TimeProvenance.DECLARED_ZONE if zone else TimeProvenance.UNSPECIFIED
        return cls(value=value.replace(tzinfo=None), provenance=provenance, zone=zone)

    @classmethod
    def from_date(cls, value: date, zone: str = "") -> 'EventTime':
        """Build a day-granularity EventTime for all-day events."""
        if isinstance(value, datetime):
            value = value.date()
        provenance = TimeProvenance.DECLARED_ZONE if zone else TimeProvenance.UNSPECIFIED
        return cls(value=value, provenance=provenance, zone=zone)

    @property
    def is_date(self) -> bool:
        """True for day-granularity values."""
        return isinstance(self.value, date) and not isinstance(self.value, datetime)

    @property
    def is_absolute(self) -> bool:
        return self.provenance is TimeProvenance.UTC

    def __str__(self):
        if self.is_absolute:
            return self.value.strftime("%Y-%m-%dT%H:%M:%SZ")
        text = self.value.isoformat()
        return f"{text} [{self.zone}]" if self.zone else text


@dataclass(frozen=True)
class CalendarEventRecord:
    """
    One calendar entry as seen in the source feed.

    The uid is the matching key; blocks without one never become records.
    """
    uid: str
    summary: str = ""
    description: str = ""
    location: str = ""
    url: str = ""
    organizer: str = ""
    attendees: tuple[str, ...] = ()
    start: Optional[EventTime] = None
    end: Optional[EventTime] = None
    is_all_day: bool = False
    time_zone: str = ""
    recurrence_rule: str = ""
    status: EventStatus = EventStatus.TENTATIVE
    last_modified: Optional[EventTime] = None

    def __repr__(self):
        return f"{type(self).__name__}(uid={self.uid!r}, summary={self.summary!r}, start={self.start})"


@dataclass(frozen=True)
class RemoteEvent(CalendarEventRecord):
    """
    An event as stored in the remote calendar.

    remote_id and remote_version_token only address update/delete calls.
    is_managed comes from the marker the client attaches on creation; events
    without it belong to someone else and must never be changed.
    """
    remote_id: str = ""
    remote_version_token: str = field(default="", compare=False)
    is_managed: bool = False

    @classmethod
    def from_record(
        cls,
        record: CalendarEventRecord,
        remote_id: str = "",
        remote_version_token: str = "",
        is_managed: bool = False
    ) -> 'RemoteEvent':
        """
        Build a remote-side event carrying every field of a source record.

        Args:
            record: Source record providing the event content
            remote_id: Address of the remote object
            remote_version_token: Opaque version token reported by the remote
            is_managed: Whether this system owns the remote object

        Returns:
            A new RemoteEvent; the input record is left untouched.
        """
        return cls(
            uid=record.uid,
            summary=record.summary,
            description=record.description,
            location=record.location,
            url=record.url,
            organizer=record.organizer,
            attendees=tuple(record.attendees),
            start=record.start,
            end=record.end,
            is_all_day=record.is_all_day,
            time_zone=record.time_zone,
            recurrence_rule=record.recurrence_rule,
            status=record.status,
            last_modified=record.last_modified,
            remote_id=remote_id,
            remote_version_token=remote_version_token,
            is_managed=is_managed,
        )
