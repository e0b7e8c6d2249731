"""
CalDAV implementation of the remote calendar client.

Events created by calsync carry an X-CALSYNC-MANAGED:TRUE property; that
marker is what RemoteEvent.is_managed reports. Events without it are never
updated or deleted by the sync.
"""

import caldav
from caldav.elements import dav
from datetime import datetime, date
from typing import Optional
import logging
import pytz
from icalendar import Calendar as ICalendar, Event as ICalEvent, vCalAddress, vRecur

from .ics_parser import extract_address
from .models import CalendarEventRecord, EventStatus, EventTime, RemoteEvent
from .remote_client import RemoteCalendarClient, RemoteOperationFailure
from .timezone_utils import TimezoneResolver


logger = logging.getLogger(__name__)

PRODID = '-//calsync//calsync//EN'
MANAGED_PROPERTY = 'X-CALSYNC-MANAGED'


def _event_time_from_ical(prop) -> Optional[EventTime]:
    """Convert an icalendar date/date-time property to an EventTime."""
    if prop is None:
        return None
    value = prop.dt
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return EventTime.utc(value)
        return EventTime.civil(value, str(prop.params.get('TZID', '')))
    if isinstance(value, date):
        return EventTime.from_date(value)
    return None


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def remote_event_from_ical(ical_text: str, remote_id: str = "", version_token: str = "") -> Optional[RemoteEvent]:
    """
    Build a RemoteEvent from the VCALENDAR text of one CalDAV object.

    Args:
        ical_text: Raw VCALENDAR text
        remote_id: Href of the object
        version_token: ETag of the object, if known

    Returns:
        The master VEVENT as a RemoteEvent, or None if there is no VEVENT.
    """
    ical = ICalendar.from_ical(ical_text)
    events = [c for c in ical.walk() if c.name == 'VEVENT']
    if not events:
        return None
    # The master event carries no RECURRENCE-ID
    component = next((c for c in events if c.get('RECURRENCE-ID') is None), events[0])

    dtstart = component.get('DTSTART')
    start = _event_time_from_ical(dtstart)
    rrule = component.get('RRULE')
    return RemoteEvent(
        uid=str(component.get('UID', '')),
        summary=str(component.get('SUMMARY', '')),
        description=str(component.get('DESCRIPTION', '')),
        location=str(component.get('LOCATION', '')),
        url=str(component.get('URL', '')),
        organizer=extract_address(str(component.get('ORGANIZER', ''))),
        attendees=tuple(extract_address(str(a)) for a in _as_list(component.get('ATTENDEE'))),
        start=start,
        end=_event_time_from_ical(component.get('DTEND')),
        is_all_day=bool(start and start.is_date),
        time_zone=str(dtstart.params.get('TZID', '')) if dtstart is not None else '',
        recurrence_rule=rrule.to_ical().decode('utf-8') if rrule else '',
        status=EventStatus.from_ical(str(component.get('STATUS', ''))),
        last_modified=_event_time_from_ical(component.get('LAST-MODIFIED')),
        remote_id=remote_id,
        remote_version_token=version_token,
        is_managed=str(component.get(MANAGED_PROPERTY, '')).strip().upper() == 'TRUE',
    )


def build_vcalendar(record: CalendarEventRecord, resolver: TimezoneResolver) -> str:
    """
    Serialize a record as a VCALENDAR carrying the managed marker.

    Timed values are written as UTC instants resolved by the resolver;
    all-day values stay dates. The recurrence rule is copied verbatim.
    """
    event = ICalEvent()
    event.add('uid', record.uid)
    event.add('dtstamp', datetime.now(pytz.UTC))
    event.add('summary', record.summary)
    if record.description:
        event.add('description', record.description)
    if record.location:
        event.add('location', record.location)
    if record.url:
        event.add('url', record.url)
    if record.start is not None:
        event.add('dtstart', _ical_time(record.start, resolver))
    if record.end is not None:
        event.add('dtend', _ical_time(record.end, resolver))
    if record.organizer:
        event.add('organizer', vCalAddress(f'mailto:{record.organizer}'))
    for attendee in record.attendees:
        event.add('attendee', vCalAddress(f'mailto:{attendee}'))
    event.add('status', record.status.value)
    if record.recurrence_rule:
        try:
            rrule = vRecur.from_ical(record.recurrence_rule)
        except ValueError:
            rrule = None
        if rrule:
            event.add('rrule', rrule)
        else:
            logger.warning("Event %s has an unreadable RRULE %r; written without it", record.uid, record.recurrence_rule)
    event.add(MANAGED_PROPERTY, 'TRUE')

    ical = ICalendar()
    ical.add('prodid', PRODID)
    ical.add('version', '2.0')
    ical.add_component(event)
    return ical.to_ical().decode('utf-8')


def _ical_time(event_time: EventTime, resolver: TimezoneResolver):
    if event_time.is_date:
        return event_time.value
    return resolver.to_absolute(event_time)


class CalDAVCalendarClient(RemoteCalendarClient):
    """Client for one calendar on a CalDAV server."""

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        calendar_name: str = "",
        resolver: Optional[TimezoneResolver] = None
    ):
        """
        Initialize the CalDAV client.

        Args:
            url: CalDAV endpoint (e.g. https://nextcloud.example.com/remote.php/dav)
            username: Account user name
            password: Account password/app token
            calendar_name: Display name of the target calendar; first one if empty
            resolver: Resolver used to turn civil times into instants
        """
        self.url = url.rstrip('/')
        self.username = username
        self.password = password
        self.calendar_name = calendar_name
        self.resolver = resolver or TimezoneResolver()

        self._client: Optional[caldav.DAVClient] = None
        self._calendar: Optional[caldav.Calendar] = None

    def connect(self) -> None:
        """
        Connect and select the target calendar.

        Raises:
            RemoteOperationFailure: If the server is unreachable or the
                calendar does not exist.
        """
        try:
            self._client = caldav.DAVClient(
                url=self.url,
                username=self.username,
                password=self.password
            )
            calendars = self._client.principal().calendars()
        except Exception as e:
            raise RemoteOperationFailure("connect", str(e)) from e

        for cal in calendars:
            if not self.calendar_name or cal.name == self.calendar_name:
                self._calendar = cal
                logger.info("Using CalDAV calendar %r at %s", cal.name, cal.url)
                return

        names = ", ".join(repr(cal.name) for cal in calendars)
        raise RemoteOperationFailure("connect", f"calendar {self.calendar_name!r} not found (have: {names})")

    def _require_calendar(self) -> caldav.Calendar:
        if self._calendar is None:
            self.connect()
        return self._calendar

    def list_events(self, start: datetime, end: datetime) -> list[RemoteEvent]:
        calendar = self._require_calendar()
        if start.tzinfo is None:
            start = pytz.UTC.localize(start)
        if end.tzinfo is None:
            end = pytz.UTC.localize(end)

        try:
            objects = calendar.search(
                start=start,
                end=end,
                event=True,
                expand=False  # Recurrence stays opaque
            )
        except Exception as e:
            raise RemoteOperationFailure("list", str(e)) from e

        events = []
        for obj in objects:
            etag = (getattr(obj, 'props', None) or {}).get(dav.GetEtag.tag, '')
            try:
                event = remote_event_from_ical(obj.data, remote_id=str(obj.url), version_token=str(etag or ''))
            except ValueError as e:
                logger.warning("Skipping unreadable CalDAV object %s: %s", obj.url, e)
                continue
            if event is not None:
                events.append(event)

        logger.info("Listed %d remote events (%d managed)", len(events), sum(e.is_managed for e in events))
        return events

    def create_event(self, record: CalendarEventRecord) -> RemoteEvent:
        calendar = self._require_calendar()
        try:
            obj = calendar.save_event(build_vcalendar(record, self.resolver))
        except Exception as e:
            raise RemoteOperationFailure("create", str(e), record.uid) from e
        return RemoteEvent.from_record(record, remote_id=str(obj.url), is_managed=True)

    def update_event(self, event: RemoteEvent) -> bool:
        calendar = self._require_calendar()
        try:
            obj = caldav.Event(
                client=self._client,
                url=event.remote_id,
                data=build_vcalendar(event, self.resolver),
                parent=calendar
            )
            obj.save()
        except Exception as e:
            raise RemoteOperationFailure("update", str(e), event.remote_id) from e
        return True

    def delete_event(self, remote_id: str) -> bool:
        calendar = self._require_calendar()
        try:
            caldav.Event(client=self._client, url=remote_id, parent=calendar).delete()
        except Exception as e:
            raise RemoteOperationFailure("delete", str(e), remote_id) from e
        return True
