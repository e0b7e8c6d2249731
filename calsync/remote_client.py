"""
Remote calendar client interface.

One abstract interface with interchangeable implementations; which one a run
uses is a configuration choice (see build_remote_client). Implementations
attach their own "managed by calsync" marker when they create an event and
report it back through RemoteEvent.is_managed.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Optional
import itertools
import logging

from .config import Config, ConfigError
from .models import CalendarEventRecord, RemoteEvent
from .timezone_utils import TimezoneResolver


logger = logging.getLogger(__name__)


def in_range(event: CalendarEventRecord, start: datetime, end: datetime, resolver: TimezoneResolver) -> bool:
    """
    True if the event overlaps the half-open range [start, end).

    An event without an end is a point in time. A series (RRULE) counts from
    its first start onwards since occurrences are not expanded. Events
    without a start are never in range.
    """
    event_start = resolver.to_absolute_or_none(event.start)
    if event_start is None:
        return False
    if event_start >= end:
        return False
    if event.recurrence_rule:
        return True
    event_end = resolver.to_absolute_or_none(event.end)
    if event_end is None or event_end <= event_start:
        return event_start >= start
    return event_end > start


class RemoteOperationFailure(Exception):
    """A create, update, delete or list call against the remote calendar failed."""

    def __init__(self, operation: str, message: str, remote_id: str = ""):
        super().__init__(f"{operation} failed{f' for {remote_id}' if remote_id else ''}: {message}")
        self.operation = operation
        self.remote_id = remote_id


class RemoteCalendarClient(ABC):
    """Operations the sync needs from a remote calendar."""

    @abstractmethod
    def list_events(self, start: datetime, end: datetime) -> list[RemoteEvent]:
        """
        List events overlapping a time range.

        Args:
            start: Start of range (timezone-aware)
            end: End of range (timezone-aware)

        Returns:
            Remote events, managed or not.
        """
        pass

    @abstractmethod
    def create_event(self, record: CalendarEventRecord) -> RemoteEvent:
        """Create an event and mark it as managed by this system."""
        pass

    @abstractmethod
    def update_event(self, event: RemoteEvent) -> bool:
        """Overwrite the remote event addressed by event.remote_id."""
        pass

    @abstractmethod
    def delete_event(self, remote_id: str) -> bool:
        """Delete the remote event with the given id."""
        pass


class InMemoryCalendarClient(RemoteCalendarClient):
    """
    Dict-backed remote calendar.

    Used for dry runs against a blank calendar and in tests. Version tokens
    are bumped on every write, like a server ETag would be.
    """

    def __init__(self, events: Optional[list[RemoteEvent]] = None, resolver: Optional[TimezoneResolver] = None):
        self.resolver = resolver or TimezoneResolver()
        self._events: dict[str, RemoteEvent] = {}
        self._ids = itertools.count(1)
        for event in events or []:
            if not event.remote_id:
                event = replace(event, remote_id=self._next_id())
            self._events[event.remote_id] = event

    def _next_id(self) -> str:
        return f"mem-{next(self._ids)}"

    def list_events(self, start: datetime, end: datetime) -> list[RemoteEvent]:
        return [event for event in self._events.values() if in_range(event, start, end, self.resolver)]

    def create_event(self, record: CalendarEventRecord) -> RemoteEvent:
        remote_id = self._next_id()
        created = RemoteEvent.from_record(record, remote_id=remote_id, remote_version_token="1", is_managed=True)
        self._events[remote_id] = created
        return created

    def update_event(self, event: RemoteEvent) -> bool:
        current = self._events.get(event.remote_id)
        if current is None:
            raise RemoteOperationFailure("update", "no such event", event.remote_id)
        version = int(current.remote_version_token or "0") + 1
        self._events[event.remote_id] = RemoteEvent.from_record(
            event,
            remote_id=event.remote_id,
            remote_version_token=str(version),
            is_managed=current.is_managed,
        )
        return True

    def delete_event(self, remote_id: str) -> bool:
        if self._events.pop(remote_id, None) is None:
            raise RemoteOperationFailure("delete", "no such event", remote_id)
        return True

    @property
    def events(self) -> list[RemoteEvent]:
        """All stored events."""
        return list(self._events.values())


def build_remote_client(config: Config, resolver: TimezoneResolver) -> RemoteCalendarClient:
    """
    Create the remote client selected by config.remote.backend.

    Args:
        config: Loaded configuration
        resolver: Resolver shared with the rest of the run

    Returns:
        A connected RemoteCalendarClient.
    """
    backend = config.remote.backend.lower()
    if backend == "memory":
        logger.info("Using in-memory remote calendar")
        return InMemoryCalendarClient(resolver=resolver)
    if backend == "caldav":
        from .caldav_client import CalDAVCalendarClient

        remote = config.remote
        client = CalDAVCalendarClient(
            url=remote.url,
            username=remote.username,
            password=remote.get_password(config.password_program),
            calendar_name=remote.calendar,
            resolver=resolver,
        )
        client.connect()
        return client

    raise ConfigError(f"Unknown remote backend: {config.remote.backend!r}")
