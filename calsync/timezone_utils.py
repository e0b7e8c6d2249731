"""
Timezone utilities for calsync.

TimezoneResolver is the single place that decides which absolute instant a
civil time means. Every comparison made by the reconciliation engine and
every time written to the remote calendar goes through it.
"""

from collections import Counter
from datetime import datetime, date
from typing import Mapping, Optional
import logging
import threading
import pytz

from .models import EventTime, TimeProvenance


logger = logging.getLogger(__name__)

# Default zone used when a feed declares nothing usable
DEFAULT_TIMEZONE = "Europe/Moscow"

# Common zone names seen in feeds, mapped to the tz database zone to use.
# Windows names show up in feeds exported from Exchange/Outlook.
ZONE_ALIASES: dict[str, str] = {
    "UTC": "UTC",
    "GMT": "GMT",
    "Europe/Moscow": "Europe/Moscow",
    "Europe/London": "Europe/London",
    "Europe/Berlin": "Europe/Berlin",
    "Europe/Paris": "Europe/Paris",
    "America/New_York": "America/New_York",
    "America/Los_Angeles": "America/Los_Angeles",
    "Asia/Tokyo": "Asia/Tokyo",
    "Australia/Sydney": "Australia/Sydney",
    "Russian Standard Time": "Europe/Moscow",
    "GMT Standard Time": "Europe/London",
    "W. Europe Standard Time": "Europe/Berlin",
    "Romance Standard Time": "Europe/Paris",
    "Eastern Standard Time": "America/New_York",
    "Pacific Standard Time": "America/Los_Angeles",
    "Tokyo Standard Time": "Asia/Tokyo",
    "AUS Eastern Standard Time": "Australia/Sydney",
}

# Fallback counter names
UNMAPPED_ZONE = "unmapped_zone"
ZONE_LOOKUP_FAILED = "zone_lookup_failed"
DEFAULT_ZONE_FAILED = "default_zone_failed"
OUT_OF_RANGE = "out_of_range"


class TimezoneResolver:
    """
    Resolves civil times to UTC instants with a fixed fallback chain.

    Resolution order for a civil time:
        1. the declared zone name, looked up in the alias table
        2. the configured default zone
        3. the running system's local zone

    Every step down the chain is logged and counted in ``fallbacks`` so that
    silent misconversions show up in tests and run reports.
    """

    def __init__(
        self,
        default_timezone: str = DEFAULT_TIMEZONE,
        aliases: Optional[Mapping[str, str]] = None
    ):
        """
        Initialize the resolver.

        Args:
            default_timezone: Zone used when the declared one is unusable
            aliases: Extra alias -> zone entries merged over ZONE_ALIASES
        """
        self.default_timezone = default_timezone
        self._aliases = dict(ZONE_ALIASES)
        if aliases:
            self._aliases.update(aliases)
        self._aliases_folded = {name.casefold(): zone for name, zone in self._aliases.items()}
        self._fallbacks: Counter = Counter()
        self._lock = threading.Lock()

    @property
    def fallbacks(self) -> dict[str, int]:
        """Snapshot of how often each fallback step was taken."""
        with self._lock:
            return dict(self._fallbacks)

    def reset_counters(self) -> None:
        with self._lock:
            self._fallbacks.clear()

    def _count(self, reason: str) -> None:
        with self._lock:
            self._fallbacks[reason] += 1

    def lookup_alias(self, zone_name: str) -> Optional[str]:
        """Return the tz database name for a declared zone, or None if unmapped."""
        name = (zone_name or "").strip().strip('"')
        if not name:
            return None
        return self._aliases.get(name) or self._aliases_folded.get(name.casefold())

    def resolve_zone(self, zone_name: str = ""):
        """
        Resolve a declared zone name to a pytz timezone.

        Args:
            zone_name: Declared zone name, may be empty

        Returns:
            A pytz timezone, or None when the caller should fall back to the
            system local zone.
        """
        if zone_name:
            mapped = self.lookup_alias(zone_name)
            if mapped is None:
                self._count(UNMAPPED_ZONE)
                logger.warning("Unmapped timezone %r, using default %s", zone_name, self.default_timezone)
            else:
                try:
                    return pytz.timezone(mapped)
                except pytz.UnknownTimeZoneError:
                    self._count(ZONE_LOOKUP_FAILED)
                    logger.warning(
                        "Timezone %r maps to unknown zone %r, using default %s",
                        zone_name, mapped, self.default_timezone
                    )

        try:
            return pytz.timezone(self.default_timezone)
        except pytz.UnknownTimeZoneError:
            self._count(DEFAULT_ZONE_FAILED)
            logger.warning("Default timezone %r is unknown, using system local time", self.default_timezone)
            return None

    def to_absolute(self, event_time: EventTime, declared_zone: str = "") -> datetime:
        """
        Convert an EventTime to a UTC-aware datetime.

        Args:
            event_time: The timestamp to convert
            declared_zone: Zone name declared by the source; defaults to the
                zone stored on the EventTime

        Returns:
            The absolute instant in UTC. Absolute inputs come back unchanged.
        """
        if event_time.provenance is TimeProvenance.UTC:
            return event_time.value

        value = event_time.value
        if not isinstance(value, datetime):
            # All-day values mean civil midnight
            value = datetime.combine(value, datetime.min.time())
        value = value.replace(tzinfo=None)

        zone = self.resolve_zone(declared_zone or event_time.zone)
        try:
            if zone is None:
                # Naive astimezone() interprets the value in the system local zone
                return value.astimezone(pytz.UTC)

            # localize() applies the offset in effect on that date (DST aware)
            return zone.localize(value).astimezone(pytz.UTC)
        except (OverflowError, OSError):
            self._count(OUT_OF_RANGE)
            clamped = datetime.min if value.year < 5000 else datetime.max
            logger.warning("Time %s cannot be expressed in UTC, clamped to %s", value, clamped)
            return pytz.UTC.localize(clamped)

    def to_absolute_or_none(self, event_time: Optional[EventTime]) -> Optional[datetime]:
        if event_time is None:
            return None
        return self.to_absolute(event_time)


def to_utc_datetime(dt: datetime, timezone_name: str = DEFAULT_TIMEZONE) -> datetime:
    """
    Convert a datetime to UTC.

    Args:
        dt: A datetime object; naive values are taken as civil time in
            timezone_name.
        timezone_name: Zone for naive values.

    Returns:
        A timezone-aware datetime in UTC.
    """
    if dt.tzinfo is None:
        local_dt = pytz.timezone(timezone_name).localize(dt)
        return local_dt.astimezone(pytz.UTC)
    return dt.astimezone(pytz.UTC)


def start_of_day_utc(day: date, timezone_name: str = DEFAULT_TIMEZONE) -> datetime:
    """Midnight of the given day in timezone_name, as a UTC datetime."""
    return to_utc_datetime(datetime.combine(day, datetime.min.time()), timezone_name)
