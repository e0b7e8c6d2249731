"""
Parser for ICS (RFC 5545) calendar text.

Turns the raw text of a read-only feed into CalendarEventRecord objects.
The parser is lenient: malformed blocks yield fewer events
rather than failing the whole feed. The only hard failure is an empty input.

Times are tagged, never converted: a TZID is recorded on the EventTime and
left for TimezoneResolver to interpret.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Union
import logging
import re

from .models import CalendarEventRecord, EventStatus, EventTime


logger = logging.getLogger(__name__)

DATE_RE = re.compile(r"^\d{8}$")
DATETIME_RE = re.compile(r"^(\d{8}T\d{6})(Z?)$", re.IGNORECASE)
MAILTO_RE = re.compile(r"MAILTO:([^;]*)", re.IGNORECASE)
LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")

# Order matters: '\\n' must be handled before the escaped backslash
TEXT_ESCAPES = (
    ("\\n", "\n"),
    ("\\N", "\n"),
    ("\\r", "\r"),
    ("\\t", "\t"),
    ("\\\\", "\\"),
    ("\\;", ";"),
    ("\\,", ","),
)


class FormatError(ValueError):
    """Raised when the calendar text is missing or blank."""


class IcsProperty(Enum):
    """Event properties understood by the parser."""
    UID = "UID"
    SUMMARY = "SUMMARY"
    DESCRIPTION = "DESCRIPTION"
    LOCATION = "LOCATION"
    URL = "URL"
    ORGANIZER = "ORGANIZER"
    ATTENDEE = "ATTENDEE"
    DTSTART = "DTSTART"
    DTEND = "DTEND"
    LAST_MODIFIED = "LAST-MODIFIED"
    STATUS = "STATUS"
    RRULE = "RRULE"

    @classmethod
    def lookup(cls, name: str) -> Optional['IcsProperty']:
        """Return the property for a (case-insensitive) name, or None if unknown."""
        try:
            return cls(name.strip().upper())
        except ValueError:
            return None


@dataclass
class ParseStats:
    """Counters collected while parsing one document."""
    blocks: int = 0
    events: int = 0
    skipped_missing_uid: int = 0
    unterminated_blocks: int = 0
    invalid_values: int = 0


@dataclass
class _EventDraft:
    """Mutable accumulator for one VEVENT block."""
    uid: str = ""
    summary: str = ""
    description: str = ""
    location: str = ""
    url: str = ""
    organizer: str = ""
    attendees: list[str] = field(default_factory=list)
    start: Optional[EventTime] = None
    end: Optional[EventTime] = None
    is_all_day: bool = False
    time_zone: str = ""
    recurrence_rule: str = ""
    status: EventStatus = EventStatus.TENTATIVE
    last_modified: Optional[EventTime] = None

    def freeze(self) -> CalendarEventRecord:
        return CalendarEventRecord(
            uid=self.uid,
            summary=self.summary,
            description=self.description,
            location=self.location,
            url=self.url,
            organizer=self.organizer,
            attendees=tuple(self.attendees),
            start=self.start,
            end=self.end,
            is_all_day=self.is_all_day,
            time_zone=self.time_zone,
            recurrence_rule=self.recurrence_rule,
            status=self.status,
            last_modified=self.last_modified,
        )


def unfold_lines(text: str) -> list[str]:
    """
    Split text into logical lines, undoing RFC 5545 line folding.

    A physical line starting with one space or tab continues the previous
    line; that single character is removed and the rest appended as is.
    Logical lines are stripped and blank ones dropped.
    """
    logical: list[str] = []
    for raw in LINE_BREAK_RE.split(text):
        if raw[:1] in (" ", "\t") and logical:
            logical[-1] += raw[1:]
        else:
            logical.append(raw)
    return [line.strip() for line in logical if line.strip()]


def unescape_text(value: str) -> str:
    """Undo iCalendar TEXT escaping."""
    for escaped, plain in TEXT_ESCAPES:
        value = value.replace(escaped, plain)
    return value


def extract_address(value: str) -> str:
    """Return the address after a MAILTO: marker, or the raw value without one."""
    match = MAILTO_RE.search(value)
    return match.group(1) if match else value


def parse_parameters(param_text: str) -> dict[str, str]:
    """
    Parse a ';'-separated parameter string into an upper-cased-key dict.

    Surrounding double quotes are removed from values.
    """
    params: dict[str, str] = {}
    if not param_text:
        return params
    for part in param_text.split(";"):
        key, sep, value = part.partition("=")
        if not sep:
            continue
        params[key.strip().upper()] = value.strip().strip('"')
    return params


class IcsParser:
    """
    Parser turning ICS text into CalendarEventRecord objects.

    The parser holds no per-document state, so one instance can serve any
    number of concurrent parse() calls.
    """

    def __init__(self):
        self._handlers = self._build_handlers()
        missing = set(IcsProperty) - set(self._handlers)
        if missing:
            raise TypeError(f"no handler for {missing}")

    def _build_handlers(self) -> dict[IcsProperty, Callable[[_EventDraft, IcsProperty, str, dict, ParseStats], None]]:
        return {
            IcsProperty.UID: self._handle_uid,
            IcsProperty.SUMMARY: self._handle_text,
            IcsProperty.DESCRIPTION: self._handle_text,
            IcsProperty.LOCATION: self._handle_text,
            IcsProperty.URL: self._handle_url,
            IcsProperty.ORGANIZER: self._handle_organizer,
            IcsProperty.ATTENDEE: self._handle_attendee,
            IcsProperty.DTSTART: self._handle_dtstart,
            IcsProperty.DTEND: self._handle_dtend,
            IcsProperty.LAST_MODIFIED: self._handle_last_modified,
            IcsProperty.STATUS: self._handle_status,
            IcsProperty.RRULE: self._handle_rrule,
        }

    def parse(self, text: Union[str, bytes, None]) -> list[CalendarEventRecord]:
        """
        Parse calendar text into event records.

        Args:
            text: Raw VCALENDAR text

        Returns:
            Records in document order. Blocks without a UID are left out.

        Raises:
            FormatError: If text is None, empty or whitespace only.
        """
        records, _ = self.parse_with_stats(text)
        return records

    def parse_with_stats(self, text: Union[str, bytes, None]) -> tuple[list[CalendarEventRecord], ParseStats]:
        """Like parse(), also returning the counters collected on the way."""
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        if text is None or not text.strip():
            raise FormatError("Calendar text is empty")

        stats = ParseStats()
        records: list[CalendarEventRecord] = []
        for block in self._extract_blocks(unfold_lines(text), stats):
            stats.blocks += 1
            record = self._parse_block(block, stats)
            if record is None:
                stats.skipped_missing_uid += 1
                continue
            records.append(record)

        stats.events = len(records)
        logger.debug(
            "Parsed %d events from %d blocks (%d without UID, %d unterminated, %d invalid values)",
            stats.events, stats.blocks, stats.skipped_missing_uid,
            stats.unterminated_blocks, stats.invalid_values
        )
        return records, stats

    def _extract_blocks(self, lines: list[str], stats: ParseStats) -> list[list[str]]:
        """
        Collect the property lines of every complete VEVENT.

        Lines of nested components (VALARM and friends) are left out.
        """
        blocks: list[list[str]] = []
        current: Optional[list[str]] = None
        depth = 0

        for line in lines:
            upper = line.upper()
            if upper == "BEGIN:VEVENT":
                if current is not None:
                    stats.unterminated_blocks += 1
                    logger.debug("VEVENT without END:VEVENT abandoned")
                current = []
                depth = 0
            elif current is None:
                continue
            elif upper == "END:VEVENT":
                blocks.append(current)
                current = None
            elif upper.startswith("BEGIN:"):
                depth += 1
            elif upper.startswith("END:"):
                depth = max(depth - 1, 0)
            elif depth == 0:
                current.append(line)

        if current is not None:
            stats.unterminated_blocks += 1
            logger.debug("VEVENT without END:VEVENT at end of input ignored")
        return blocks

    def _parse_block(self, lines: list[str], stats: ParseStats) -> Optional[CalendarEventRecord]:
        draft = _EventDraft()
        for line in lines:
            name_part, sep, value = line.partition(":")
            if not sep:
                continue
            name, _, param_text = name_part.partition(";")
            prop = IcsProperty.lookup(name)
            if prop is None:
                continue
            handler = self._handlers[prop]
            handler(draft, prop, value, parse_parameters(param_text), stats)

        if not draft.uid:
            logger.debug("Dropping VEVENT without UID (summary=%r)", draft.summary)
            return None

        self._check_time_order(draft, stats)
        return draft.freeze()

    @staticmethod
    def _check_time_order(draft: _EventDraft, stats: ParseStats) -> None:
        """Drop an end that precedes the start when both are directly comparable."""
        start, end = draft.start, draft.end
        if start is None or end is None:
            return
        if start.provenance is not end.provenance or start.zone != end.zone or start.is_date != end.is_date:
            return
        if end.value < start.value:
            stats.invalid_values += 1
            logger.warning("Event %s ends (%s) before it starts (%s); end ignored", draft.uid, end, start)
            draft.end = None

    # ==================== Property handlers ====================

    @staticmethod
    def _handle_uid(draft: _EventDraft, prop: IcsProperty, value: str, params: dict, stats: ParseStats) -> None:
        draft.uid = value.strip()

    @staticmethod
    def _handle_text(draft: _EventDraft, prop: IcsProperty, value: str, params: dict, stats: ParseStats) -> None:
        text = unescape_text(value)
        if prop is IcsProperty.SUMMARY:
            draft.summary = text
        elif prop is IcsProperty.DESCRIPTION:
            draft.description = text
        else:
            draft.location = text

    @staticmethod
    def _handle_url(draft: _EventDraft, prop: IcsProperty, value: str, params: dict, stats: ParseStats) -> None:
        draft.url = value

    @staticmethod
    def _handle_organizer(draft: _EventDraft, prop: IcsProperty, value: str, params: dict, stats: ParseStats) -> None:
        draft.organizer = extract_address(value)

    @staticmethod
    def _handle_attendee(draft: _EventDraft, prop: IcsProperty, value: str, params: dict, stats: ParseStats) -> None:
        draft.attendees.append(extract_address(value))

    def _handle_dtstart(self, draft: _EventDraft, prop: IcsProperty, value: str, params: dict, stats: ParseStats) -> None:
        parsed = self._parse_event_time(prop, value, params, stats)
        if parsed is None:
            return
        draft.start = parsed
        draft.is_all_day = parsed.is_date
        if parsed.zone:
            draft.time_zone = parsed.zone

    def _handle_dtend(self, draft: _EventDraft, prop: IcsProperty, value: str, params: dict, stats: ParseStats) -> None:
        parsed = self._parse_event_time(prop, value, params, stats)
        if parsed is not None:
            draft.end = parsed

    def _handle_last_modified(self, draft: _EventDraft, prop: IcsProperty, value: str, params: dict, stats: ParseStats) -> None:
        parsed = self._parse_event_time(prop, value, params, stats)
        if parsed is not None:
            draft.last_modified = parsed

    @staticmethod
    def _handle_status(draft: _EventDraft, prop: IcsProperty, value: str, params: dict, stats: ParseStats) -> None:
        draft.status = EventStatus.from_ical(value)

    @staticmethod
    def _handle_rrule(draft: _EventDraft, prop: IcsProperty, value: str, params: dict, stats: ParseStats) -> None:
        draft.recurrence_rule = value

    @staticmethod
    def _parse_event_time(prop: IcsProperty, value: str, params: dict, stats: ParseStats) -> Optional[EventTime]:
        """
        Parse a DATE or DATE-TIME value into an EventTime.

        Returns None (and counts the value as invalid) when it cannot be parsed;
        no placeholder date is ever substituted.
        """
        value = value.strip()
        zone = params.get("TZID", "")

        try:
            if params.get("VALUE", "").upper() == "DATE" and DATE_RE.match(value):
                # TZID has no meaning for whole days
                return EventTime.from_date(datetime.strptime(value, "%Y%m%d").date())

            match = DATETIME_RE.match(value)
            if match:
                parsed = datetime.strptime(match.group(1).upper(), "%Y%m%dT%H%M%S")
                if match.group(2):
                    return EventTime.utc(parsed)
                return EventTime.civil(parsed, zone)
        except ValueError:
            pass

        stats.invalid_values += 1
        logger.warning("Unparseable %s value %r ignored", prop.value, value)
        return None


_default_parser = IcsParser()


def parse_ics(text: Union[str, bytes, None]) -> list[CalendarEventRecord]:
    """Parse calendar text with a shared parser instance."""
    return _default_parser.parse(text)
