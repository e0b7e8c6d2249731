"""
Reconciliation of source feed events against remote calendar events.

The engine is a pure function of its inputs: it never talks to the remote
calendar and never edits the records it is given. Its only output is an
ActionPlan that SyncExecutor can apply.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence
import logging

from .models import CalendarEventRecord, EventTime, RemoteEvent
from .timezone_utils import TimezoneResolver


logger = logging.getLogger(__name__)

DEFAULT_MATCH_TOLERANCE_MINUTES = 30
DEFAULT_UPDATE_TOLERANCE_MINUTES = 5


@dataclass(frozen=True)
class PlannedUpdate:
    """A matched pair whose remote side must be overwritten with payload."""
    source: CalendarEventRecord
    remote: RemoteEvent
    payload: RemoteEvent
    changed_fields: tuple[str, ...] = ()


@dataclass
class ActionPlan:
    """
    Result of one reconciliation run.

    creates, updates, deletes and skips never share a remote event, so the
    operations can be applied in any order. skips are remote events that
    must be left alone: not owned by this system, or outside the sync window.
    """
    creates: list[CalendarEventRecord] = field(default_factory=list)
    updates: list[PlannedUpdate] = field(default_factory=list)
    deletes: list[RemoteEvent] = field(default_factory=list)
    skips: list[RemoteEvent] = field(default_factory=list)
    unchanged: list[tuple[CalendarEventRecord, RemoteEvent]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when there is nothing to create, update or delete."""
        return not (self.creates or self.updates or self.deletes)

    def summary(self) -> dict[str, int]:
        return {
            "create": len(self.creates),
            "update": len(self.updates),
            "delete": len(self.deletes),
            "skip": len(self.skips),
            "unchanged": len(self.unchanged),
        }


def _fold(text: Optional[str]) -> str:
    return (text or "").strip().casefold()


def _normalize_text(text: Optional[str]) -> str:
    return (text or "").replace("\r\n", "\n").strip()


class ReconciliationEngine:
    """
    Computes the create/update/delete operations that bring the remote
    calendar in line with the source feed.

    Matching, per source event:
        1. UID, case-insensitive
        2. same trimmed summary (case-insensitive) and starts within the
           match tolerance
        3. otherwise the event is created

    Every remote event is consumed by at most one match. Unmatched remote
    events are deleted only when this system manages them.
    """

    def __init__(self, resolver: Optional[TimezoneResolver] = None):
        """
        Initialize the engine.

        Args:
            resolver: Resolver used for every time comparison
        """
        self.resolver = resolver or TimezoneResolver()

    def reconcile(
        self,
        source_events: Sequence[CalendarEventRecord],
        remote_events: Sequence[RemoteEvent],
        match_tolerance_minutes: float = DEFAULT_MATCH_TOLERANCE_MINUTES,
        update_tolerance_minutes: float = DEFAULT_UPDATE_TOLERANCE_MINUTES
    ) -> ActionPlan:
        """
        Build the ActionPlan for one sync run.

        Args:
            source_events: Events parsed from the feed
            remote_events: Events currently in the remote calendar
            match_tolerance_minutes: Max start difference for a summary match
            update_tolerance_minutes: Start/end drift tolerated without update

        Returns:
            A new ActionPlan. Identical inputs (including order) always give
            an identical plan.
        """
        plan = ActionPlan()
        pool: list[Optional[RemoteEvent]] = list(remote_events)
        matches: list[Optional[int]] = [None] * len(source_events)

        # UID matches first so that a UID always wins over a summary/time match
        for index, source in enumerate(source_events):
            matches[index] = self._take(pool, self._find_by_uid(source, pool))

        for index, source in enumerate(source_events):
            if matches[index] is None:
                matches[index] = self._take(pool, self._find_by_summary_and_time(source, pool, match_tolerance_minutes))

        for source, remote_index in zip(source_events, matches):
            if remote_index is None:
                logger.debug("CREATE %s (%s)", source.uid, source.summary)
                plan.creates.append(source)
                continue
            remote = remote_events[remote_index]
            self._classify_pair(plan, source, remote, update_tolerance_minutes)

        for remote in pool:
            if remote is None:
                continue
            if remote.is_managed:
                logger.debug("DELETE %s (%s)", remote.remote_id, remote.summary)
                plan.deletes.append(remote)
            else:
                logger.debug("SKIP unmanaged %s (%s)", remote.remote_id, remote.summary)
                plan.skips.append(remote)

        logger.info("Reconciliation plan: %s", plan.summary())
        return plan

    @staticmethod
    def _take(pool: list[Optional[RemoteEvent]], index: Optional[int]) -> Optional[int]:
        """Remove a matched remote event from the pool, keeping positions stable."""
        if index is not None:
            pool[index] = None
        return index

    @staticmethod
    def _find_by_uid(source: CalendarEventRecord, pool: list[Optional[RemoteEvent]]) -> Optional[int]:
        uid = _fold(source.uid)
        if not uid:
            return None
        for index, remote in enumerate(pool):
            if remote is not None and remote.uid and _fold(remote.uid) == uid:
                logger.debug("Matched %s by UID", source.uid)
                return index
        return None

    def _find_by_summary_and_time(
        self,
        source: CalendarEventRecord,
        pool: list[Optional[RemoteEvent]],
        tolerance_minutes: float
    ) -> Optional[int]:
        summary = _fold(source.summary)
        source_start = self.resolver.to_absolute_or_none(source.start)
        if source_start is None:
            return None
        for index, remote in enumerate(pool):
            if remote is None or _fold(remote.summary) != summary:
                continue
            remote_start = self.resolver.to_absolute_or_none(remote.start)
            if remote_start is None:
                continue
            if self._minutes_between(source_start, remote_start) <= tolerance_minutes:
                logger.debug("Matched %s by summary and start time", source.uid)
                return index
        return None

    def _classify_pair(
        self,
        plan: ActionPlan,
        source: CalendarEventRecord,
        remote: RemoteEvent,
        tolerance_minutes: float
    ) -> None:
        changed = self.changed_fields(source, remote, tolerance_minutes)
        if not changed:
            plan.unchanged.append((source, remote))
            return

        if not remote.is_managed:
            # Someone else's event: never overwritten, and not duplicated either
            logger.warning(
                "Event %s matches unmanaged remote event %s but differs in %s; left untouched",
                source.uid, remote.remote_id, ", ".join(changed)
            )
            plan.skips.append(remote)
            return

        logger.debug("UPDATE %s (%s): %s", source.uid, source.summary, ", ".join(changed))
        payload = RemoteEvent.from_record(
            source,
            remote_id=remote.remote_id,
            remote_version_token=remote.remote_version_token,
            is_managed=remote.is_managed,
        )
        plan.updates.append(PlannedUpdate(source=source, remote=remote, payload=payload, changed_fields=changed))

    def changed_fields(
        self,
        source: CalendarEventRecord,
        remote: CalendarEventRecord,
        tolerance_minutes: float
    ) -> tuple[str, ...]:
        """
        Names of the fields that make the pair need an update.

        Times are compared as absolute instants; text is compared after
        normalizing missing values and line endings.
        """
        changed = []
        if _fold(source.summary) != _fold(remote.summary):
            changed.append("summary")
        if self._times_differ(source.start, remote.start, tolerance_minutes):
            changed.append("start")
        if self._times_differ(source.end, remote.end, tolerance_minutes):
            changed.append("end")
        if _normalize_text(source.location) != _normalize_text(remote.location):
            changed.append("location")
        if _normalize_text(source.description) != _normalize_text(remote.description):
            changed.append("description")
        return tuple(changed)

    def _times_differ(self, a: Optional[EventTime], b: Optional[EventTime], tolerance_minutes: float) -> bool:
        if a is None and b is None:
            return False
        if a is None or b is None:
            return True
        return self._minutes_between(self.resolver.to_absolute(a), self.resolver.to_absolute(b)) > tolerance_minutes

    @staticmethod
    def _minutes_between(a: datetime, b: datetime) -> float:
        return abs((a - b).total_seconds()) / 60.0
