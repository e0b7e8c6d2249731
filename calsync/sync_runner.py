"""
One complete sync run: fetch, parse, reconcile, execute.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional, Protocol
import logging
import pytz

from .config import Config
from .ics_parser import IcsParser, ParseStats
from .models import CalendarEventRecord
from .reconciler import ActionPlan, ReconciliationEngine
from .remote_client import RemoteCalendarClient, in_range
from .sync_executor import SyncExecutor, SyncStats
from .timezone_utils import TimezoneResolver, start_of_day_utc


logger = logging.getLogger(__name__)


class CalendarSource(Protocol):
    """Anything that can hand over the feed text (ICSSubscription does)."""

    def fetch_text(self) -> str: ...


@dataclass
class SyncReport:
    """What happened during one run."""
    parse_stats: ParseStats
    plan: ActionPlan
    stats: SyncStats
    window_start: datetime
    window_end: datetime
    dry_run: bool = False
    fallbacks: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.stats.errors == 0


class SyncRunner:
    """Glue between the feed, the reconciliation engine and the remote calendar."""

    def __init__(
        self,
        config: Config,
        source: CalendarSource,
        client: RemoteCalendarClient,
        resolver: Optional[TimezoneResolver] = None
    ):
        """
        Initialize the runner.

        Args:
            config: Loaded configuration ([Sync] section drives the run)
            source: Feed to read from
            client: Remote calendar to write to
            resolver: Resolver shared by the engine and the client
        """
        self.config = config
        self.source = source
        self.client = client
        self.resolver = resolver or TimezoneResolver(
            config.sync.default_timezone,
            config.timezone_aliases
        )
        self.parser = IcsParser()
        self.engine = ReconciliationEngine(self.resolver)

    def window(self, start: Optional[date] = None, days: Optional[int] = None) -> tuple[datetime, datetime]:
        """
        Compute the UTC window [window_start, window_end) for a run.

        Args:
            start: First day of the window; defaults to today minus
                window_past_days in the default zone
            days: Window length; defaults to window_days
        """
        sync = self.config.sync
        if start is None:
            today = datetime.now(pytz.timezone(sync.default_timezone)).date()
            start = today - timedelta(days=sync.window_past_days)
        if days is None:
            days = sync.window_days
        return (
            start_of_day_utc(start, sync.default_timezone),
            start_of_day_utc(start + timedelta(days=days), sync.default_timezone),
        )

    def in_window(self, record: CalendarEventRecord, window_start: datetime, window_end: datetime) -> bool:
        """True if the record overlaps [window_start, window_end); the same rule applies to remote events."""
        return in_range(record, window_start, window_end, self.resolver)

    def run(
        self,
        start: Optional[date] = None,
        days: Optional[int] = None,
        dry_run: Optional[bool] = None
    ) -> SyncReport:
        """
        Run one sync.

        Args:
            start: First day of the window (see window())
            days: Window length in days
            dry_run: Override [Sync] dry_run

        Returns:
            SyncReport for the run.

        Raises:
            SourceFetchError: If the feed cannot be downloaded.
            FormatError: If the feed is empty.
            RemoteOperationFailure: If the remote events cannot be listed.
        """
        if dry_run is None:
            dry_run = self.config.sync.dry_run
        window_start, window_end = self.window(start, days)
        self.resolver.reset_counters()
        logger.info("Sync window %s .. %s", window_start.isoformat(), window_end.isoformat())

        records, parse_stats = self.parser.parse_with_stats(self.source.fetch_text())
        source_events = [r for r in records if self.in_window(r, window_start, window_end)]
        logger.info("%d of %d feed events fall into the window", len(source_events), len(records))

        listed = self.client.list_events(window_start, window_end)
        remote_events = [e for e in listed if self.in_window(e, window_start, window_end)]
        # Servers may list more than the window holds; those events are left alone
        outside = [e for e in listed if not self.in_window(e, window_start, window_end)]
        if outside:
            logger.info("%d remote events listed outside the window are left untouched", len(outside))

        plan = self.engine.reconcile(
            source_events,
            remote_events,
            match_tolerance_minutes=self.config.sync.match_tolerance_minutes,
            update_tolerance_minutes=self.config.sync.update_tolerance_minutes,
        )
        plan.skips.extend(outside)
        stats = SyncExecutor(self.client, dry_run=dry_run).execute(plan)

        fallbacks = self.resolver.fallbacks
        if fallbacks:
            logger.warning("Timezone fallbacks during this run: %s", fallbacks)

        return SyncReport(
            parse_stats=parse_stats,
            plan=plan,
            stats=stats,
            window_start=window_start,
            window_end=window_end,
            dry_run=dry_run,
            fallbacks=fallbacks,
        )
