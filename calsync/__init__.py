"""
calsync - one-way sync of an ICS feed into a CalDAV calendar.

This package provides:
- Event records with explicit time provenance (models.py)
- ICS text parsing (ics_parser.py)
- Timezone resolution with counted fallbacks (timezone_utils.py)
- Reconciliation into an ActionPlan (reconciler.py)
- Remote calendar clients: CalDAV and in-memory (remote_client.py, caldav_client.py)
- Plan execution (sync_executor.py) and the full run (sync_runner.py)
- Configuration parsing (config.py)
- ICS feed fetching (ics_subscription.py)
"""

from .config import Config, ConfigError
from .models import CalendarEventRecord, EventStatus, EventTime, RemoteEvent, TimeProvenance
from .ics_parser import FormatError, IcsParser, parse_ics
from .timezone_utils import TimezoneResolver
from .reconciler import ActionPlan, PlannedUpdate, ReconciliationEngine
from .remote_client import (
    InMemoryCalendarClient,
    RemoteCalendarClient,
    RemoteOperationFailure,
    build_remote_client,
)
from .ics_subscription import ICSSubscription, SourceFetchError
from .sync_executor import SyncExecutor, SyncStats
from .sync_runner import SyncReport, SyncRunner

__all__ = [
    'Config',
    'ConfigError',
    'CalendarEventRecord',
    'EventStatus',
    'EventTime',
    'RemoteEvent',
    'TimeProvenance',
    'FormatError',
    'IcsParser',
    'parse_ics',
    'TimezoneResolver',
    'ActionPlan',
    'PlannedUpdate',
    'ReconciliationEngine',
    'InMemoryCalendarClient',
    'RemoteCalendarClient',
    'RemoteOperationFailure',
    'build_remote_client',
    'ICSSubscription',
    'SourceFetchError',
    'SyncExecutor',
    'SyncStats',
    'SyncReport',
    'SyncRunner',
]
