"""
Applies an ActionPlan to a remote calendar.

Operations run sequentially: creates, then updates, then deletes. A failing
operation is logged and recorded, and the rest of the plan still runs.
"""

from dataclasses import dataclass, field
from enum import Enum
import logging

from .reconciler import ActionPlan
from .remote_client import RemoteCalendarClient


logger = logging.getLogger(__name__)


class SyncOperation(Enum):
    """Types of sync operations."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class SyncResult:
    """Outcome of one operation."""
    operation: SyncOperation
    uid: str
    remote_id: str = ""
    success: bool = True
    error: str = ""


@dataclass
class SyncStats:
    """Counters for one executed plan."""
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0
    results: list[SyncResult] = field(default_factory=list)

    @property
    def failed(self) -> list[SyncResult]:
        return [r for r in self.results if not r.success]

    def __str__(self):
        return (
            f"created={self.created} updated={self.updated} deleted={self.deleted} "
            f"unchanged={self.unchanged} skipped={self.skipped} errors={self.errors}"
        )


class SyncExecutor:
    """Runs the operations of an ActionPlan against a RemoteCalendarClient."""

    def __init__(self, client: RemoteCalendarClient, dry_run: bool = False):
        """
        Initialize the executor.

        Args:
            client: Remote calendar to write to
            dry_run: Log the operations without calling the client
        """
        self.client = client
        self.dry_run = dry_run

    def execute(self, plan: ActionPlan) -> SyncStats:
        """
        Apply a plan.

        Args:
            plan: Plan produced by ReconciliationEngine.reconcile()

        Returns:
            SyncStats with one SyncResult per attempted operation.
        """
        stats = SyncStats(unchanged=len(plan.unchanged), skipped=len(plan.skips))
        prefix = "[dry run] " if self.dry_run else ""

        for record in plan.creates:
            logger.info("%sCreate %s (%s)", prefix, record.uid, record.summary)
            result = SyncResult(SyncOperation.CREATE, record.uid)
            if not self.dry_run:
                try:
                    created = self.client.create_event(record)
                    result.remote_id = created.remote_id
                except Exception as e:
                    logger.exception("Failed to create %s", record.uid)
                    self._record_failure(stats, result, e)
                    continue
            stats.created += 1
            stats.results.append(result)

        for update in plan.updates:
            payload = update.payload
            logger.info(
                "%sUpdate %s (%s): %s",
                prefix, payload.remote_id, payload.summary, ", ".join(update.changed_fields)
            )
            result = SyncResult(SyncOperation.UPDATE, payload.uid, payload.remote_id)
            if not self.dry_run:
                try:
                    self.client.update_event(payload)
                except Exception as e:
                    logger.exception("Failed to update %s", payload.remote_id)
                    self._record_failure(stats, result, e)
                    continue
            stats.updated += 1
            stats.results.append(result)

        for remote in plan.deletes:
            logger.info("%sDelete %s (%s)", prefix, remote.remote_id, remote.summary)
            result = SyncResult(SyncOperation.DELETE, remote.uid, remote.remote_id)
            if not self.dry_run:
                try:
                    self.client.delete_event(remote.remote_id)
                except Exception as e:
                    logger.exception("Failed to delete %s", remote.remote_id)
                    self._record_failure(stats, result, e)
                    continue
            stats.deleted += 1
            stats.results.append(result)

        logger.info("%sSync finished: %s", prefix, stats)
        return stats

    @staticmethod
    def _record_failure(stats: SyncStats, result: SyncResult, error: Exception) -> None:
        result.success = False
        result.error = str(error)
        stats.errors += 1
        stats.results.append(result)
