"""
Wires ChangeDetector → FanoutPlanner → BatchWriter.

Reactive path (one user-update event):
  Idle → Triggered → Detecting → NoOp
                               → Planning → Writing → Done | Failed

Backfill path (all users):
  Enumerating → per user {Planning → Writing} → Done | Failed

Dry run:
  Enumerating → per user {Planning → Counting} → Report   (never writes)

Each call is stateless apart from its own counters. Concurrent invocations for
the same user are not coordinated; the value-comparing planner makes them
converge on whatever the user document says last.
"""
import enum
import logging
import time
from typing import Any, Mapping, Optional

from opentelemetry import trace

from shaka_sync.batch_writer import BatchWriter
from shaka_sync.config import Settings
from shaka_sync.detector import ChangeDetector
from shaka_sync.errors import PropagationFailed, StoreError
from shaka_sync.models import (
    BackfillStats,
    CommitSummary,
    DryRunReport,
    PropagationTrigger,
    UserFailure,
)
from shaka_sync.planner import FanoutPlanner
from shaka_sync.schemas import SyncResult
from shaka_sync.store import DocumentStore
from shaka_sync.telemetry import (
    DISPLAYNAME_WRITES_TOTAL,
    NOOP_TRIGGERS_TOTAL,
    PROPAGATION_LATENCY,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class SyncState(str, enum.Enum):
    IDLE = "idle"
    TRIGGERED = "triggered"
    DETECTING = "detecting"
    NOOP = "noop"
    ENUMERATING = "enumerating"
    PLANNING = "planning"
    WRITING = "writing"
    COUNTING = "counting"
    DONE = "done"
    REPORT = "report"
    FAILED = "failed"


class SyncOrchestrator:
    def __init__(
        self,
        store: DocumentStore,
        detector: Optional[ChangeDetector] = None,
        planner: Optional[FanoutPlanner] = None,
        writer: Optional[BatchWriter] = None,
    ) -> None:
        self.store = store
        self.detector = detector or ChangeDetector()
        self.planner = planner or FanoutPlanner(store)
        self.writer = writer or BatchWriter(store)

    @classmethod
    def from_settings(cls, store: DocumentStore, settings: Settings) -> "SyncOrchestrator":
        return cls(
            store,
            detector=ChangeDetector(settings.display_name_field),
            planner=FanoutPlanner(
                store,
                collections=settings.post_collections,
                users_collection=settings.users_collection,
                owner_field=settings.owner_field,
                display_name_field=settings.display_name_field,
            ),
            writer=BatchWriter(store, settings.batch_size),
        )

    @staticmethod
    def _enter(user_id: str, state: SyncState) -> SyncState:
        logger.debug("sync[%s] → %s", user_id, state.value)
        return state

    # ─────────────────────────── Reactive ─────────────────────────────────

    async def handle_user_update(
        self,
        user_id: str,
        before: Optional[Mapping[str, Any]],
        after: Optional[Mapping[str, Any]],
    ) -> SyncResult:
        """
        Entry point for a users/{user_id} change notification.

        Returns {success, updated}; raises PropagationFailed (with `retryable`)
        when the store fails so the caller can retry the whole event.
        """
        self._enter(user_id, SyncState.TRIGGERED)
        self._enter(user_id, SyncState.DETECTING)
        trigger = self.detector.detect(user_id, before, after)
        if trigger is None:
            self._enter(user_id, SyncState.NOOP)
            NOOP_TRIGGERS_TOTAL.inc()
            return SyncResult(success=True, updated=0)

        logger.info(
            "Updating displayName for user %s to: %s",
            user_id, trigger.new_display_name,
        )
        t0 = time.perf_counter()
        try:
            summary = await self.propagate(trigger)
        except Exception as exc:
            self._enter(user_id, SyncState.FAILED)
            logger.error("Error updating displayName for user %s: %s", user_id, exc)
            raise PropagationFailed(user_id, exc) from exc
        finally:
            PROPAGATION_LATENCY.observe(time.perf_counter() - t0)

        self._enter(user_id, SyncState.DONE)
        logger.info(
            "Successfully updated %d posts for user %s",
            summary.committed_count, user_id,
        )
        return SyncResult(success=True, updated=summary.committed_count)

    async def propagate(self, trigger: PropagationTrigger) -> CommitSummary:
        with tracer.start_as_current_span("propagate") as span:
            span.set_attribute("user.id", trigger.user_id)
            self._enter(trigger.user_id, SyncState.PLANNING)
            plan = await self.planner.pending_writes(self.planner.plan(trigger))
            self._enter(trigger.user_id, SyncState.WRITING)
            summary = await self.writer.commit(plan.writes)
            DISPLAYNAME_WRITES_TOTAL.labels(mode="reactive").inc(summary.committed_count)
            span.set_attribute("fanout.updated", summary.committed_count)
            return summary

    # ─────────────────────────── Backfill ─────────────────────────────────

    async def backfill(self, continue_on_error: bool = False) -> BackfillStats:
        """
        Rewrite every stale cached displayName, user by user.

        With continue_on_error=False the first store failure aborts the run.
        Otherwise failures are recorded in stats.errors and the loop moves on;
        either way a re-run converges what was left behind.
        """
        with tracer.start_as_current_span("backfill") as span:
            logger.info("Starting displayName backfill")
            self._enter("*", SyncState.ENUMERATING)
            jobs = await self.planner.plan_all()
            stats = BackfillStats(users=len(jobs))

            for job in jobs:
                user_id = job.owner_user_id
                try:
                    self._enter(user_id, SyncState.PLANNING)
                    plan = await self.planner.pending_writes(job)
                    self._enter(user_id, SyncState.WRITING)
                    summary = await self.writer.commit(plan.writes)
                except StoreError as exc:
                    if not continue_on_error:
                        self._enter(user_id, SyncState.FAILED)
                        logger.error("Backfill aborted at user %s: %s", user_id, exc)
                        raise
                    logger.error("Backfill failed for user %s: %s", user_id, exc)
                    stats.errors.append(UserFailure(user_id=user_id, error=str(exc)))
                    continue

                for collection, count in plan.scanned.items():
                    stats.scanned[collection] = stats.scanned.get(collection, 0) + count
                for collection, count in plan.pending.items():
                    stats.updated[collection] = stats.updated.get(collection, 0) + count
                stats.batches += summary.batch_count
                DISPLAYNAME_WRITES_TOTAL.labels(mode="backfill").inc(summary.committed_count)

            self._enter("*", SyncState.DONE)
            span.set_attribute("backfill.updated", stats.total_updated)
            logger.info(
                "Backfill completed: %d users, %d posts updated, %d errors",
                stats.users, stats.total_updated, len(stats.errors),
            )
            return stats

    async def dry_run(self, unit_cost_usd: float = 0.0) -> DryRunReport:
        """Same plan as backfill(); counts writes instead of committing them."""
        with tracer.start_as_current_span("dry_run"):
            logger.info("DRY RUN — no changes will be made")
            self._enter("*", SyncState.ENUMERATING)
            jobs = await self.planner.plan_all()
            report = DryRunReport(users=len(jobs), unit_cost_usd=unit_cost_usd)

            for job in jobs:
                self._enter(job.owner_user_id, SyncState.PLANNING)
                plan = await self.planner.pending_writes(job)
                self._enter(job.owner_user_id, SyncState.COUNTING)
                for collection, count in plan.scanned.items():
                    report.scanned[collection] = report.scanned.get(collection, 0) + count
                report.needs_update += len(plan.writes)

            self._enter("*", SyncState.REPORT)
            return report
