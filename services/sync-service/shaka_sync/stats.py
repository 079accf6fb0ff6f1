"""
User stats reconciliation.

For every user, count the posts they own in each collection and compare with
the counters saved on the user document (stats.worksCount, ...). A mismatch is
not an error: it is logged and queued as a corrective write. All corrections
go through the same BatchWriter as the displayName fan-out.
"""
import asyncio
import logging
from typing import Mapping

from opentelemetry import trace

from shaka_sync.batch_writer import BatchWriter
from shaka_sync.detector import fallback_display_name
from shaka_sync.models import Document, PendingWrite, StatsReport
from shaka_sync.store import DocumentStore
from shaka_sync.telemetry import STATS_CORRECTIONS_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_STATS_FIELDS = {"works": "worksCount", "questions": "questionsCount"}


def _label(user: Document) -> str:
    # Profiles are either flat or migrated to {public: {...}}.
    name = user.get("public.displayName") or user.get("displayName")
    return name or fallback_display_name(user.id)


class StatsReconciler:
    def __init__(
        self,
        store: DocumentStore,
        writer: BatchWriter,
        stats_fields: Mapping[str, str] = DEFAULT_STATS_FIELDS,
        users_collection: str = "users",
        owner_field: str = "userID",
    ) -> None:
        self.store = store
        self.writer = writer
        self.stats_fields = dict(stats_fields)
        self.users_collection = users_collection
        self.owner_field = owner_field

    async def actual_counts(self, user_id: str) -> dict[str, int]:
        collections = list(self.stats_fields)
        counts = await asyncio.gather(
            *(self.store.count_equal(c, self.owner_field, user_id) for c in collections)
        )
        return dict(zip(collections, counts))

    async def correction_for(self, user: Document) -> PendingWrite | None:
        actual = await self.actual_counts(user.id)
        fields = {}
        for collection, counter in self.stats_fields.items():
            saved = user.get(f"stats.{counter}") or 0
            if saved != actual[collection]:
                logger.info(
                    "%s (%s) %s: saved=%s, actual=%d",
                    _label(user), user.id, collection, saved, actual[collection],
                )
                fields[f"stats.{counter}"] = actual[collection]
        if not fields:
            return None
        return PendingWrite(ref=user.ref, fields=fields)

    async def run(self, dry_run: bool = False) -> StatsReport:
        with tracer.start_as_current_span("stats_reconcile") as span:
            report = StatsReport(dry_run=dry_run)
            corrections: list[PendingWrite] = []

            users = [u async for u in self.store.stream(self.users_collection)]
            report.users = len(users)
            for user in users:
                correction = await self.correction_for(user)
                if correction is not None:
                    corrections.append(correction)

            report.mismatched = len(corrections)
            span.set_attribute("stats.mismatched", report.mismatched)

            if dry_run or not corrections:
                logger.info(
                    "Checked %d users, %d mismatched%s",
                    report.users, report.mismatched, " (dry run)" if dry_run else "",
                )
                return report

            summary = await self.writer.commit(corrections)
            report.corrected = summary.committed_count
            report.batches = summary.batch_count
            STATS_CORRECTIONS_TOTAL.inc(summary.committed_count)
            logger.info(
                "Checked %d users, corrected %d", report.users, report.corrected
            )
            return report
