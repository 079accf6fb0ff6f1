"""
Groups pending updates into bounded atomic batches and commits them.

  • A batch is sealed once it holds `batch_size` writes (499 by default, one
    under Firestore's hard cap of 500).
  • All batches of one call are committed concurrently; there is no ordering
    between them.
  • The call succeeds only if every batch commits. Committed batches are not
    rolled back when a sibling fails; PartialBatchFailure reports what landed.
"""
import asyncio
import logging
from typing import Iterable

from opentelemetry import trace

from shaka_sync.config import DEFAULT_BATCH_SIZE, FIRESTORE_BATCH_LIMIT
from shaka_sync.errors import PartialBatchFailure
from shaka_sync.models import CommitSummary, PendingWrite
from shaka_sync.store import DocumentStore, WriteBatch
from shaka_sync.telemetry import BATCH_COMMITS_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class BatchWriter:
    def __init__(self, store: DocumentStore, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if not 1 <= batch_size <= FIRESTORE_BATCH_LIMIT:
            raise ValueError(f"batch_size must be between 1 and {FIRESTORE_BATCH_LIMIT}")
        self.store = store
        self.batch_size = batch_size

    def _build(self, writes: Iterable[PendingWrite]) -> list[tuple[WriteBatch, int]]:
        batches: list[tuple[WriteBatch, int]] = []
        current = None
        count = 0
        for write in writes:
            if current is None:
                current = self.store.batch()
                count = 0
            current.update(write.ref, write.fields)
            count += 1
            if count == self.batch_size:
                batches.append((current, count))
                current = None
        if current is not None:
            batches.append((current, count))
        return batches

    async def commit(self, writes: Iterable[PendingWrite]) -> CommitSummary:
        batches = self._build(writes)
        if not batches:
            return CommitSummary()

        with tracer.start_as_current_span("batch_commit") as span:
            span.set_attribute("batch.count", len(batches))
            results = await asyncio.gather(
                *(batch.commit() for batch, _ in batches),
                return_exceptions=True,
            )

            committed = 0
            failed = 0
            failed_batches: list[int] = []
            errors: list[BaseException] = []
            for index, ((_, size), result) in enumerate(zip(batches, results)):
                if isinstance(result, BaseException):
                    failed += size
                    failed_batches.append(index)
                    errors.append(result)
                    BATCH_COMMITS_TOTAL.labels(outcome="error").inc()
                else:
                    committed += size
                    BATCH_COMMITS_TOTAL.labels(outcome="ok").inc()

            if errors:
                logger.error(
                    "%d of %d batches failed (%d writes committed, %d lost)",
                    len(errors), len(batches), committed, failed,
                )
                raise PartialBatchFailure(
                    committed_count=committed,
                    failed_count=failed,
                    batch_count=len(batches),
                    failed_batches=failed_batches,
                    errors=errors,
                ) from errors[0]

            logger.info("Committed %d writes in %d batches", committed, len(batches))
            return CommitSummary(committed_count=committed, batch_count=len(batches))
