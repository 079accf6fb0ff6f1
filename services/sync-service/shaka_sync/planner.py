"""
Fan-out planner — which post documents carry a stale displayName.

For a job {owner, name, collections}:
  1. Query every target collection for documents where owner_field == owner.
  2. Skip documents whose cached name already equals the target (read-before-
     write filter). A second run over converged data plans zero writes.
  3. Every remaining document gets {displayName: name, updatedAt: <server ts>}.

Live runs hand the writes to the BatchWriter; dry runs only count them, so the
estimate is exactly what a live run would write.
"""
import logging
from typing import Sequence

from opentelemetry import trace

from shaka_sync.detector import canonical_display_name
from shaka_sync.models import FanoutPlan, PendingWrite, PropagationJob, PropagationTrigger
from shaka_sync.store import DocumentStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

UPDATED_AT_FIELD = "updatedAt"


class FanoutPlanner:
    def __init__(
        self,
        store: DocumentStore,
        collections: Sequence[str] = ("works", "questions"),
        users_collection: str = "users",
        owner_field: str = "userID",
        display_name_field: str = "displayName",
    ) -> None:
        self.store = store
        self.collections = tuple(collections)
        self.users_collection = users_collection
        self.owner_field = owner_field
        self.display_name_field = display_name_field

    def plan(self, trigger: PropagationTrigger) -> PropagationJob:
        return PropagationJob(
            owner_user_id=trigger.user_id,
            new_display_name=trigger.new_display_name,
            target_collections=self.collections,
        )

    async def plan_all(self) -> list[PropagationJob]:
        """
        One job per user document.

        Full scan of the users collection. Only used by offline backfill and
        dry-run tooling, never on the request path.
        """
        jobs = []
        async for user in self.store.stream(self.users_collection):
            jobs.append(
                PropagationJob(
                    owner_user_id=user.id,
                    new_display_name=canonical_display_name(
                        user.id, user.data, self.display_name_field
                    ),
                    target_collections=self.collections,
                )
            )
        logger.info("Found %d users", len(jobs))
        return jobs

    async def pending_writes(self, job: PropagationJob) -> FanoutPlan:
        with tracer.start_as_current_span("fanout_plan") as span:
            span.set_attribute("user.id", job.owner_user_id)
            plan = FanoutPlan(job=job)

            for collection in job.target_collections:
                docs = await self.store.query_equal(
                    collection, self.owner_field, job.owner_user_id
                )
                plan.scanned[collection] = len(docs)
                pending = 0
                for doc in docs:
                    if doc.get(self.display_name_field) == job.new_display_name:
                        continue
                    plan.writes.append(
                        PendingWrite(
                            ref=doc.ref,
                            fields={
                                self.display_name_field: job.new_display_name,
                                UPDATED_AT_FIELD: self.store.server_timestamp(),
                            },
                        )
                    )
                    pending += 1
                plan.pending[collection] = pending

            span.set_attribute("fanout.pending", len(plan.writes))
            logger.debug(
                "User %s: scanned=%s pending=%s",
                job.owner_user_id, plan.scanned, plan.pending,
            )
            return plan
