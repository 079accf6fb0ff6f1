"""
Tests for the sync orchestrator: reactive fan-out, backfill and dry run.

These cover the consistency guarantees the maintenance tooling relies on:
idempotent re-runs, convergence, and dry-run estimates matching live runs.
"""
import pytest

from fakes import InMemoryStore
from shaka_sync.errors import PartialBatchFailure, PropagationFailed, StoreError, TransientStoreError
from shaka_sync.orchestrator import SyncOrchestrator


def seed_alice(store: InMemoryStore) -> None:
    store.add("users", "u1", displayName="Alicia")
    store.add("works", "w1", userID="u1", displayName="Alice")
    store.add("works", "w2", userID="u1", displayName="Alice")
    store.add("questions", "q1", userID="u1", displayName="Alice")
    store.add("works", "w3", userID="u2", displayName="Bob")


class TestReactivePath:
    async def test_rename_updates_every_owned_post(
        self, store: InMemoryStore, orchestrator: SyncOrchestrator
    ) -> None:
        seed_alice(store)

        result = await orchestrator.handle_user_update(
            "u1", {"displayName": "Alice"}, {"displayName": "Alicia"}
        )

        assert result.success is True
        assert result.updated == 3
        assert store.names("works", "u1") == ["Alicia", "Alicia"]
        assert store.names("questions", "u1") == ["Alicia"]
        assert store.doc("works", "w1")["updatedAt"] is not None
        # Other users' posts are untouched.
        assert store.doc("works", "w3")["displayName"] == "Bob"

    async def test_unchanged_name_touches_nothing(
        self, store: InMemoryStore, orchestrator: SyncOrchestrator
    ) -> None:
        seed_alice(store)

        result = await orchestrator.handle_user_update(
            "u1", {"displayName": "Alice", "bio": "a"}, {"displayName": "Alice", "bio": "b"}
        )

        assert result.updated == 0
        assert store.reads == 0
        assert store.commit_calls == 0

    async def test_replayed_event_is_a_no_op_write(
        self, store: InMemoryStore, orchestrator: SyncOrchestrator
    ) -> None:
        seed_alice(store)
        before, after = {"displayName": "Alice"}, {"displayName": "Alicia"}

        await orchestrator.handle_user_update("u1", before, after)
        commits = store.commit_calls
        replay = await orchestrator.handle_user_update("u1", before, after)

        assert replay.updated == 0
        assert store.commit_calls == commits

    async def test_store_failure_raises_retryable_error(
        self, store: InMemoryStore, orchestrator: SyncOrchestrator
    ) -> None:
        seed_alice(store)
        store.fail_queries[("questions", "u1")] = TransientStoreError("unavailable")

        with pytest.raises(PropagationFailed) as exc_info:
            await orchestrator.handle_user_update(
                "u1", {"displayName": "Alice"}, {"displayName": "Alicia"}
            )

        assert exc_info.value.retryable is True
        assert exc_info.value.user_id == "u1"
        assert store.commit_calls == 0

    async def test_partial_batch_failure_surfaces(self, store: InMemoryStore, orchestrator: SyncOrchestrator) -> None:
        store.add_posts("works", "u1", 600, name="Alice")
        store.fail_commits[1] = StoreError("permission denied")

        with pytest.raises(PropagationFailed) as exc_info:
            await orchestrator.handle_user_update(
                "u1", {"displayName": "Alice"}, {"displayName": "Alicia"}
            )

        cause = exc_info.value.cause
        assert isinstance(cause, PartialBatchFailure)
        assert cause.committed_count == 499
        assert exc_info.value.retryable is False


class TestBackfill:
    async def test_backfill_converges_all_posts(
        self, store: InMemoryStore, orchestrator: SyncOrchestrator
    ) -> None:
        seed_alice(store)
        store.add("users", "u2", displayName="Bob")
        store.add("users", "legacy-user-id")
        store.add("questions", "q9", userID="legacy-user-id")

        stats = await orchestrator.backfill()

        assert stats.users == 3
        assert stats.updated == {"works": 2, "questions": 2}
        assert stats.total_updated == 4
        assert store.names("works", "u1") == ["Alicia", "Alicia"]
        assert store.doc("questions", "q9")["displayName"] == "User_legacy"
        assert store.doc("works", "w3")["displayName"] == "Bob"

    async def test_second_run_writes_nothing(
        self, store: InMemoryStore, orchestrator: SyncOrchestrator
    ) -> None:
        seed_alice(store)
        await orchestrator.backfill()
        writes, commits = store.writes, store.commit_calls

        stats = await orchestrator.backfill()

        assert stats.total_updated == 0
        assert stats.batches == 0
        assert store.writes == writes
        assert store.commit_calls == commits

    async def test_thousand_works_use_three_batches(
        self, store: InMemoryStore, orchestrator: SyncOrchestrator
    ) -> None:
        store.add("users", "u1", displayName="Alice")
        store.add_posts("works", "u1", 1000, name="old")

        stats = await orchestrator.backfill()

        assert stats.batches == 3
        assert sorted(store.batch_sizes, reverse=True) == [499, 499, 2]
        assert stats.updated["works"] == 1000

    async def test_failure_aborts_by_default(
        self, store: InMemoryStore, orchestrator: SyncOrchestrator
    ) -> None:
        store.add("users", "u1", displayName="Alice")
        store.add("users", "u2", displayName="Bob")
        store.add("works", "w1", userID="u2", displayName="old")
        store.fail_queries[("works", "u1")] = TransientStoreError("deadline")

        with pytest.raises(TransientStoreError):
            await orchestrator.backfill()

        assert store.doc("works", "w1")["displayName"] == "old"

    async def test_continue_on_error_records_failures(
        self, store: InMemoryStore, orchestrator: SyncOrchestrator
    ) -> None:
        store.add("users", "u1", displayName="Alice")
        store.add("users", "u2", displayName="Bob")
        store.add("works", "w1", userID="u2", displayName="old")
        store.fail_queries[("works", "u1")] = TransientStoreError("deadline")

        stats = await orchestrator.backfill(continue_on_error=True)

        assert [e.user_id for e in stats.errors] == ["u1"]
        assert store.doc("works", "w1")["displayName"] == "Bob"
        assert stats.to_dict()["errors"] == [{"user_id": "u1", "error": "deadline"}]


class TestDryRun:
    async def test_dry_run_matches_live_run(
        self, store: InMemoryStore, orchestrator: SyncOrchestrator
    ) -> None:
        seed_alice(store)
        store.add("users", "u2", displayName="Bob")
        store.add("users", "u3")
        store.add_posts("works", "u3", 7)

        report = await orchestrator.dry_run(unit_cost_usd=0.00002)
        assert store.writes == 0
        assert store.commit_calls == 0

        stats = await orchestrator.backfill()

        assert report.needs_update == stats.total_updated == store.writes
        assert report.scanned == {"works": 10, "questions": 1}

    async def test_cost_estimate(self, store: InMemoryStore, orchestrator: SyncOrchestrator) -> None:
        store.add("users", "u1", displayName="Alice")
        store.add_posts("works", "u1", 1000)

        report = await orchestrator.dry_run(unit_cost_usd=0.00002)

        assert report.estimated_writes == 1000
        assert report.estimated_cost_usd == pytest.approx(0.02)
        assert report.to_dict()["estimated_cost_usd"] == 0.02


def test_from_settings_wires_configured_fields(store: InMemoryStore, test_settings) -> None:
    cfg = test_settings.model_copy(
        update={"post_collections": ["works"], "owner_field": "authorID", "batch_size": 100}
    )

    orchestrator = SyncOrchestrator.from_settings(store, cfg)

    assert orchestrator.planner.collections == ("works",)
    assert orchestrator.planner.owner_field == "authorID"
    assert orchestrator.writer.batch_size == 100
    assert orchestrator.detector.field == cfg.display_name_field
