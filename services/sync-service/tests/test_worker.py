"""Tests for the Kafka user-change handler and consumer loop."""
import json
from types import SimpleNamespace

import pytest

from fakes import InMemoryStore
from shaka_sync import worker
from shaka_sync.errors import PropagationFailed, StoreError, TransientStoreError
from shaka_sync.orchestrator import SyncOrchestrator
from shaka_sync.worker import process_message


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FlakyStore(InMemoryStore):
    """Fails the first `failures` queries with the given error."""

    def __init__(self, failures: int, error: Exception) -> None:
        super().__init__()
        self.failures = failures
        self.error = error
        self.started = False
        self.stopped = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    async def query_equal(self, collection, field, value):
        if self.failures > 0:
            self.failures -= 1
            raise self.error
        return await super().query_equal(collection, field, value)


class FakeConsumer:
    """Stands in for AIOKafkaConsumer: replays raw values, records commits."""

    def __init__(self, values: list[bytes]) -> None:
        self.values = values
        self.commits: list[int] = []
        self.stopped = False
        self._position = -1

    def __call__(self, topic, **kwargs):
        self.topic = topic
        self.kwargs = kwargs
        return self

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        self.stopped = True

    async def commit(self) -> None:
        self.commits.append(self._position)

    async def __aiter__(self):
        for offset, value in enumerate(self.values):
            self._position = offset
            yield SimpleNamespace(value=value, topic=self.topic, partition=0, offset=offset)


def rename_event(user_id: str = "u1") -> dict:
    return {
        "user_id": user_id,
        "before": {"displayName": "Alice"},
        "after": {"displayName": "Alicia"},
    }


def encoded(event: dict) -> bytes:
    return json.dumps(event).encode("utf-8")


async def test_event_propagates(store: InMemoryStore, orchestrator: SyncOrchestrator) -> None:
    store.add("works", "w1", userID="u1", displayName="Alice")

    result = await process_message(rename_event(), orchestrator)

    assert result is not None
    assert result.updated == 1
    assert store.doc("works", "w1")["displayName"] == "Alicia"


async def test_raw_bytes_are_decoded(store: InMemoryStore, orchestrator: SyncOrchestrator) -> None:
    store.add("works", "w1", userID="u1", displayName="Alice")

    result = await process_message(encoded(rename_event()), orchestrator)

    assert result is not None and result.updated == 1


@pytest.mark.parametrize(
    "msg",
    [
        {"before": {}, "after": {}},
        {"user_id": "", "after": {}},
        {"user_id": "u1", "after": "not-a-dict"},
        b"\xff",
        b"not json",
        b"42",
    ],
)
async def test_malformed_event_is_dropped(
    store: InMemoryStore, orchestrator: SyncOrchestrator, msg
) -> None:
    assert await process_message(msg, orchestrator) is None
    assert store.reads == 0


async def test_transient_failure_is_retried(test_settings) -> None:
    store = FlakyStore(failures=2, error=TransientStoreError("unavailable"))
    store.add("works", "w1", userID="u1", displayName="Alice")
    orchestrator = SyncOrchestrator.from_settings(store, test_settings)
    sleep = RecordingSleep()

    result = await process_message(
        rename_event(), orchestrator, max_attempts=3, retry_delay=0.5, sleep=sleep
    )

    assert result is not None and result.updated == 1
    assert sleep.calls == [0.5, 1.0]


async def test_exhausted_transient_failure_is_raised(test_settings) -> None:
    store = FlakyStore(failures=10, error=TransientStoreError("unavailable"))
    store.add("works", "w1", userID="u1", displayName="Alice")
    orchestrator = SyncOrchestrator.from_settings(store, test_settings)
    sleep = RecordingSleep()

    with pytest.raises(PropagationFailed) as info:
        await process_message(rename_event(), orchestrator, max_attempts=3, sleep=sleep)

    assert info.value.retryable
    assert len(sleep.calls) == 2
    assert store.doc("works", "w1")["displayName"] == "Alice"


async def test_permanent_failure_is_not_retried(test_settings) -> None:
    store = FlakyStore(failures=1, error=StoreError("permission denied"))
    orchestrator = SyncOrchestrator.from_settings(store, test_settings)
    sleep = RecordingSleep()

    result = await process_message(rename_event(), orchestrator, sleep=sleep)

    assert result is None
    assert sleep.calls == []


class TestConsumerLoop:
    @pytest.fixture
    def run_worker(self, monkeypatch, test_settings):
        cfg = test_settings.model_copy(
            update={"trigger_max_attempts": 2, "trigger_retry_delay": 0.0}
        )
        monkeypatch.setattr(worker, "settings", cfg)

        def install(store: FlakyStore, values: list[bytes]) -> FakeConsumer:
            consumer = FakeConsumer(values)
            monkeypatch.setattr(worker, "AIOKafkaConsumer", consumer)
            monkeypatch.setattr(
                worker.FirestoreStore, "from_settings", classmethod(lambda cls, s: store)
            )
            return consumer

        return install

    async def test_commits_after_each_handled_event(self, run_worker) -> None:
        store = FlakyStore(failures=0, error=TransientStoreError("unavailable"))
        store.add("works", "w1", userID="u1", displayName="Alice")
        consumer = run_worker(store, [encoded(rename_event()), b"\xff"])

        await worker.main()

        assert consumer.commits == [0, 1]
        assert consumer.kwargs["enable_auto_commit"] is False
        assert "value_deserializer" not in consumer.kwargs
        assert store.doc("works", "w1")["displayName"] == "Alicia"
        assert consumer.stopped and store.stopped

    async def test_permanent_failure_is_committed(self, run_worker) -> None:
        store = FlakyStore(failures=1, error=StoreError("permission denied"))
        consumer = run_worker(store, [encoded(rename_event())])

        await worker.main()

        assert consumer.commits == [0]

    async def test_exhausted_transient_failure_is_not_committed(self, run_worker) -> None:
        store = FlakyStore(failures=100, error=TransientStoreError("unavailable"))
        store.add("works", "w1", userID="u1", displayName="Alice")
        consumer = run_worker(store, [encoded(rename_event()), encoded(rename_event("u2"))])

        with pytest.raises(PropagationFailed):
            await worker.main()

        assert consumer.commits == []
        assert store.doc("works", "w1")["displayName"] == "Alice"
        assert consumer.stopped and store.stopped
