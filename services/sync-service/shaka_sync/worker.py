"""
Trigger worker — Kafka consumer for users/{uid} change events.

For every 'user-changes' message {user_id, before, after}:
  1. Decode the raw bytes; undecodable or schema-invalid messages are logged
     and skipped.
  2. Hand the snapshots to SyncOrchestrator.handle_user_update().
  3. Retry retryable failures in-process with exponential backoff.
  4. Commit the offset once the event succeeded or failed permanently. A
     retryable failure that outlives its attempts stops the worker without a
     commit, so the event is redelivered on restart. At-least-once delivery is
     safe given the idempotent planner.
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from aiokafka import AIOKafkaConsumer
from opentelemetry import trace
from pydantic import ValidationError

from shaka_sync.clients.firestore_client import FirestoreStore
from shaka_sync.config import settings
from shaka_sync.errors import PropagationFailed
from shaka_sync.orchestrator import SyncOrchestrator
from shaka_sync.schemas import SyncResult, UserChangeEvent
from shaka_sync.telemetry import setup_tracing

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def decode_event(raw: bytes | dict[str, Any]) -> UserChangeEvent | None:
    """Parse a message value. Returns None when it cannot be a change event."""
    try:
        payload = json.loads(raw.decode("utf-8")) if isinstance(raw, bytes) else raw
        return UserChangeEvent.model_validate(payload)
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
        logger.warning("Malformed user-change event %r: %s", raw, exc)
        return None


async def process_message(
    raw: bytes | dict[str, Any],
    orchestrator: SyncOrchestrator,
    max_attempts: int = 3,
    retry_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> SyncResult | None:
    """
    Handle one change event. Returns None when the event was dropped, either
    malformed or failed permanently. Raises PropagationFailed when a retryable
    failure is still failing after max_attempts.
    """
    event = decode_event(raw)
    if event is None:
        return None

    with tracer.start_as_current_span("user_change") as span:
        span.set_attribute("user.id", event.user_id)
        delay = retry_delay
        for attempt in range(1, max_attempts + 1):
            try:
                return await orchestrator.handle_user_update(
                    event.user_id, event.before, event.after
                )
            except PropagationFailed as exc:
                if not exc.retryable:
                    logger.error(
                        "Dropping event for user %s after permanent failure: %s",
                        event.user_id, exc,
                    )
                    return None
                if attempt == max_attempts:
                    logger.error(
                        "User %s still failing after %d attempt(s): %s",
                        event.user_id, attempt, exc,
                    )
                    raise
                logger.warning(
                    "Attempt %d/%d for user %s failed: %s — retrying in %.1fs",
                    attempt, max_attempts, event.user_id, exc, delay,
                )
                await sleep(delay)
                delay *= 2
    return None


# ─────────────────────────── Main Loop ───────────────────────────────────

async def main() -> None:
    if settings.tracing_enabled:
        setup_tracing(
            settings.service_name,
            settings.otel_exporter_otlp_endpoint,
            settings.environment,
        )

    store = FirestoreStore.from_settings(settings)
    store.start()
    orchestrator = SyncOrchestrator.from_settings(store, settings)

    consumer = AIOKafkaConsumer(
        settings.kafka_topic_user_changes,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=settings.kafka_consumer_group,
        auto_offset_reset="earliest",
        enable_auto_commit=False,
    )
    await consumer.start()
    logger.info(
        "Sync worker listening on topic '%s'", settings.kafka_topic_user_changes
    )

    try:
        async for msg in consumer:
            try:
                await process_message(
                    msg.value,
                    orchestrator,
                    max_attempts=settings.trigger_max_attempts,
                    retry_delay=settings.trigger_retry_delay,
                )
            except PropagationFailed:
                logger.exception(
                    "Stopping without committing offset %d on %s[%d]",
                    msg.offset, msg.topic, msg.partition,
                )
                raise
            await consumer.commit()
    finally:
        await consumer.stop()
        store.stop()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    )
    asyncio.run(main())
