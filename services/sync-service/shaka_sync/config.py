"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Firestore rejects batches above 500 operations; one slot is kept as headroom.
FIRESTORE_BATCH_LIMIT = 500
DEFAULT_BATCH_SIZE = FIRESTORE_BATCH_LIMIT - 1


class Settings(BaseSettings):
    # ── Firestore ──────────────────────────────────────────────────────────
    firebase_credentials_path: Optional[str] = None   # None → application default
    firebase_project_id: Optional[str] = None
    users_collection: str = "users"
    post_collections: list[str] = ["works", "questions"]
    owner_field: str = "userID"
    display_name_field: str = "displayName"

    # ── Batching ───────────────────────────────────────────────────────────
    batch_size: int = DEFAULT_BATCH_SIZE

    # ── Backfill ───────────────────────────────────────────────────────────
    backfill_secret: str = ""            # empty → HTTP endpoints always 401
    backfill_grace_seconds: float = 5.0
    write_unit_cost_usd: float = 0.00002

    # ── Stats reconciliation ───────────────────────────────────────────────
    stats_fields: dict[str, str] = {
        "works": "worksCount",
        "questions": "questionsCount",
    }

    # ── Kafka (user-change notifications) ──────────────────────────────────
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_topic_user_changes: str = "user-changes"
    kafka_consumer_group: str = "displayname-sync"
    trigger_max_attempts: int = 3
    trigger_retry_delay: float = 1.0

    # ── Reports ────────────────────────────────────────────────────────────
    report_webhook_url: Optional[str] = None

    # ── Observability ──────────────────────────────────────────────────────
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "displayname-sync"
    environment: str = "development"

    @field_validator("batch_size")
    @classmethod
    def _check_batch_size(cls, value: int) -> int:
        if not 1 <= value <= FIRESTORE_BATCH_LIMIT:
            raise ValueError(
                f"batch_size must be between 1 and {FIRESTORE_BATCH_LIMIT}"
            )
        return value

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
