"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics for fan-out writes, batch commits and no-op triggers

Tracing is initialised once per process by the API and worker entry points.
"""
import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
DISPLAYNAME_WRITES_TOTAL = Counter(
    "displayname_writes_total",
    "Post documents whose cached displayName was rewritten",
    ["mode"],  # 'reactive' | 'backfill'
)

BATCH_COMMITS_TOTAL = Counter(
    "batch_commits_total",
    "Atomic batch commits issued against the document store",
    ["outcome"],  # 'ok' | 'error'
)

NOOP_TRIGGERS_TOTAL = Counter(
    "noop_triggers_total",
    "User update events that did not change the displayName",
)

PROPAGATION_LATENCY = Histogram(
    "propagation_latency_seconds",
    "End-to-end latency of a reactive displayName propagation",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

STATS_CORRECTIONS_TOTAL = Counter(
    "stats_corrections_total",
    "User stats documents corrected after a count mismatch",
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing(service_name: str, endpoint: str, environment: str = "development") -> None:
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    resource = Resource.create(
        {
            "service.name": service_name,
            "deployment.environment": environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info("OTel tracing configured → %s", endpoint)
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)
    HTTPXClientInstrumentor().instrument()


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    FastAPIInstrumentor.instrument_app(app)
