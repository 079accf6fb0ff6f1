"""
displayName Sync API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Initialise the Firestore client (unless one was injected)
  3. Start the report notifier HTTP client
  4. Expose Prometheus /metrics endpoint

Routes:
  POST /triggers/users/{user_id} — reactive fan-out for one profile update
  POST /backfill                 — full backfill / dry run
  GET  /health
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from shaka_sync.clients.firestore_client import FirestoreStore
from shaka_sync.clients.notifier import ReportNotifier
from shaka_sync.config import Settings, settings
from shaka_sync.errors import AuthorizationError
from shaka_sync.orchestrator import SyncOrchestrator
from shaka_sync.routers import backfill, triggers
from shaka_sync.store import DocumentStore
from shaka_sync.telemetry import instrument_app, setup_tracing

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    app_settings: Settings = settings,
    store: Optional[DocumentStore] = None,
    notifier: Optional[ReportNotifier] = None,
) -> FastAPI:
    if app_settings.tracing_enabled:
        setup_tracing(
            app_settings.service_name,
            app_settings.otel_exporter_otlp_endpoint,
            app_settings.environment,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup and shutdown of all external connections."""
        logger.info("Starting displayName Sync API (env=%s)", app_settings.environment)

        owned_store = None
        if app.state.orchestrator is None:
            owned_store = FirestoreStore.from_settings(app_settings)
            owned_store.start()
            app.state.orchestrator = SyncOrchestrator.from_settings(owned_store, app_settings)
        await app.state.notifier.start()

        logger.info("All services connected. API ready.")
        yield

        logger.info("Shutting down...")
        await app.state.notifier.stop()
        if owned_store is not None:
            owned_store.stop()

    app = FastAPI(
        title="displayName Sync API",
        description=(
            "Keeps the cached displayName on works / questions in step with "
            "users/{uid}: reactive fan-out plus idempotent backfill."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.orchestrator = (
        SyncOrchestrator.from_settings(store, app_settings) if store is not None else None
    )
    app.state.notifier = notifier or ReportNotifier(app_settings.report_webhook_url)

    @app.exception_handler(AuthorizationError)
    async def unauthorized(request: Request, exc: AuthorizationError):
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED, content={"detail": "Unauthorized"}
        )

    # ── Routers ────────────────────────────────────────────────────────────
    app.include_router(triggers.router, prefix="/triggers", tags=["Triggers"])
    app.include_router(backfill.router, prefix="/backfill", tags=["Backfill"])

    # ── Prometheus metrics endpoint ────────────────────────────────────────
    app.mount("/metrics", make_asgi_app())

    if app_settings.tracing_enabled:
        instrument_app(app)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "service": app_settings.service_name}

    return app


app = create_app()
