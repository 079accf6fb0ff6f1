"""FastAPI dependencies shared by the routers."""
import secrets
from typing import Optional

from fastapi import Depends, Header, Request

from shaka_sync.clients.notifier import ReportNotifier
from shaka_sync.config import Settings
from shaka_sync.errors import AuthorizationError
from shaka_sync.orchestrator import SyncOrchestrator


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> SyncOrchestrator:
    orchestrator = request.app.state.orchestrator
    if orchestrator is None:
        raise RuntimeError("Document store not initialised")
    return orchestrator


def get_notifier(request: Request) -> ReportNotifier:
    return request.app.state.notifier


async def require_bearer_token(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject unless `Authorization: Bearer <backfill_secret>` matches exactly."""
    expected = settings.backfill_secret
    if not expected or not authorization:
        raise AuthorizationError("missing bearer token")
    if not secrets.compare_digest(
        authorization.encode("utf-8"), f"Bearer {expected}".encode("utf-8")
    ):
        raise AuthorizationError("bad bearer token")
