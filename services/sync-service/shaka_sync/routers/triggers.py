"""
Reactive trigger endpoint — called by the database's change notification
(or any relay of it) with the before/after images of users/{user_id}.

A failed propagation answers 503 when a retry can help, 500 otherwise, so the
caller's retry policy decides what happens next.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from opentelemetry import trace

from shaka_sync.dependencies import get_orchestrator, require_bearer_token
from shaka_sync.errors import PropagationFailed
from shaka_sync.orchestrator import SyncOrchestrator
from shaka_sync.schemas import SyncResult, UserSnapshots

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(require_bearer_token)])
tracer = trace.get_tracer(__name__)


@router.post("/users/{user_id}", response_model=SyncResult)
async def user_updated(
    user_id: str,
    body: UserSnapshots,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    with tracer.start_as_current_span("user_updated_trigger") as span:
        span.set_attribute("user.id", user_id)
        try:
            return await orchestrator.handle_user_update(user_id, body.before, body.after)
        except PropagationFailed as exc:
            code = (
                status.HTTP_503_SERVICE_UNAVAILABLE
                if exc.retryable
                else status.HTTP_500_INTERNAL_SERVER_ERROR
            )
            raise HTTPException(status_code=code, detail=str(exc)) from exc
