"""
Manual backfill endpoint:
  POST /backfill                 — rewrite every stale cached displayName
  POST /backfill?dry_run=true    — estimate only, writes nothing

Runs synchronously; meant for operators, not for the request path.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from shaka_sync.clients.notifier import ReportNotifier
from shaka_sync.config import Settings
from shaka_sync.dependencies import (
    get_notifier,
    get_orchestrator,
    get_settings,
    require_bearer_token,
)
from shaka_sync.orchestrator import SyncOrchestrator
from shaka_sync.schemas import BackfillResponse, ErrorResponse

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(require_bearer_token)])


@router.post(
    "",
    response_model=BackfillResponse,
    responses={500: {"model": ErrorResponse}},
)
async def run_backfill(
    dry_run: bool = False,
    continue_on_error: bool = False,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
    notifier: ReportNotifier = Depends(get_notifier),
):
    try:
        if dry_run:
            report = await orchestrator.dry_run(settings.write_unit_cost_usd)
            return BackfillResponse(
                success=True,
                message=(
                    f"Dry run completed. {report.needs_update} posts need update "
                    f"(estimated cost ${report.estimated_cost_usd:.4f} USD)."
                ),
                details=report.to_dict(),
            )
        stats = await orchestrator.backfill(continue_on_error=continue_on_error)
    except Exception as exc:
        logger.exception("Backfill error: %s", exc)
        return JSONResponse(
            status_code=500, content=ErrorResponse(error=str(exc)).model_dump()
        )

    await notifier.send("backfill", stats.to_dict())
    message = f"Backfill completed. Updated {stats.total_updated} posts."
    if stats.errors:
        message += f" {len(stats.errors)} users failed."
    return BackfillResponse(
        success=not stats.errors,
        message=message,
        details=stats.to_dict(),
    )
