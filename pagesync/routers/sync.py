import hmac
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from pagesync.dependencies import Services, get_services
from pagesync.models.sync import RecordOutcome, SyncReport, SyncRunResponse, SyncState
from pagesync.models.webhook import WebhookRequest
from pagesync.services.errors import AdapterError, SyncInProgressError

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter(prefix="/api")

_WEBHOOK_EVENTS = {"page.update", "page.created", "page.updated"}


@router.api_route(
    "/sync",
    methods=["GET", "POST"],
    response_model=SyncRunResponse,
    summary="Poll the content source and sync one or all datasources",
)
@limiter.limit("10/minute")
async def trigger_sync(
    request: Request,
    datasource: Optional[str] = Query(default=None, description="Datasource to sync; all configured when omitted."),
    since: Optional[str] = Query(default=None, description="Explicit cursor, overrides the stored one."),
    sync_all: bool = Query(default=False, description="Ignore the stored cursor and fetch everything."),
    secret: Optional[str] = Query(default=None),
    services: Services = Depends(get_services),
):
    """Run a sync and report per-datasource outcomes.

    Answers 409 when the requested datasource is already syncing and 502 when
    any sync failed (content source or store unreachable).
    """
    _check_secret(request, secret, services)

    if datasource:
        if not services.knows(datasource):
            raise HTTPException(status_code=404, detail=f"Datasource '{datasource}' is not configured.")
        try:
            reports = [
                await services.coordinator.sync_datasource(datasource, sync_all=sync_all, since=since)
            ]
        except SyncInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
    else:
        if not services.datasources:
            raise HTTPException(status_code=404, detail="No datasources configured.")
        reports = await services.coordinator.sync_many(services.datasources, sync_all=sync_all, since=since)

    logger.info("Sync request finished", extra={"datasources": [r.datasource_id for r in reports]})
    return _reports_response(SyncRunResponse(since=since, reports=reports), reports)


@router.post("/webhook", summary="Re-sync a single page the content source reports as changed")
async def webhook(
    request: Request,
    body: WebhookRequest,
    secret: Optional[str] = Query(default=None),
    services: Services = Depends(get_services),
):
    """The payload only identifies the page; its content is always re-fetched from the source."""
    _check_secret(request, secret, services)

    if body.event not in _WEBHOOK_EVENTS or not body.page:
        logger.debug("Ignoring webhook event %s", body.event)
        return {"message": f"Ignoring '{body.event}' event"}

    datasource_id = body.resolve_datasource()
    if not datasource_id:
        raise HTTPException(status_code=400, detail="Webhook payload does not name a datasource.")
    if not services.knows(datasource_id):
        raise HTTPException(status_code=404, detail=f"Datasource '{datasource_id}' is not configured.")

    page_id = body.page.get("page_id") or body.page.get("id")
    if not page_id:
        raise HTTPException(status_code=400, detail="Webhook payload has no page id.")
    try:
        record = await services.source.fetch_page(datasource_id, str(page_id))
    except AdapterError as exc:
        logger.error("Webhook fetch failed for %s: %s", page_id, exc)
        raise HTTPException(status_code=502, detail=str(exc))

    try:
        report = await services.coordinator.sync_page(datasource_id, record)
    except SyncInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    return _webhook_response(report)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _check_secret(request: Request, secret: Optional[str], services: Services) -> None:
    if not services.sync_secret:
        return
    provided = secret or ""
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        provided = auth[7:].strip()
    if not hmac.compare_digest(provided, services.sync_secret):
        logger.warning("Unauthorized sync attempt from %s", get_remote_address(request))
        raise HTTPException(status_code=401, detail="Unauthorized")


def _reports_response(payload: SyncRunResponse, reports: List[SyncReport]):
    if any(r.status is SyncState.FAILED for r in reports):
        return JSONResponse(status_code=502, content=payload.model_dump(mode="json"))
    return payload


def _webhook_response(report: SyncReport) -> JSONResponse:
    status_code = 200
    if report.status is SyncState.FAILED:
        status_code = 502
    elif report.failures:
        status_code = {
            RecordOutcome.SKIPPED_INVALID: 422,
            RecordOutcome.CONFLICT: 409,
            RecordOutcome.FAILED: 500,
        }[report.failures[0].outcome]
    return JSONResponse(status_code=status_code, content=report.model_dump(mode="json"))
