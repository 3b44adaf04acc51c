"""
Import run API routes.

Run history, progress (polling or Server-Sent Events), cancellation and
the stale-run sweep.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
import asyncio
import json

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, StreamingResponse
import structlog

from models.import_run import (
    ImportRunListResponse,
    ImportRunResponse,
    ImportStatus,
    ProgressEvent,
    ReconcileResponse,
)
from services.import_run_service import get_import_run_service
from services.ingestion_service import get_ingestion_service
from exceptions import AppError
from config import settings

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# ROUTES
# ===================

@router.get("", response_model=ImportRunListResponse)
async def list_import_runs(
    supplier_id: Optional[str] = Query(None, description="Filter by supplier"),
    status: Optional[ImportStatus] = Query(None, description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page")
):
    """List import runs, newest first."""
    try:
        runs, total = get_import_run_service().list_runs(
            supplier_id=supplier_id,
            status=status,
            page=page,
            page_size=page_size
        )
        return ImportRunListResponse.create(runs, total, page, page_size)
    except Exception as e:
        return handle_error(e)


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_stale_runs(
    older_than_minutes: Optional[int] = Query(
        None, ge=1, description="Defaults to import_stale_after_minutes"
    )
):
    """Fail processing runs that never finished (crashed workers)."""
    try:
        minutes = older_than_minutes or settings.import_stale_after_minutes
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
        failed = get_import_run_service().reconcile_stale_runs(minutes)
        return ReconcileResponse(failed_runs=failed, cutoff=cutoff)
    except Exception as e:
        return handle_error(e)


@router.get("/{run_id}", response_model=ImportRunResponse)
async def get_import_run(run_id: str):
    """Get a single import run with its current counts."""
    try:
        return get_import_run_service().get_run(run_id)
    except Exception as e:
        return handle_error(e)


@router.post("/{run_id}/cancel", response_model=ImportRunResponse, status_code=202)
async def cancel_import_run(run_id: str):
    """
    Ask a running import to stop after its current chunk.

    The run ends failed with code IMPORT_CANCELLED. Products already
    inserted stay in place.

    Raises:
        404: Run not found or not running in this process
        422: Run already finished
    """
    try:
        return get_ingestion_service().cancel(run_id)
    except Exception as e:
        return handle_error(e)


@router.get("/{run_id}/stream")
async def stream_import_progress(run_id: str):
    """
    Server-Sent Events stream of a run's progress.

    Each 'data:' event carries a ProgressEvent. The stream ends with an
    'event: close' once the run is completed or failed.

    Example client usage:
    ```javascript
    const source = new EventSource('/api/imports/{run_id}/stream');
    source.onmessage = (e) => console.log(JSON.parse(e.data).imported_rows);
    ```
    """
    runs = get_import_run_service()
    try:
        runs.get_run(run_id)
    except Exception as e:
        return handle_error(e)

    async def event_generator() -> AsyncGenerator[str, None]:
        last_payload = None
        while True:
            try:
                run = runs.get_run(run_id)
            except AppError as e:
                yield f"event: error\ndata: {json.dumps(e.to_dict())}\n\n"
                break

            payload = ProgressEvent.from_run(run).model_dump_json()
            if payload != last_payload:
                last_payload = payload
                yield f"data: {payload}\n\n"

            if run.is_terminal:
                yield "event: close\ndata: {}\n\n"
                break

            await asyncio.sleep(settings.progress_poll_seconds)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
