#=======================================================================================
# botqueue/routes.py
# Trigger endpoints hit by the external cron, plus the generation health report.
#
# Every endpoint here requires  Authorization: Bearer <CRON_SECRET>.
# Include in main_app.py with NO extra prefix (paths are absolute).
#=======================================================================================

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError

from botqueue.buffer import prune_expired
from botqueue.config import settings
from botqueue.health import build_health_report
from botqueue.jobs.claim import reclaim_stuck_jobs
from botqueue.jobs.context import JobServices, build_services
from botqueue.jobs.processor import process_jobs
from botqueue.scheduler.scheduler import (
    enqueue_buffer_fills,
    enqueue_due_work,
    enqueue_engagement_recalc,
)

logger = logging.getLogger("uvicorn.error")

# ---------------------------
# Bearer secret for triggers
# ---------------------------
security = HTTPBearer(auto_error=False)


def verify_cron_secret(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    expected = settings.CRON_SECRET or ""
    supplied = credentials.credentials if credentials else ""
    # unset secret rejects everything rather than accepting "Bearer "
    if not expected or not secrets.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


router = APIRouter(tags=["Jobs"], dependencies=[Depends(verify_cron_secret)])


# ---------------------------
# Helpers
# ---------------------------
def _services(request: Request) -> JobServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services()
        request.app.state.services = services
    return services


def _store_error(where: str, exc: Exception) -> JSONResponse:
    logger.error("[%s] store error: %s", where, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"success": False, "error": f"{where} failed: {exc.__class__.__name__}"})


# ---------------------------
# Cron triggers
# ---------------------------
@router.get("/api/cron/generate")
async def cron_generate(request: Request):
    """
    Main scheduling tick:
      1) return stuck RUNNING jobs to the queue
      2) enqueue GENERATE_POST / BOT_CYCLE for everything due (fast)
      3) work one batch of the queue within the time budget
    """
    services = _services(request)
    try:
        reclaimed = await reclaim_stuck_jobs()
        enqueue = await enqueue_due_work()
        worker = await process_jobs(settings.WORKER_BATCH_SIZE, services=services)
    except SQLAlchemyError as e:
        return _store_error("generate", e)

    return {
        "success": True,
        "reclaimed": reclaimed,
        "enqueue": enqueue,
        "worker": worker.model_dump(),
    }


@router.get("/api/cron/engagement")
async def cron_engagement():
    try:
        enqueue = await enqueue_engagement_recalc()
    except SQLAlchemyError as e:
        return _store_error("engagement", e)
    return {"success": True, "enqueue": enqueue}


@router.get("/api/cron/buffer")
async def cron_buffer():
    try:
        pruned = await prune_expired()
        enqueue = await enqueue_buffer_fills()
    except SQLAlchemyError as e:
        return _store_error("buffer", e)
    return {"success": True, "pruned": pruned, "enqueue": enqueue}


# ---------------------------
# Internal
# ---------------------------
@router.get("/api/internal/worker/process")
async def worker_process(request: Request):
    """Drain one batch without scheduling anything new."""
    services = _services(request)
    try:
        result = await process_jobs(settings.WORKER_BATCH_SIZE, services=services)
    except SQLAlchemyError as e:
        return _store_error("worker", e)
    return {"success": True, **result.model_dump()}


@router.get("/api/internal/health/generation")
async def generation_health(request: Request):
    services = _services(request)
    try:
        return await build_health_report(services.telemetry)
    except SQLAlchemyError as e:
        return _store_error("health", e)
