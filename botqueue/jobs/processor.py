# ---------------------------
# botqueue/jobs/processor.py
# ---------------------------
# Claims a batch of ready jobs and executes them through the routing table.
#
#   claim_jobs(limit) -> route each job -> handler (throttled where needed)
#   -> succeed_job / fail_job
#
# A failing job is recorded and the batch carries on; only a store error
# while claiming aborts the pass.
from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from botqueue.config import settings
from botqueue.errors import PermanentJobError
from botqueue.jobs.claim import claim_jobs, fail_job, succeed_job
from botqueue.jobs.context import JobContext, JobServices, build_services
from botqueue.jobs.routing import ROUTES, Route
from botqueue.models.jobs import Job, JobStatus, JobType

logger = logging.getLogger("uvicorn.error")

BUDGET_EXCEEDED = "Worker time budget exceeded"


class ProcessResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)


def _message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _resolve(job: Job, routes: Dict[JobType, Route]) -> Route:
    try:
        job_type = JobType(job.type)
    except ValueError:
        raise PermanentJobError(f"Unknown job type: {job.type}") from None
    route = routes.get(job_type)
    if route is None:
        raise PermanentJobError(f"Unknown job type: {job.type}")
    if route.requires_bot and not job.bot_id:
        raise PermanentJobError(f"{job.type} requires botId")
    return route


async def _execute(job: Job, services: JobServices, routes: Dict[JobType, Route], deadline: float) -> None:
    route = _resolve(job, routes)
    ctx = JobContext(
        job_id=job.id,
        job_type=JobType(job.type),
        services=services,
        payload=job.payload_dict(),
        attempt=job.attempts,
    )
    if route.throttled:
        async with services.throttle.slot(deadline):
            await route.handler(job.bot_id, ctx)
    else:
        await route.handler(job.bot_id, ctx)


async def _record_failure(job: Job, message: str, services: JobServices, *, permanent: bool = False) -> None:
    status = await fail_job(job.id, message, permanent=permanent)
    if status == JobStatus.FAILED.value:
        await services.events.emit("job.failed", jobId=job.id, type=job.type, botId=job.bot_id, error=message)


async def _run(job: Job, services: JobServices, routes: Dict[JobType, Route], deadline: float) -> Optional[str]:
    """Run one job and record its outcome. Returns the error message, or None on success."""
    try:
        await _execute(job, services, routes, deadline)
    except Exception as e:
        message = _message(e)
        logger.warning("[WORKER] job %s (%s) bot=%s failed: %s", job.id, job.type, job.bot_id, message)
        await _record_failure(job, message, services, permanent=isinstance(e, PermanentJobError))
        return message
    await succeed_job(job.id)
    return None


async def process_jobs(
    limit: Optional[int] = None,
    services: Optional[JobServices] = None,
    routes: Optional[Dict[JobType, Route]] = None,
    budget_seconds: Optional[float] = None,
) -> ProcessResult:
    """
    Claim up to `limit` ready jobs and execute them concurrently.
    Jobs still running when the time budget runs out are cancelled and
    failed (retryable) so the next pass picks them up.
    """
    limit = settings.WORKER_BATCH_SIZE if limit is None else limit
    result = ProcessResult()
    if limit <= 0:
        return result

    jobs = await claim_jobs(limit)
    if not jobs:
        return result

    services = services or build_services()
    routes = routes if routes is not None else ROUTES
    budget = settings.WORKER_MAX_SECONDS if budget_seconds is None else budget_seconds
    deadline = time.monotonic() + budget

    started = time.monotonic()
    tasks = [asyncio.create_task(_run(job, services, routes, deadline)) for job in jobs]
    _, pending = await asyncio.wait(tasks, timeout=max(0.0, budget))
    if pending:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        logger.warning("[WORKER] time budget (%.0fs) exceeded with %d job(s) unfinished", budget, len(pending))

    for job, task in zip(jobs, tasks):
        result.processed += 1
        if task.cancelled():
            error: Optional[str] = BUDGET_EXCEEDED
            await _record_failure(job, BUDGET_EXCEEDED, services)
        else:
            exc = task.exception()
            if exc is not None:
                # recording the outcome failed; the job stays RUNNING until reclaimed
                logger.error("[WORKER] could not record outcome of job %s", job.id, exc_info=exc)
                error = _message(exc)
            else:
                error = task.result()

        if error is None:
            result.succeeded += 1
        else:
            result.failed += 1
            result.errors.append(f"Job {job.id} ({job.type}): {error}")

    logger.info(
        "[WORKER] processed=%d succeeded=%d failed=%d in %.1fs",
        result.processed, result.succeeded, result.failed, time.monotonic() - started,
    )
    return result
