# ---------------------------
# botqueue/jobs/claim.py
# ---------------------------
# Atomically claims jobs that are ready to run and records their outcome.
#
# Candidates are selected with FOR UPDATE SKIP LOCKED (Postgres) and each one
# is then locked with a compare-and-set UPDATE on its status, so overlapping
# workers never receive the same job even on dialects without row locks.
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from botqueue.config import settings
from botqueue.db import get_sessionmaker, utcnow
from botqueue.models.jobs import (
    Job,
    JobStatus,
    RUNNABLE_STATUSES,
    TERMINAL_STATUSES,
)

logger = logging.getLogger("uvicorn.error")

MAX_ERROR_LEN = 2000


def compute_backoff(attempts: int) -> timedelta:
    """base * 2^attempts seconds, capped at JOB_BACKOFF_MAX_SECONDS."""
    base = max(1, settings.JOB_BACKOFF_BASE_SECONDS)
    cap = max(base, settings.JOB_BACKOFF_MAX_SECONDS)
    # keep the exponent bounded so large attempt counts don't build huge ints
    seconds = base * (2 ** min(max(attempts, 0), 32))
    return timedelta(seconds=min(seconds, cap))


async def _lock_job(session: AsyncSession, job_id: str, now: datetime) -> bool:
    result = await session.execute(
        update(Job)
        .where(Job.id == job_id, Job.status.in_(RUNNABLE_STATUSES))
        .values(
            status=JobStatus.RUNNING.value,
            locked_at=now,
            attempts=Job.attempts + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def claim_jobs(limit: int = 10, *, now: Optional[datetime] = None) -> List[Job]:
    """
    Atomically claim up to `limit` jobs that are ready to run.

    1. SELECT ids WHERE status IN (QUEUED, RETRY) AND scheduled_at <= now
       ORDER BY scheduled_at, id  FOR UPDATE SKIP LOCKED
    2. UPDATE each to RUNNING (only if still runnable), lock + attempts += 1
    3. Return the rows that were actually locked by this call
    """
    if limit <= 0:
        return []
    now = now or utcnow()

    async with get_sessionmaker()() as session:
        async with session.begin():
            ready = (
                await session.execute(
                    select(Job.id)
                    .where(Job.status.in_(RUNNABLE_STATUSES), Job.scheduled_at <= now)
                    .order_by(Job.scheduled_at.asc(), Job.id.asc())
                    .limit(limit)
                    .with_for_update(skip_locked=True)
                )
            ).scalars().all()

            if not ready:
                return []

            claimed_ids = [job_id for job_id in ready if await _lock_job(session, job_id, now)]
            if len(claimed_ids) != len(ready):
                logger.info("[CLAIM] lost %d job(s) to a concurrent worker", len(ready) - len(claimed_ids))
            if not claimed_ids:
                return []

            jobs = (
                await session.execute(
                    select(Job)
                    .where(Job.id.in_(claimed_ids))
                    .order_by(Job.scheduled_at.asc(), Job.id.asc())
                    .execution_options(populate_existing=True)
                )
            ).scalars().all()

    logger.info("[CLAIM] claimed %d job(s)", len(jobs))
    return list(jobs)


async def succeed_job(job_id: str, *, now: Optional[datetime] = None) -> bool:
    """
    Mark a job as succeeded. Returns False (and changes nothing) when the
    job is missing or already terminal.
    """
    now = now or utcnow()
    async with get_sessionmaker()() as session:
        async with session.begin():
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status.not_in(TERMINAL_STATUSES))
                .values(
                    status=JobStatus.SUCCEEDED.value,
                    locked_at=None,
                    finished_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
    return result.rowcount == 1


async def fail_job(
    job_id: str,
    error: str,
    *,
    permanent: bool = False,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """
    Mark a job as failed. If it has attempts left (and the failure is not
    permanent) schedule a retry with exponential backoff, otherwise mark it
    FAILED. Returns the resulting status, or None if the job does not exist.
    """
    now = now or utcnow()
    async with get_sessionmaker()() as session:
        async with session.begin():
            job = await session.get(Job, job_id, with_for_update=True)
            if job is None:
                logger.warning("[CLAIM] fail_job: job %s not found", job_id)
                return None
            if job.status in TERMINAL_STATUSES:
                return job.status

            job.last_error = (error or "Unknown error")[:MAX_ERROR_LEN]
            job.locked_at = None
            job.updated_at = now

            if not permanent and job.attempts < job.max_attempts:
                job.status = JobStatus.RETRY.value
                job.scheduled_at = now + compute_backoff(job.attempts)
                logger.info(
                    "[CLAIM] job %s (%s) retry %d/%d at %s: %s",
                    job.id, job.type, job.attempts, job.max_attempts, job.scheduled_at, job.last_error,
                )
            else:
                job.status = JobStatus.FAILED.value
                job.finished_at = now
                logger.warning(
                    "[CLAIM] job %s (%s) FAILED after %d attempt(s)%s: %s",
                    job.id, job.type, job.attempts, " (permanent)" if permanent else "", job.last_error,
                )
            return job.status


async def reclaim_stuck_jobs(
    stale_after: Optional[timedelta] = None,
    *,
    now: Optional[datetime] = None,
) -> int:
    """
    Return RUNNING jobs whose lock is older than `stale_after` to a runnable
    state (their worker died). They always go back to RETRY; the attempt cap
    is applied by fail_job when the rerun fails.
    """
    now = now or utcnow()
    stale_after = stale_after if stale_after is not None else timedelta(minutes=settings.STUCK_JOB_MINUTES)
    cutoff = now - stale_after

    reclaimed = 0
    async with get_sessionmaker()() as session:
        async with session.begin():
            stuck = (
                await session.execute(
                    select(Job)
                    .where(
                        Job.status == JobStatus.RUNNING.value,
                        Job.locked_at.is_not(None),
                        Job.locked_at < cutoff,
                    )
                    .with_for_update(skip_locked=True)
                )
            ).scalars().all()

            for job in stuck:
                message = f"Stuck in RUNNING since {job.locked_at.isoformat(timespec='seconds')}Z; worker presumed dead"
                job.last_error = message
                job.locked_at = None
                job.updated_at = now
                job.status = JobStatus.RETRY.value
                job.scheduled_at = now
                reclaimed += 1

    if reclaimed:
        logger.warning("[CLAIM] reclaimed %d stuck job(s) older than %s", reclaimed, stale_after)
    return reclaimed
