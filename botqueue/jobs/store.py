# ---------------------------
# botqueue/jobs/store.py
# ---------------------------
# Creates jobs in the queue for async processing by the worker.
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from botqueue.config import settings
from botqueue.db import get_sessionmaker, utcnow
from botqueue.models.jobs import Job, JobType, JobStatus, PENDING_STATUSES

logger = logging.getLogger("uvicorn.error")


@dataclass
class EnqueueParams:
    type: JobType
    bot_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    run_at: Optional[datetime] = None
    max_attempts: Optional[int] = None


def _build_job(params: EnqueueParams, now: datetime) -> Job:
    return Job(
        type=JobType(params.type).value,
        bot_id=params.bot_id,
        payload=json.dumps(params.payload or {}, ensure_ascii=False, default=str),
        status=JobStatus.QUEUED.value,
        attempts=0,
        max_attempts=params.max_attempts or settings.JOB_MAX_ATTEMPTS,
        scheduled_at=params.run_at or now,
        created_at=now,
        updated_at=now,
    )


async def enqueue_job(
    type: JobType,
    bot_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    run_at: Optional[datetime] = None,
    max_attempts: Optional[int] = None,
) -> Job:
    """Enqueue a single job for async processing."""
    job = _build_job(EnqueueParams(type, bot_id, payload or {}, run_at, max_attempts), utcnow())
    async with get_sessionmaker()() as session:
        async with session.begin():
            session.add(job)
    logger.info("[QUEUE] enqueued %s bot=%s id=%s", job.type, job.bot_id, job.id)
    return job


async def enqueue_jobs(jobs: List[EnqueueParams]) -> int:
    """
    Enqueue multiple jobs in a single transaction.
    Used by the scheduler to batch-enqueue all due bots.
    """
    if not jobs:
        return 0
    now = utcnow()
    rows = [_build_job(p, now) for p in jobs]
    async with get_sessionmaker()() as session:
        async with session.begin():
            session.add_all(rows)
    logger.info("[QUEUE] enqueued %d job(s)", len(rows))
    return len(rows)


async def has_pending_job(bot_id: Optional[str], type: JobType) -> bool:
    """
    Check if a bot already has a queued, retrying or running job of a given type.
    Advisory only: two overlapping triggers can both see False.
    """
    stmt = (
        select(Job.id)
        .where(
            Job.type == JobType(type).value,
            Job.status.in_(PENDING_STATUSES),
            Job.bot_id.is_(None) if bot_id is None else Job.bot_id == bot_id,
        )
        .limit(1)
    )
    async with get_sessionmaker()() as session:
        existing = (await session.execute(stmt)).scalar_one_or_none()
    return existing is not None


async def get_job(job_id: str) -> Optional[Job]:
    async with get_sessionmaker()() as session:
        return await session.get(Job, job_id)
