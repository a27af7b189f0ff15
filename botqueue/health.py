#=================================================================
# botqueue/health.py
# Queue counts + generation telemetry for the monitoring endpoint.
#=================================================================
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func, select

from botqueue.config import settings
from botqueue.db import get_sessionmaker, utcnow
from botqueue.models.jobs import Job, JobStatus
from botqueue.telemetry import TelemetryBuffer

logger = logging.getLogger("uvicorn.error")

RECENT_FAILURES = 10
RECENT_TELEMETRY = 20


def _status(queue: Dict[str, int], telemetry: Dict[str, Any]) -> str:
    if queue["stuckJobs"] > 0:
        return "degraded"
    if telemetry["totalCalls"] >= 5 and telemetry["successRate"] < 50:
        return "degraded"
    return "healthy"


async def build_health_report(telemetry: TelemetryBuffer, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    day_ago = now - timedelta(hours=24)
    stuck_cutoff = now - timedelta(minutes=settings.STUCK_JOB_MINUTES)

    async with get_sessionmaker()() as session:
        by_status = dict(
            (
                await session.execute(
                    select(Job.status, func.count(Job.id))
                    .where(Job.status.in_([JobStatus.QUEUED.value, JobStatus.RUNNING.value, JobStatus.RETRY.value]))
                    .group_by(Job.status)
                )
            ).all()
        )
        finished = dict(
            (
                await session.execute(
                    select(Job.status, func.count(Job.id))
                    .where(
                        Job.status.in_([JobStatus.FAILED.value, JobStatus.SUCCEEDED.value]),
                        Job.updated_at >= day_ago,
                    )
                    .group_by(Job.status)
                )
            ).all()
        )
        stuck = (
            await session.execute(
                select(func.count(Job.id)).where(
                    Job.status == JobStatus.RUNNING.value,
                    Job.locked_at.is_not(None),
                    Job.locked_at < stuck_cutoff,
                )
            )
        ).scalar_one()
        recent_failures = (
            await session.execute(
                select(Job)
                .where(Job.status == JobStatus.FAILED.value)
                .order_by(Job.updated_at.desc(), Job.id.desc())
                .limit(RECENT_FAILURES)
            )
        ).scalars().all()

    queue = {
        "queued": by_status.get(JobStatus.QUEUED.value, 0),
        "running": by_status.get(JobStatus.RUNNING.value, 0),
        "retry": by_status.get(JobStatus.RETRY.value, 0),
        "failedLast24h": finished.get(JobStatus.FAILED.value, 0),
        "succeededLast24h": finished.get(JobStatus.SUCCEEDED.value, 0),
        "stuckJobs": stuck,
    }
    stats = telemetry.stats(recent=RECENT_TELEMETRY)
    recent_entries = stats.pop("recentEntries")

    report = {
        "status": _status(queue, stats),
        "timestamp": now.isoformat(timespec="seconds") + "Z",
        "queue": queue,
        "telemetry": stats,
        "recentFailures": [
            {
                "id": j.id,
                "type": j.type,
                "botId": j.bot_id,
                "error": j.last_error,
                "attempts": j.attempts,
                "failedAt": j.to_dict()["updatedAt"],
            }
            for j in recent_failures
        ],
        "recentTelemetry": recent_entries,
    }
    if report["status"] != "healthy":
        logger.warning("[HEALTH] status=%s queue=%s", report["status"], queue)
    return report
