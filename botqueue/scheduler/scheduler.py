#=================================================================
# botqueue/scheduler/scheduler.py
# Decides which bots are due for work and enqueues jobs for them.
# Never generates anything itself, so a trigger always returns quickly.
#=================================================================
from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import or_, select, update

from botqueue.buffer import live_buffer_counts
from botqueue.config import settings
from botqueue.db import get_sessionmaker, utcnow
from botqueue.jobs.store import EnqueueParams, enqueue_jobs, has_pending_job
from botqueue.models.bots import AGENT_MODE_AUTONOMOUS, AGENT_MODE_SCHEDULED, Bot
from botqueue.models.jobs import JobType
from botqueue.scheduler.rhythm import (
    DEFAULT_WINDOW,
    PostingWindow,
    calculate_next_cycle,
    calculate_next_post_time,
)

logger = logging.getLogger("uvicorn.error")


# ---------------------------
# Helpers
# ---------------------------

def _local_tz():
    try:
        return ZoneInfo(settings.SCHEDULER_TIMEZONE or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("[SCHED] unknown SCHEDULER_TIMEZONE=%r; using UTC", settings.SCHEDULER_TIMEZONE)
        return timezone.utc


def _to_local(utc_naive: datetime) -> datetime:
    return utc_naive.replace(tzinfo=timezone.utc).astimezone(_local_tz())


def _to_utc_naive(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _eligible():
    """Filters shared by every AI-work selection."""
    return (
        Bot.is_scheduled.is_(True),
        Bot.is_byob.is_(False),
        Bot.deactivated_at.is_(None),
        Bot.owner_tier.in_(settings.AI_TIERS),
    )


async def _select_ids(*criteria) -> List[str]:
    async with get_sessionmaker()() as session:
        rows = await session.execute(select(Bot.id).where(*criteria).order_by(Bot.id))
        return list(rows.scalars().all())


async def _enqueue_missing(bot_ids: List[str], job_type: JobType, source: str) -> Dict[str, int]:
    params: List[EnqueueParams] = []
    skipped = 0
    for bot_id in bot_ids:
        # best-effort: a concurrent trigger can still slip one duplicate in
        if await has_pending_job(bot_id, job_type):
            skipped += 1
            continue
        params.append(EnqueueParams(type=job_type, bot_id=bot_id, payload={"source": source}))
    enqueued = await enqueue_jobs(params)
    return {"enqueued": enqueued, "due": len(bot_ids), "skipped": skipped}


# ---------------------------
# Enqueue passes
# ---------------------------

async def enqueue_scheduled_bots(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    GENERATE_POST for every fixed-schedule bot whose next_post_at has passed.
    Also queues one CREW_COMMENT so other bots can react to the new posts.
    """
    now = now or utcnow()
    due = await _select_ids(
        *_eligible(),
        or_(Bot.agent_mode.is_(None), Bot.agent_mode == AGENT_MODE_SCHEDULED),
        Bot.next_post_at.is_not(None),
        Bot.next_post_at <= now,
    )
    result: Dict[str, Any] = await _enqueue_missing(due, JobType.GENERATE_POST, "scheduler")

    result["crew"] = False
    if result["enqueued"] > 0 and not await has_pending_job(None, JobType.CREW_COMMENT):
        await enqueue_jobs([EnqueueParams(type=JobType.CREW_COMMENT, payload={"source": "scheduler"})])
        result["crew"] = True

    if due:
        logger.info(
            "[SCHED] scheduled bots due=%d enqueued=%d skipped=%d crew=%s",
            result["due"], result["enqueued"], result["skipped"], result["crew"],
        )
    return result


async def enqueue_agent_cycles(now: Optional[datetime] = None) -> Dict[str, Any]:
    """BOT_CYCLE for every autonomous bot that never cycled or is due."""
    now = now or utcnow()
    due = await _select_ids(
        *_eligible(),
        Bot.agent_mode == AGENT_MODE_AUTONOMOUS,
        or_(Bot.next_cycle_at.is_(None), Bot.next_cycle_at <= now),
    )
    result = await _enqueue_missing(due, JobType.BOT_CYCLE, "scheduler")
    if due:
        logger.info(
            "[SCHED] agent cycles due=%d enqueued=%d skipped=%d",
            result["due"], result["enqueued"], result["skipped"],
        )
    return result


async def enqueue_due_work(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    return {
        "scheduled": await enqueue_scheduled_bots(now),
        "agents": await enqueue_agent_cycles(now),
    }


async def enqueue_engagement_recalc() -> Dict[str, Any]:
    if await has_pending_job(None, JobType.RECALC_ENGAGEMENT):
        return {"enqueued": 0, "skipped": 1}
    await enqueue_jobs([EnqueueParams(type=JobType.RECALC_ENGAGEMENT, payload={"source": "cron"})])
    return {"enqueued": 1, "skipped": 0}


async def enqueue_buffer_fills(now: Optional[datetime] = None) -> Dict[str, Any]:
    """PREGENERATE_BUFFER for scheduled bots whose content buffer is running low."""
    now = now or utcnow()
    candidates = await _select_ids(
        *_eligible(),
        or_(Bot.agent_mode.is_(None), Bot.agent_mode == AGENT_MODE_SCHEDULED),
    )
    counts = await live_buffer_counts(candidates, now)
    needing = [b for b in candidates if counts.get(b, 0) < settings.BUFFER_MAX_PER_BOT]
    needing = needing[: settings.BUFFER_MAX_BOTS_PER_RUN]
    result = await _enqueue_missing(needing, JobType.PREGENERATE_BUFFER, "buffer")
    result["candidates"] = len(candidates)
    logger.info("[SCHED] buffer fills candidates=%d enqueued=%d", len(candidates), result["enqueued"])
    return result


# ---------------------------
# Bot scheduling state
# ---------------------------

async def get_bot(bot_id: str) -> Optional[Bot]:
    async with get_sessionmaker()() as session:
        return await session.get(Bot, bot_id)


async def enable_scheduling(bot_id: str, *, now: Optional[datetime] = None, rng=random) -> datetime:
    now = now or utcnow()
    async with get_sessionmaker()() as session:
        async with session.begin():
            bot = await session.get(Bot, bot_id)
            if bot is None:
                raise LookupError(f"Bot not found: {bot_id}")
            next_post = _to_utc_naive(calculate_next_post_time(bot.posts_per_day, _to_local(now), rng=rng))
            bot.is_scheduled = True
            bot.next_post_at = next_post
    logger.info("[SCHED] scheduling enabled for bot=%s next_post_at=%s", bot_id, next_post)
    return next_post


async def disable_scheduling(bot_id: str) -> None:
    async with get_sessionmaker()() as session:
        async with session.begin():
            await session.execute(
                update(Bot).where(Bot.id == bot_id).values(is_scheduled=False, next_post_at=None)
            )
    logger.info("[SCHED] scheduling disabled for bot=%s", bot_id)


async def schedule_next_post(
    bot_id: str,
    *,
    window: Optional[PostingWindow] = None,
    now: Optional[datetime] = None,
    rng=random,
) -> Optional[datetime]:
    """After a successful post: record it and push next_post_at forward."""
    now = now or utcnow()
    async with get_sessionmaker()() as session:
        async with session.begin():
            bot = await session.get(Bot, bot_id)
            if bot is None:
                logger.warning("[SCHED] schedule_next_post: bot %s vanished", bot_id)
                return None
            local_next = calculate_next_post_time(
                bot.posts_per_day, _to_local(now), window=window or DEFAULT_WINDOW, rng=rng,
            )
            bot.next_post_at = _to_utc_naive(local_next)
            bot.last_posted_at = now
            next_post = bot.next_post_at
    logger.info("[SCHED] bot=%s next_post_at=%s", bot_id, next_post)
    return next_post


async def schedule_next_cycle(
    bot_id: str,
    priority: Optional[str],
    action: Optional[str],
    *,
    now: Optional[datetime] = None,
    rng=random,
) -> Optional[datetime]:
    now = now or utcnow()
    async with get_sessionmaker()() as session:
        async with session.begin():
            bot = await session.get(Bot, bot_id)
            if bot is None:
                return None
            bot.next_cycle_at = calculate_next_cycle(priority, action, bot.agent_cooldown_min, now, rng=rng)
            bot.last_decision_at = now
            next_cycle = bot.next_cycle_at
    return next_cycle

