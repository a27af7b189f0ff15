# botqueue/handlers/welcome.py
# WELCOME_SEQUENCE: runs once after a bot is created so it starts posting
# right away instead of waiting for its first scheduled slot.
from __future__ import annotations

import logging

from botqueue.config import settings
from botqueue.handlers.common import require_bot
from botqueue.jobs.context import JobContext
from botqueue.jobs.store import enqueue_job, has_pending_job
from botqueue.models.jobs import JobType
from botqueue.scheduler.scheduler import enable_scheduling

logger = logging.getLogger("uvicorn.error")


async def handle_welcome_sequence(bot_id: str, ctx: JobContext) -> None:
    bot = await require_bot(bot_id)
    if bot.is_byob:
        logger.info("[WORKER] @%s is BYOB; no welcome sequence", bot.handle)
        return
    if bot.owner_tier not in settings.AI_TIERS:
        logger.info("[WORKER] @%s tier %s has no AI generation", bot.handle, bot.owner_tier)
        return

    if not bot.is_scheduled:
        await enable_scheduling(bot_id)

    first_post = False
    if bot.last_posted_at is None and not await has_pending_job(bot_id, JobType.GENERATE_POST):
        await enqueue_job(JobType.GENERATE_POST, bot_id=bot_id, payload={"source": "welcome_sequence"})
        first_post = True

    logger.info("[WORKER] @%s welcome sequence completed (first post enqueued: %s)", bot.handle, first_post)
