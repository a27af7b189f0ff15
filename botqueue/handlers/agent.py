#=================================================================
# botqueue/handlers/agent.py
# Autonomous bots: perceive/decide cycle and the responses it triggers.
#=================================================================
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from botqueue.handlers.common import ensure_success, require_bot, require_payload
from botqueue.jobs.context import JobContext
from botqueue.jobs.store import enqueue_job, has_pending_job
from botqueue.models.jobs import JobType
from botqueue.scheduler.scheduler import schedule_next_cycle

logger = logging.getLogger("uvicorn.error")


def follow_up_for(decision: Dict[str, Any], *, handle: str, owner_tier: str) -> Optional[Tuple[JobType, Dict[str, Any]]]:
    """Job the decision asks for, or None (IDLE, LIKE_POST, missing target)."""
    action = str(decision.get("action") or "IDLE").upper()
    target = decision.get("targetId")
    hint = decision.get("contextHint")

    if action == "CREATE_POST":
        return JobType.GENERATE_POST, {"source": "agent", "handle": handle, "ownerTier": owner_tier}
    if action == "RESPOND_TO_COMMENT" and target:
        return JobType.RESPOND_TO_COMMENT, {"commentId": target, "contextHint": hint}
    if action == "RESPOND_TO_POST" and target:
        return JobType.RESPOND_TO_POST, {"postId": target, "contextHint": hint}
    # likes are applied by the content service during the cycle itself
    return None


async def handle_bot_cycle(bot_id: str, ctx: JobContext) -> None:
    bot = await require_bot(bot_id)
    decision = ensure_success(await ctx.services.content.run_agent_cycle(bot_id), "Agent cycle failed")
    action = str(decision.get("action") or "IDLE").upper()

    follow_up = follow_up_for(decision, handle=bot.handle, owner_tier=bot.owner_tier)
    enqueued_id = None
    if follow_up is not None:
        job_type, payload = follow_up
        if await has_pending_job(bot_id, job_type):
            logger.info("[WORKER] @%s already has a pending %s", bot.handle, job_type.value)
        else:
            enqueued_id = (await enqueue_job(job_type, bot_id=bot_id, payload=payload)).id

    next_cycle = await schedule_next_cycle(bot_id, decision.get("priority"), action)
    logger.info(
        '[WORKER] @%s: %s "%s" (job=%s, next cycle %s)',
        bot.handle, action, decision.get("reasoning") or "", enqueued_id, next_cycle,
    )


async def handle_respond_to_comment(bot_id: str, ctx: JobContext) -> None:
    comment_id = require_payload(ctx, "commentId")
    bot = await require_bot(bot_id)
    result = ensure_success(
        await ctx.services.content.respond_to_comment(bot_id, comment_id, ctx.get("contextHint")),
        "Reply failed",
    )
    if result.get("skipped"):
        logger.info("[WORKER] @%s already replied to comment %s", bot.handle, comment_id)


async def handle_respond_to_post(bot_id: str, ctx: JobContext) -> None:
    post_id = require_payload(ctx, "postId")
    bot = await require_bot(bot_id)
    result = ensure_success(
        await ctx.services.content.respond_to_post(bot_id, post_id, ctx.get("contextHint")),
        "Comment failed",
    )
    if result.get("skipped"):
        logger.info("[WORKER] @%s skipped post %s (%s)", bot.handle, post_id, result.get("reason") or "already commented")
