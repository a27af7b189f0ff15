#=================================================================
# botqueue/handlers/posts.py
# GENERATE_POST and PREGENERATE_BUFFER
#=================================================================
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from botqueue.buffer import count_live, release_buffered, store_buffered, take_buffered
from botqueue.config import settings
from botqueue.errors import GenerationError, JobError
from botqueue.handlers.common import ensure_success, require_bot
from botqueue.jobs.context import JobContext
from botqueue.scheduler.rhythm import window_from_profile
from botqueue.scheduler.scheduler import schedule_next_post

logger = logging.getLogger("uvicorn.error")


async def _publish(bot_id: str, ctx: JobContext) -> Dict[str, Any]:
    content = ctx.services.content
    taken = await take_buffered(bot_id)
    if taken is not None:
        entry_id, buffered = taken
        try:
            result = await content.publish_buffered(bot_id, buffered)
        except Exception:
            # not published; hand the entry back for the retry
            await release_buffered(entry_id)
            raise
        if result.get("success") is not False:
            result["buffered"] = True
            return result
        logger.info(
            "[WORKER] buffered content for bot=%s rejected (%s); generating fresh",
            bot_id, result.get("reason"),
        )
    result = await content.generate_post(bot_id)
    result["buffered"] = False
    return result


async def _posting_profile(bot_id: str, ctx: JobContext) -> Optional[Dict[str, Any]]:
    # the post is already live; a missing profile only costs personality timing
    try:
        return await ctx.services.content.get_posting_profile(bot_id)
    except (httpx.HTTPError, JobError) as e:
        logger.warning("[WORKER] posting profile for bot=%s unavailable: %s", bot_id, e)
        return None


async def handle_generate_post(bot_id: str, ctx: JobContext) -> None:
    """
    Publish one post for the bot, then push next_post_at forward.
    A failed generation leaves next_post_at alone; the job's own retry
    schedule decides when to try again.
    """
    bot = await require_bot(bot_id)
    first_post = bot.last_posted_at is None

    result = ensure_success(await _publish(bot_id, ctx), "Generation failed")

    profile = await _posting_profile(bot_id, ctx)
    next_post = await schedule_next_post(bot_id, window=window_from_profile(profile))

    await ctx.services.events.emit(
        "post.published",
        botId=bot_id,
        handle=bot.handle,
        postId=result.get("postId"),
        buffered=result["buffered"],
        firstPost=first_post,
        source=ctx.get("source"),
    )
    logger.info(
        "[WORKER] @%s posted%s; next post at %s",
        bot.handle, " (buffered)" if result["buffered"] else "", next_post,
    )


async def handle_pregenerate_buffer(bot_id: str, ctx: JobContext) -> None:
    bot = await require_bot(bot_id)
    live = await count_live(bot_id)
    if live >= settings.BUFFER_MAX_PER_BOT:
        logger.info("[WORKER] @%s buffer already full (%d)", bot.handle, live)
        return

    result = ensure_success(
        await ctx.services.content.generate_post(bot_id, buffered=True),
        "Buffer generation failed",
    )
    content = result.get("content")
    if not isinstance(content, dict) or not content:
        raise GenerationError("Content service returned no buffered content")

    entry_id = await store_buffered(bot_id, content)
    logger.info("[WORKER] @%s buffered content %s (%d/%d)", bot.handle, entry_id, live + 1, settings.BUFFER_MAX_PER_BOT)
