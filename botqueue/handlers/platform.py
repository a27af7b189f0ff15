# botqueue/handlers/platform.py
# Platform-wide jobs that are not scoped to a single bot.
from __future__ import annotations

import logging
from typing import Optional

from botqueue.handlers.common import ensure_success
from botqueue.jobs.context import JobContext

logger = logging.getLogger("uvicorn.error")


async def handle_crew_comment(bot_id: Optional[str], ctx: JobContext) -> None:
    result = ensure_success(await ctx.services.content.crew_interactions(), "Crew interactions failed")
    errors = result.get("errors") or []
    if errors:
        logger.warning("[WORKER] crew interaction errors: %s", ", ".join(str(e) for e in errors))
    logger.info("[WORKER] crew interactions completed: %s", result.get("interactions", 0))


async def handle_recalc_engagement(bot_id: Optional[str], ctx: JobContext) -> None:
    result = ensure_success(await ctx.services.content.recalc_engagement(), "Engagement recalculation failed")
    logger.info("[WORKER] engagement scores recalculated: %s", result.get("updated", "ok"))
