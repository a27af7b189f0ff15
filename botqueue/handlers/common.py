# botqueue/handlers/common.py
from __future__ import annotations

from typing import Any, Dict, Optional

from botqueue.errors import GenerationError, PermanentJobError
from botqueue.jobs.context import JobContext
from botqueue.models.bots import Bot
from botqueue.scheduler.scheduler import get_bot


async def require_bot(bot_id: Optional[str]) -> Bot:
    """Load a bot that may still receive work; anything else is permanent."""
    if not bot_id:
        raise PermanentJobError("Job requires botId")
    bot = await get_bot(bot_id)
    if bot is None:
        raise PermanentJobError(f"Bot not found: {bot_id}")
    if bot.deactivated_at is not None:
        raise PermanentJobError(f"Bot @{bot.handle} is deactivated")
    return bot


def require_payload(ctx: JobContext, key: str) -> Any:
    value = ctx.get(key)
    if not value:
        raise PermanentJobError(f"{ctx.job_type.value} requires {key} in payload")
    return value


def ensure_success(result: Dict[str, Any], default_reason: str) -> Dict[str, Any]:
    if result.get("success") is False:
        raise GenerationError(str(result.get("reason") or default_reason))
    return result
