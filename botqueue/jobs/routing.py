# ---------------------------
# botqueue/jobs/routing.py
# ---------------------------
# JobType -> handler. Every JobType must have a route; a missing one fails at import.
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from botqueue.handlers.agent import (
    handle_bot_cycle,
    handle_respond_to_comment,
    handle_respond_to_post,
)
from botqueue.handlers.platform import handle_crew_comment, handle_recalc_engagement
from botqueue.handlers.posts import handle_generate_post, handle_pregenerate_buffer
from botqueue.handlers.welcome import handle_welcome_sequence
from botqueue.jobs.context import JobContext
from botqueue.models.jobs import JobType

Handler = Callable[[Optional[str], JobContext], Awaitable[None]]


@dataclass(frozen=True)
class Route:
    handler: Handler
    requires_bot: bool = True
    # goes through the shared GenerationThrottle (provider-calling work)
    throttled: bool = False


ROUTES: Dict[JobType, Route] = {
    JobType.GENERATE_POST: Route(handle_generate_post, throttled=True),
    JobType.BOT_CYCLE: Route(handle_bot_cycle, throttled=True),
    JobType.CREW_COMMENT: Route(handle_crew_comment, requires_bot=False, throttled=True),
    JobType.RECALC_ENGAGEMENT: Route(handle_recalc_engagement, requires_bot=False),
    JobType.RESPOND_TO_COMMENT: Route(handle_respond_to_comment, throttled=True),
    JobType.RESPOND_TO_POST: Route(handle_respond_to_post, throttled=True),
    JobType.WELCOME_SEQUENCE: Route(handle_welcome_sequence),
    JobType.PREGENERATE_BUFFER: Route(handle_pregenerate_buffer, throttled=True),
}

_missing = [t.value for t in JobType if t not in ROUTES]
if _missing:
    raise RuntimeError(f"No route for job type(s): {', '.join(_missing)}")
