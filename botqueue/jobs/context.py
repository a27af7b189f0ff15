# ---------------------------
# botqueue/jobs/context.py
# ---------------------------
# Collaborators injected into handlers instead of module-level globals.
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from botqueue.config import settings
from botqueue.content_service import ContentServiceClient
from botqueue.events import EventBus, WebhookNotifier
from botqueue.jobs.throttle import GenerationThrottle
from botqueue.models.jobs import JobType
from botqueue.telemetry import TelemetryBuffer


@dataclass
class JobServices:
    telemetry: TelemetryBuffer
    content: ContentServiceClient
    events: EventBus
    throttle: GenerationThrottle


def build_services() -> JobServices:
    """Wire the per-process collaborators from settings. Call inside the event loop."""
    telemetry = TelemetryBuffer(settings.TELEMETRY_CAPACITY)
    events = EventBus()
    if settings.EVENT_WEBHOOK_URL:
        events.subscribe(WebhookNotifier(settings.EVENT_WEBHOOK_URL))
    return JobServices(
        telemetry=telemetry,
        content=ContentServiceClient(telemetry),
        events=events,
        throttle=GenerationThrottle(settings.GENERATION_CONCURRENCY, settings.GENERATION_PER_MINUTE),
    )


@dataclass
class JobContext:
    job_id: str
    job_type: JobType
    services: JobServices
    payload: Dict[str, Any] = field(default_factory=dict)
    attempt: int = 1

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self.payload.get(key, default)
