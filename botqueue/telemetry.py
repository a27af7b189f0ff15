# botqueue/telemetry.py
# Generation telemetry: provider, duration, success/failure and estimated cost
# of every content-service call, kept in a fixed-size ring buffer for the
# health endpoint and logged as one JSON line per call.
from __future__ import annotations

import itertools
import json
import logging
import threading
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

logger = logging.getLogger("uvicorn.error")

# Approximate per-call costs in cents
COST_TABLE: Dict[str, float] = {
    "gpt-4o": 1.5,
    "gpt-4o-mini": 0.15,
    "fal-ai/flux/dev": 3.0,
    "fal-ai/flux-general": 4.0,
    "fal-ai/kling-video/v2/master/text-to-video": 15.0,
    "fal-ai/minimax-video/video-01/text-to-video": 20.0,
    "gen3a_turbo": 50.0,
}
DEFAULT_COST_CENTS = 1.0


def estimate_cost_cents(model: Optional[str]) -> float:
    return COST_TABLE.get(model or "", DEFAULT_COST_CENTS)


@dataclass
class TelemetryEntry:
    id: str
    timestamp: str
    capability: str
    provider: str
    model: str
    duration_ms: int
    success: bool
    estimated_cost_cents: float
    error: Optional[str] = None
    bot_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "capability": self.capability,
            "provider": self.provider,
            "model": self.model,
            "durationMs": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "estimatedCostCents": self.estimated_cost_cents,
            "botId": self.bot_id,
        }


@dataclass
class CallRecord:
    """Mutable handle yielded by TelemetryBuffer.track(); callers fill in
    what they learn from the provider's response."""
    capability: str
    provider: str
    model: str
    bot_id: Optional[str] = None
    success: bool = True
    error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def mark_failed(self, error: str) -> None:
        self.success = False
        self.error = error


class TelemetryBuffer:
    """Append-only ring buffer; the oldest entry is evicted once full."""

    def __init__(self, capacity: int = 200):
        if capacity <= 0:
            raise ValueError("telemetry capacity must be positive")
        self.capacity = capacity
        self._entries: deque[TelemetryEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def record(
        self,
        *,
        capability: str,
        provider: str,
        model: str,
        duration_ms: int,
        success: bool,
        error: Optional[str] = None,
        bot_id: Optional[str] = None,
    ) -> TelemetryEntry:
        with self._lock:
            entry = TelemetryEntry(
                id=f"tel_{next(self._ids)}",
                timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
                capability=capability,
                provider=provider,
                model=model,
                duration_ms=duration_ms,
                success=success,
                error=error,
                estimated_cost_cents=estimate_cost_cents(model) if success else 0.0,
                bot_id=bot_id,
            )
            self._entries.append(entry)
        # Structured log for external aggregation
        logger.info(json.dumps({"event": "generation_telemetry", **asdict(entry)}))
        return entry

    @asynccontextmanager
    async def track(
        self,
        capability: str,
        provider: str,
        model: str = "unknown",
        *,
        bot_id: Optional[str] = None,
    ) -> AsyncIterator[CallRecord]:
        """Time a provider call; exceptions are recorded as failures and re-raised."""
        call = CallRecord(capability=capability, provider=provider, model=model, bot_id=bot_id)
        start = time.monotonic()
        try:
            yield call
        except BaseException as e:
            call.mark_failed(str(e) or e.__class__.__name__)
            raise
        finally:
            self.record(
                capability=call.capability,
                provider=call.provider,
                model=call.model,
                duration_ms=int((time.monotonic() - start) * 1000),
                success=call.success,
                error=call.error,
                bot_id=call.bot_id,
            )

    def entries(self) -> List[TelemetryEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self, recent: int = 20) -> Dict[str, Any]:
        entries = self.entries()
        total = len(entries)
        successes = sum(1 for e in entries if e.success)
        avg_ms = round(sum(e.duration_ms for e in entries) / total) if total else 0
        total_cost = sum(e.estimated_cost_cents for e in entries)

        by_provider: Dict[str, Dict[str, Any]] = {}
        for e in entries:
            p = by_provider.setdefault(e.provider, {"calls": 0, "failures": 0, "avgMs": 0})
            p["calls"] += 1
            if not e.success:
                p["failures"] += 1
            p["avgMs"] += e.duration_ms
        for p in by_provider.values():
            p["avgMs"] = round(p["avgMs"] / p["calls"])

        return {
            "totalCalls": total,
            "successCount": successes,
            "failureCount": total - successes,
            "successRate": round(successes / total * 100) if total else 100,
            "avgDurationMs": avg_ms,
            "totalEstimatedCostCents": round(total_cost, 2),
            "byProvider": by_provider,
            "recentEntries": [e.to_dict() for e in entries[-recent:]] if recent > 0 else [],
        }
