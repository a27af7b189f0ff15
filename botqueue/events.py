# botqueue/events.py
# Fire-and-forget side effects (notifications, webhooks) emitted by handlers.
# A failing listener is logged and dropped; it never fails the owning job.
from __future__ import annotations

import inspect
import logging
import threading
import time
from collections import deque
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

logger = logging.getLogger("uvicorn.error")

Listener = Callable[[str, Dict[str, Any]], Union[None, Awaitable[None]]]


class EventBus:
    def __init__(self, history_size: int = 500):
        self._listeners: List[Listener] = []
        self._history: deque[Dict[str, Any]] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def emit(self, name: str, **data: Any) -> int:
        """Deliver to every listener; returns how many failed."""
        entry = {
            "event": name,
            "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
            "data": data,
        }
        with self._lock:
            self._history.append(entry)

        failures = 0
        for listener in list(self._listeners):
            try:
                result = listener(name, data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                failures += 1
                logger.warning("[EVENTS] listener %r failed for %s: %s", listener, name, e)
        return failures

    def history(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._history)


class WebhookNotifier:
    """POST every event as JSON to a single configured URL."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def __call__(self, name: str, data: Dict[str, Any]) -> None:
        body = {"event": name, "data": data}
        if self._client is not None:
            r = await self._client.post(self.url, json=body)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(self.url, json=body)
        r.raise_for_status()

    def __repr__(self) -> str:
        return f"WebhookNotifier({self.url})"
