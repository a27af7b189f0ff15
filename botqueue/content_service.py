#===========================================================================
# botqueue/content_service.py
# Client for the external content-generation service.
# Prompting, provider calls (text/image/video) and moderation live there;
# this side only asks for work and records telemetry for every call.
#===========================================================================

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from botqueue.config import settings
from botqueue.errors import ContentServiceNotConfigured, GenerationError
from botqueue.telemetry import TelemetryBuffer

logger = logging.getLogger("uvicorn.error")

DEFAULT_PROVIDER = "content-service"


class ContentServiceClient:
    def __init__(
        self,
        telemetry: TelemetryBuffer,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.telemetry = telemetry
        self.base_url = (base_url if base_url is not None else settings.CONTENT_SERVICE_URL).rstrip("/")
        self.token = token if token is not None else settings.CONTENT_SERVICE_TOKEN
        self.timeout = timeout if timeout is not None else settings.CONTENT_SERVICE_TIMEOUT
        self._transport = transport

    # --- Helpers -----------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _client(self) -> httpx.AsyncClient:
        if not self.base_url:
            raise ContentServiceNotConfigured("CONTENT_SERVICE_URL not configured")
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _call(
        self,
        method: str,
        path: str,
        *,
        capability: str,
        bot_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        async with self.telemetry.track(capability, DEFAULT_PROVIDER, bot_id=bot_id) as call:
            async with self._client() as client:
                r = await client.request(method, path, json=payload if method != "GET" else None)
            # 4xx/5xx -> httpx.HTTPStatusError, retried by the claim engine
            r.raise_for_status()
            data = r.json() if r.content else {}
            if not isinstance(data, dict):
                raise GenerationError(f"Unexpected content service response for {path}: {data!r}")
            call.provider = str(data.get("provider") or DEFAULT_PROVIDER)
            call.model = str(data.get("model") or call.model)
            if data.get("success") is False:
                call.mark_failed(str(data.get("reason") or "unsuccessful"))
            return data

    # --- Posts ---------------------------------------------------------------

    async def generate_post(self, bot_id: str, *, buffered: bool = False) -> Dict[str, Any]:
        """{success, reason?, postId?, content?, provider?, model?}"""
        return await self._call(
            "POST", f"/bots/{bot_id}/generate",
            capability="post", bot_id=bot_id, payload={"buffered": buffered},
        )

    async def publish_buffered(self, bot_id: str, content: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call(
            "POST", f"/bots/{bot_id}/publish-buffered",
            capability="publish", bot_id=bot_id, payload={"content": content},
        )

    async def get_posting_profile(self, bot_id: str) -> Optional[Dict[str, Any]]:
        """Personality-derived posting window; None if the bot has no compiled profile."""
        data = await self._call("GET", f"/bots/{bot_id}/posting-profile", capability="profile", bot_id=bot_id)
        return data.get("profile") if isinstance(data.get("profile"), dict) else None

    # --- Agent ---------------------------------------------------------------

    async def run_agent_cycle(self, bot_id: str) -> Dict[str, Any]:
        """Perceive + decide; returns {action, priority, reasoning, targetId?, contextHint?}."""
        return await self._call("POST", f"/bots/{bot_id}/agent-cycle", capability="chat", bot_id=bot_id, payload={})

    async def respond_to_comment(self, bot_id: str, comment_id: str, context_hint: Optional[str] = None) -> Dict[str, Any]:
        return await self._call(
            "POST", f"/bots/{bot_id}/respond/comment",
            capability="chat", bot_id=bot_id,
            payload={"commentId": comment_id, "contextHint": context_hint},
        )

    async def respond_to_post(self, bot_id: str, post_id: str, context_hint: Optional[str] = None) -> Dict[str, Any]:
        return await self._call(
            "POST", f"/bots/{bot_id}/respond/post",
            capability="chat", bot_id=bot_id,
            payload={"postId": post_id, "contextHint": context_hint},
        )

    # --- Platform-wide -------------------------------------------------------

    async def crew_interactions(self) -> Dict[str, Any]:
        """{interactions, errors[]}"""
        return await self._call("POST", "/crew/interact", capability="chat", payload={})

    async def recalc_engagement(self) -> Dict[str, Any]:
        return await self._call("POST", "/engagement/recalculate", capability="engagement", payload={})
