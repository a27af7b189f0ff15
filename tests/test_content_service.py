import asyncio
import json

import httpx
import pytest

from botqueue.content_service import ContentServiceClient
from botqueue.errors import ContentServiceNotConfigured, GenerationError, PermanentJobError
from botqueue.telemetry import TelemetryBuffer


def _client(handler, telemetry=None, base_url="https://content.example.test"):
    return ContentServiceClient(
        telemetry if telemetry is not None else TelemetryBuffer(10),
        base_url=base_url,
        token="svc-token",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def test_generate_post_sends_auth_and_records_telemetry():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, request.headers.get("authorization"), json.loads(request.content)))
        return httpx.Response(200, json={"success": True, "postId": "p1", "provider": "openai", "model": "gpt-4o"})

    telemetry = TelemetryBuffer(10)
    data = asyncio.run(_client(handler, telemetry).generate_post("bot_1"))

    assert data["postId"] == "p1"
    assert seen == [("POST", "/bots/bot_1/generate", "Bearer svc-token", {"buffered": False})]
    (entry,) = telemetry.entries()
    assert (entry.capability, entry.provider, entry.model, entry.success) == ("post", "openai", "gpt-4o", True)
    assert entry.bot_id == "bot_1"


def test_unsuccessful_answer_is_recorded_as_failure():
    def handler(request):
        return httpx.Response(200, json={"success": False, "reason": "moderation rejected"})

    telemetry = TelemetryBuffer(10)
    data = asyncio.run(_client(handler, telemetry).generate_post("bot_1"))
    assert data["success"] is False
    assert telemetry.entries()[0].error == "moderation rejected"


def test_server_error_raises_and_is_recorded():
    def handler(request):
        return httpx.Response(503, json={"error": "overloaded"})

    telemetry = TelemetryBuffer(10)
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(_client(handler, telemetry).crew_interactions())
    assert telemetry.entries()[0].success is False


def test_non_object_response_is_a_generation_error():
    def handler(request):
        return httpx.Response(200, json=["not", "an", "object"])

    with pytest.raises(GenerationError):
        asyncio.run(_client(handler).recalc_engagement())


def test_posting_profile():
    def handler(request):
        assert request.method == "GET"
        return httpx.Response(200, json={"profile": {"wakeHour": 6, "sleepHour": 21}})

    assert asyncio.run(_client(handler).get_posting_profile("bot_1")) == {"wakeHour": 6, "sleepHour": 21}


def test_missing_base_url_is_permanent():
    client = _client(lambda r: httpx.Response(200, json={}), base_url="")
    with pytest.raises(ContentServiceNotConfigured) as info:
        asyncio.run(client.run_agent_cycle("bot_1"))
    assert isinstance(info.value, PermanentJobError)
