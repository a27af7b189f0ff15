import asyncio
from typing import Any, Dict, List, Optional

import pytest

from botqueue.config import settings
from botqueue.db import configure_engine, get_sessionmaker, init_db
from botqueue.events import EventBus
from botqueue.jobs.context import JobServices
from botqueue.jobs.throttle import GenerationThrottle
from botqueue.models.bots import Bot
from botqueue.telemetry import TelemetryBuffer


class FakeContent:
    """Stands in for ContentServiceClient; records calls, returns canned responses."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.responses: Dict[str, Any] = {
            "generate_post": {"success": True, "postId": "post_1", "content": {"caption": "hello"}},
            "publish_buffered": {"success": True, "postId": "post_b"},
            "get_posting_profile": None,
            "run_agent_cycle": {"action": "IDLE", "priority": "low", "reasoning": "nothing new"},
            "respond_to_comment": {"success": True},
            "respond_to_post": {"success": True},
            "crew_interactions": {"interactions": 2, "errors": []},
            "recalc_engagement": {"success": True, "updated": 12},
        }

    def _answer(self, name: str, *args):
        self.calls.append((name,) + args)
        value = self.responses[name]
        if isinstance(value, Exception):
            raise value
        if isinstance(value, dict):
            return dict(value)
        return value

    async def generate_post(self, bot_id, *, buffered=False):
        return self._answer("generate_post", bot_id, buffered)

    async def publish_buffered(self, bot_id, content):
        return self._answer("publish_buffered", bot_id, content)

    async def get_posting_profile(self, bot_id):
        return self._answer("get_posting_profile", bot_id)

    async def run_agent_cycle(self, bot_id):
        return self._answer("run_agent_cycle", bot_id)

    async def respond_to_comment(self, bot_id, comment_id, context_hint=None):
        return self._answer("respond_to_comment", bot_id, comment_id)

    async def respond_to_post(self, bot_id, post_id, context_hint=None):
        return self._answer("respond_to_post", bot_id, post_id)

    async def crew_interactions(self):
        return self._answer("crew_interactions")

    async def recalc_engagement(self):
        return self._answer("recalc_engagement")


@pytest.fixture(autouse=True)
def db(tmp_path):
    dsn = f"sqlite+aiosqlite:///{tmp_path / 'botqueue-test.db'}"
    asyncio.run(configure_engine(dsn))
    asyncio.run(init_db())
    yield dsn
    asyncio.run(configure_engine(None))


@pytest.fixture
def content():
    return FakeContent()


@pytest.fixture
def services(content):
    return JobServices(
        telemetry=TelemetryBuffer(50),
        content=content,
        events=EventBus(),
        throttle=GenerationThrottle(max_concurrent=5, per_minute=1000, poll_seconds=0.01),
    )


async def _add_bot(**fields) -> Bot:
    values: Dict[str, Any] = {
        "id": fields.pop("id", "bot_1"),
        "handle": "pixel",
        "owner_tier": "SPARK",
        "is_byob": False,
        "is_scheduled": True,
        "agent_mode": None,
    }
    values["handle"] = fields.pop("handle", values["id"])
    values.update(fields)
    bot = Bot(**values)
    async with get_sessionmaker()() as session:
        async with session.begin():
            session.add(bot)
    return bot


@pytest.fixture
def add_bot():
    def _add(**fields) -> Bot:
        return asyncio.run(_add_bot(**fields))
    return _add


async def _load_bot(bot_id: str) -> Optional[Bot]:
    async with get_sessionmaker()() as session:
        return await session.get(Bot, bot_id)


@pytest.fixture
def load_bot():
    def _load(bot_id: str) -> Optional[Bot]:
        return asyncio.run(_load_bot(bot_id))
    return _load


@pytest.fixture
def cron_secret(monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "test-secret")
    return "test-secret"
