import asyncio
import random
from datetime import timedelta

from sqlalchemy import select

from botqueue.buffer import store_buffered
from botqueue.config import settings
from botqueue.db import get_sessionmaker, utcnow
from botqueue.jobs.store import enqueue_job
from botqueue.models.bots import AGENT_MODE_AUTONOMOUS
from botqueue.models.jobs import Job, JobType
from botqueue.scheduler.scheduler import (
    disable_scheduling,
    enable_scheduling,
    enqueue_agent_cycles,
    enqueue_buffer_fills,
    enqueue_engagement_recalc,
    enqueue_scheduled_bots,
    schedule_next_cycle,
    schedule_next_post,
)


async def _jobs():
    async with get_sessionmaker()() as session:
        rows = await session.execute(select(Job).order_by(Job.created_at, Job.id))
        return list(rows.scalars().all())


def test_due_scheduled_bots_get_one_post_job_each(add_bot):
    past = utcnow() - timedelta(minutes=5)
    add_bot(id="due", next_post_at=past)
    add_bot(id="later", next_post_at=utcnow() + timedelta(hours=2))
    add_bot(id="byob", next_post_at=past, is_byob=True)
    add_bot(id="free", next_post_at=past, owner_tier="FREE")
    add_bot(id="off", next_post_at=past, is_scheduled=False)
    add_bot(id="gone", next_post_at=past, deactivated_at=past)
    add_bot(id="agent", next_post_at=past, agent_mode=AGENT_MODE_AUTONOMOUS)

    async def scenario():
        first = await enqueue_scheduled_bots()
        second = await enqueue_scheduled_bots()
        return first, second, await _jobs()

    first, second, jobs = asyncio.run(scenario())
    assert first == {"enqueued": 1, "due": 1, "skipped": 0, "crew": True}
    assert second == {"enqueued": 0, "due": 1, "skipped": 1, "crew": False}

    posts = [j for j in jobs if j.type == JobType.GENERATE_POST.value]
    assert [j.bot_id for j in posts] == ["due"]
    assert posts[0].payload_dict() == {"source": "scheduler"}
    assert [j.type for j in jobs if j.bot_id is None] == [JobType.CREW_COMMENT.value]


def test_no_due_bots_enqueues_nothing(add_bot):
    add_bot(id="later", next_post_at=utcnow() + timedelta(hours=1))
    result = asyncio.run(enqueue_scheduled_bots())
    assert result == {"enqueued": 0, "due": 0, "skipped": 0, "crew": False}
    assert asyncio.run(_jobs()) == []


def test_agent_cycles_for_never_cycled_and_due_bots(add_bot):
    add_bot(id="fresh", agent_mode=AGENT_MODE_AUTONOMOUS, next_cycle_at=None)
    add_bot(id="due", agent_mode=AGENT_MODE_AUTONOMOUS, next_cycle_at=utcnow() - timedelta(minutes=1))
    add_bot(id="resting", agent_mode=AGENT_MODE_AUTONOMOUS, next_cycle_at=utcnow() + timedelta(minutes=30))
    add_bot(id="plain", next_post_at=None)

    async def scenario():
        await enqueue_job(JobType.BOT_CYCLE, bot_id="due")
        return await enqueue_agent_cycles(), await _jobs()

    result, jobs = asyncio.run(scenario())
    assert result == {"enqueued": 1, "due": 2, "skipped": 1}
    assert sorted(j.bot_id for j in jobs) == ["due", "fresh"]


def test_engagement_recalc_is_not_duplicated():
    async def scenario():
        return await enqueue_engagement_recalc(), await enqueue_engagement_recalc(), await _jobs()

    first, second, jobs = asyncio.run(scenario())
    assert first["enqueued"] == 1
    assert second["enqueued"] == 0
    assert [j.type for j in jobs] == [JobType.RECALC_ENGAGEMENT.value]


def test_buffer_fills_skip_full_buffers(add_bot, monkeypatch):
    monkeypatch.setattr(settings, "BUFFER_MAX_PER_BOT", 2)
    add_bot(id="empty")
    add_bot(id="full")
    add_bot(id="byob", is_byob=True)

    async def scenario():
        await store_buffered("full", {"caption": "a"})
        await store_buffered("full", {"caption": "b"})
        return await enqueue_buffer_fills(), await _jobs()

    result, jobs = asyncio.run(scenario())
    assert result["candidates"] == 2
    assert result["enqueued"] == 1
    assert [(j.type, j.bot_id) for j in jobs] == [(JobType.PREGENERATE_BUFFER.value, "empty")]


def test_schedule_next_post_moves_due_time_forward(add_bot, load_bot):
    now = utcnow().replace(hour=9, minute=0, second=0, microsecond=0)
    add_bot(id="bot_1", posts_per_day=3, next_post_at=now - timedelta(minutes=1))

    nxt = asyncio.run(schedule_next_post("bot_1", now=now, rng=random.Random(2)))
    bot = load_bot("bot_1")
    assert bot.next_post_at == nxt
    assert bot.last_posted_at == now
    assert timedelta(hours=3.5) <= nxt - now <= timedelta(hours=6.5)


def test_schedule_next_post_for_missing_bot_is_a_noop():
    assert asyncio.run(schedule_next_post("nobody")) is None


def test_schedule_next_cycle_records_decision(add_bot, load_bot):
    now = utcnow()
    add_bot(id="agent", agent_mode=AGENT_MODE_AUTONOMOUS, agent_cooldown_min=60)

    nxt = asyncio.run(schedule_next_cycle("agent", "high", "CREATE_POST", now=now))
    bot = load_bot("agent")
    assert bot.next_cycle_at == nxt
    assert bot.last_decision_at == now
    assert timedelta(minutes=24) <= nxt - now <= timedelta(minutes=36)


def test_enable_and_disable_scheduling(add_bot, load_bot):
    add_bot(id="bot_1", is_scheduled=False)

    nxt = asyncio.run(enable_scheduling("bot_1"))
    bot = load_bot("bot_1")
    assert bot.is_scheduled is True
    assert bot.next_post_at == nxt

    asyncio.run(disable_scheduling("bot_1"))
    bot = load_bot("bot_1")
    assert bot.is_scheduled is False
    assert bot.next_post_at is None
