import asyncio
from datetime import timedelta

from botqueue.config import settings
from botqueue.db import utcnow
from botqueue.jobs.claim import (
    claim_jobs,
    compute_backoff,
    fail_job,
    reclaim_stuck_jobs,
    succeed_job,
)
from botqueue.jobs.store import enqueue_job, get_job, has_pending_job
from botqueue.models.jobs import JobStatus, JobType


def test_zero_limit_claims_nothing():
    async def scenario():
        await enqueue_job(JobType.GENERATE_POST, bot_id="bot_1")
        return await claim_jobs(0)

    assert asyncio.run(scenario()) == []


def test_claim_orders_by_scheduled_time_and_marks_running():
    async def scenario():
        now = utcnow()
        late = await enqueue_job(JobType.GENERATE_POST, bot_id="b", run_at=now - timedelta(minutes=1))
        early = await enqueue_job(JobType.GENERATE_POST, bot_id="a", run_at=now - timedelta(minutes=5))
        future = await enqueue_job(JobType.GENERATE_POST, bot_id="c", run_at=now + timedelta(hours=1))
        claimed = await claim_jobs(10)
        return early, late, future, claimed

    early, late, future, claimed = asyncio.run(scenario())
    assert [j.id for j in claimed] == [early.id, late.id]
    for job in claimed:
        assert job.status == JobStatus.RUNNING.value
        assert job.attempts == 1
        assert job.locked_at is not None


def test_overlapping_claims_never_share_a_job():
    async def scenario():
        for i in range(6):
            await enqueue_job(JobType.GENERATE_POST, bot_id=f"bot_{i}")
        first, second = await asyncio.gather(claim_jobs(4), claim_jobs(4))
        rest = await claim_jobs(10)
        return first, second, rest

    first, second, rest = asyncio.run(scenario())
    ids_a = {j.id for j in first}
    ids_b = {j.id for j in second}
    ids_c = {j.id for j in rest}
    assert not ids_a & ids_b
    assert not (ids_a | ids_b) & ids_c
    assert len(ids_a | ids_b | ids_c) == 6


def test_backoff_grows_and_caps():
    values = [compute_backoff(n) for n in range(12)]
    assert values == sorted(values)
    below_cap = [v for v in values if v < timedelta(seconds=settings.JOB_BACKOFF_MAX_SECONDS)]
    assert all(a < b for a, b in zip(below_cap, below_cap[1:]))
    assert values[0] == timedelta(seconds=settings.JOB_BACKOFF_BASE_SECONDS)
    assert values[1] == timedelta(seconds=settings.JOB_BACKOFF_BASE_SECONDS * 2)
    assert values[-1] == timedelta(seconds=settings.JOB_BACKOFF_MAX_SECONDS)
    assert compute_backoff(10_000) == timedelta(seconds=settings.JOB_BACKOFF_MAX_SECONDS)


def test_failure_schedules_retry_then_fails_at_max_attempts():
    async def scenario():
        job = await enqueue_job(JobType.GENERATE_POST, bot_id="bot_1", max_attempts=2)

        t0 = utcnow()
        await claim_jobs(1, now=t0)
        first = await fail_job(job.id, "provider timeout", now=t0)
        retry = await get_job(job.id)

        # not claimable before the backoff elapses
        assert await claim_jobs(1, now=t0) == []

        t1 = retry.scheduled_at
        assert len(await claim_jobs(1, now=t1)) == 1
        second = await fail_job(job.id, "provider timeout again", now=t1)
        final = await get_job(job.id)

        # terminal: never claimable again
        later = await claim_jobs(1, now=t1 + timedelta(days=1))
        return first, retry, t0, second, final, later

    first, retry, t0, second, final, later = asyncio.run(scenario())
    assert first == JobStatus.RETRY.value
    assert retry.status == JobStatus.RETRY.value
    assert retry.scheduled_at == t0 + compute_backoff(1)
    assert retry.locked_at is None
    assert retry.last_error == "provider timeout"

    assert second == JobStatus.FAILED.value
    assert final.status == JobStatus.FAILED.value
    assert final.attempts == 2
    assert final.finished_at is not None
    assert later == []


def test_permanent_failure_skips_retries():
    async def scenario():
        job = await enqueue_job(JobType.RESPOND_TO_POST, bot_id="bot_1", max_attempts=5)
        await claim_jobs(1)
        status = await fail_job(job.id, "RESPOND_TO_POST requires postId in payload", permanent=True)
        return status, await get_job(job.id)

    status, job = asyncio.run(scenario())
    assert status == JobStatus.FAILED.value
    assert job.attempts == 1


def test_terminal_jobs_are_left_alone():
    async def scenario():
        job = await enqueue_job(JobType.CREW_COMMENT)
        await claim_jobs(1)
        assert await succeed_job(job.id) is True
        again = await succeed_job(job.id)
        status = await fail_job(job.id, "late failure")
        return again, status, await get_job(job.id)

    again, status, job = asyncio.run(scenario())
    assert again is False
    assert status == JobStatus.SUCCEEDED.value
    assert job.status == JobStatus.SUCCEEDED.value
    assert job.last_error is None


def test_error_message_is_truncated():
    async def scenario():
        job = await enqueue_job(JobType.CREW_COMMENT)
        await claim_jobs(1)
        await fail_job(job.id, "x" * 5000)
        return await get_job(job.id)

    assert len(asyncio.run(scenario()).last_error) == 2000


def test_reclaim_only_touches_stale_running_jobs():
    async def scenario():
        now = utcnow()
        long_ago = now - timedelta(hours=3)
        stale = await enqueue_job(JobType.GENERATE_POST, bot_id="old", run_at=long_ago)
        young = await enqueue_job(JobType.GENERATE_POST, bot_id="young", run_at=now - timedelta(seconds=1))
        exhausted = await enqueue_job(JobType.BOT_CYCLE, bot_id="tired", run_at=long_ago, max_attempts=1)

        await claim_jobs(10, now=now - timedelta(hours=2))  # stale + exhausted
        await claim_jobs(10, now=now)                        # young

        count = await reclaim_stuck_jobs(timedelta(minutes=60), now=now)
        reclaimed = await get_job(exhausted.id)

        # the rerun of a job with no attempts left fails for good
        assert [j.id for j in await claim_jobs(10, now=now) if j.id == exhausted.id] == [exhausted.id]
        rerun = await fail_job(exhausted.id, "crashed again", now=now)
        return count, await get_job(stale.id), await get_job(young.id), reclaimed, rerun

    count, stale, young, exhausted, rerun = asyncio.run(scenario())
    assert count == 2
    assert stale.status == JobStatus.RETRY.value
    assert stale.locked_at is None
    assert "Stuck" in stale.last_error
    assert young.status == JobStatus.RUNNING.value
    assert exhausted.status == JobStatus.RETRY.value
    assert exhausted.locked_at is None
    assert exhausted.finished_at is None
    assert "Stuck" in exhausted.last_error
    assert rerun == JobStatus.FAILED.value


def test_each_retry_is_scheduled_later_than_the_last():
    async def scenario():
        job = await enqueue_job(JobType.GENERATE_POST, bot_id="bot_1", max_attempts=3)
        t = utcnow()
        scheduled = []
        statuses = []
        for message in ("timeout 1", "timeout 2", "timeout 3"):
            assert len(await claim_jobs(1, now=t)) == 1
            statuses.append(await fail_job(job.id, message, now=t))
            current = await get_job(job.id)
            scheduled.append(current.scheduled_at)
            t = current.scheduled_at
        return statuses, scheduled, await get_job(job.id)

    statuses, scheduled, final = asyncio.run(scenario())
    assert statuses == [JobStatus.RETRY.value, JobStatus.RETRY.value, JobStatus.FAILED.value]
    first_retry, second_retry = scheduled[0], scheduled[1]
    assert second_retry > first_retry
    assert second_retry - first_retry == compute_backoff(2)
    assert compute_backoff(2) > compute_backoff(1)
    assert final.attempts == 3


def test_has_pending_job_tracks_lifecycle():
    async def scenario():
        seen = []
        job = await enqueue_job(JobType.GENERATE_POST, bot_id="bot_1")
        seen.append(await has_pending_job("bot_1", JobType.GENERATE_POST))
        seen.append(await has_pending_job("bot_1", JobType.BOT_CYCLE))
        seen.append(await has_pending_job("bot_2", JobType.GENERATE_POST))
        await claim_jobs(1)
        seen.append(await has_pending_job("bot_1", JobType.GENERATE_POST))
        await succeed_job(job.id)
        seen.append(await has_pending_job("bot_1", JobType.GENERATE_POST))
        return seen

    assert asyncio.run(scenario()) == [True, False, False, True, False]
