"""Job store mirroring and crash recovery tests."""

import asyncio

import pytest

from xraytrace import (
    Execution,
    InMemoryStorage,
    JobStatus,
    ReasoningConfig,
    ReasoningJob,
    ReasoningQueue,
    Step,
)


async def _generator(step):
    return f"reasoning for {step.name}"


async def _seeded_storage() -> InMemoryStorage:
    storage = InMemoryStorage()
    await storage.save_execution(
        Execution(
            execution_id="exec-1",
            steps=[Step(name="fetch", output={"count": 3}), Step(name="rank", output={})],
        )
    )
    return storage


class BrokenJobStore:
    def __init__(self):
        self.save_calls = 0

    async def save_job(self, job, reasoning=None):
        self.save_calls += 1
        raise RuntimeError("database is locked")

    async def load_jobs(self, statuses):
        raise RuntimeError("database is gone")


@pytest.mark.asyncio
async def test_transitions_are_mirrored_to_job_store():
    storage = await _seeded_storage()
    queue = ReasoningQueue(storage, _generator, job_store=storage)

    job_id = await queue.enqueue("exec-1", "fetch")
    await queue.wait_until_idle()

    completed = await storage.load_jobs([JobStatus.COMPLETED])
    assert [j.id for j in completed] == [job_id]
    assert completed[0].completed_at is not None
    assert await storage.get_job_reasoning(job_id) == "reasoning for fetch"
    assert await storage.load_jobs([JobStatus.PENDING, JobStatus.PROCESSING]) == []


@pytest.mark.asyncio
async def test_failed_job_is_mirrored_with_error_and_attempts():
    storage = await _seeded_storage()

    async def flaky(step):
        raise ConnectionError("429 rate_limit_exceeded")

    config = ReasoningConfig(max_retries=2, retry_delays=[1])
    queue = ReasoningQueue(storage, flaky, config, job_store=storage)

    job_id = await queue.enqueue("exec-1", "fetch")
    await queue.wait_until_idle()

    (failed,) = await storage.load_jobs([JobStatus.FAILED])
    assert failed.id == job_id
    assert failed.attempt == 2
    assert failed.error == "429 rate_limit_exceeded"


@pytest.mark.asyncio
async def test_pending_jobs_are_recovered_on_construction():
    storage = await _seeded_storage()
    await storage.save_job(
        ReasoningJob(
            id="job-processing",
            execution_id="exec-1",
            step_name="fetch",
            attempt=2,
            status=JobStatus.PROCESSING,
        )
    )
    await storage.save_job(
        ReasoningJob(id="job-pending", execution_id="exec-1", step_name="rank")
    )
    await storage.save_job(
        ReasoningJob(
            id="job-done",
            execution_id="exec-1",
            step_name="rank",
            status=JobStatus.COMPLETED,
        )
    )

    queue = ReasoningQueue(storage, _generator, job_store=storage)
    await queue.wait_until_idle()

    recovered = queue.get_job("job-processing")
    assert recovered.status == JobStatus.COMPLETED
    assert recovered.attempt == 2
    assert queue.get_job("job-pending").status == JobStatus.COMPLETED
    assert queue.get_job("job-done") is None

    execution = await storage.get_execution_by_id("exec-1")
    assert [s.reasoning for s in execution.steps] == [
        "reasoning for fetch",
        "reasoning for rank",
    ]


def test_recovery_is_deferred_without_running_loop():
    async def seed():
        storage = await _seeded_storage()
        await storage.save_job(
            ReasoningJob(id="job-1", execution_id="exec-1", step_name="fetch")
        )
        return storage

    storage = asyncio.run(seed())
    queue = ReasoningQueue(storage, _generator, job_store=storage)
    assert queue.get_job("job-1") is None

    asyncio.run(queue.wait_until_idle())
    assert queue.get_job("job-1").status == JobStatus.COMPLETED


def test_process_execution_starts_deferred_recovery():
    async def seed():
        storage = await _seeded_storage()
        await storage.save_execution(
            Execution(execution_id="exec-2", steps=[Step(name="done", reasoning="known")])
        )
        await storage.save_job(
            ReasoningJob(id="job-1", execution_id="exec-1", step_name="fetch")
        )
        return storage

    storage = asyncio.run(seed())
    queue = ReasoningQueue(storage, _generator, job_store=storage)

    async def run():
        await queue.process_execution("exec-2")
        assert queue.get_job("job-1") is not None
        await queue.wait_until_idle()

    asyncio.run(run())
    assert queue.get_job("job-1").status == JobStatus.COMPLETED
    assert queue.get_stats().total_jobs == 1


@pytest.mark.asyncio
async def test_load_pending_jobs_without_store_or_leftovers():
    storage = await _seeded_storage()
    queue = ReasoningQueue(storage, _generator)
    await storage.save_job(
        ReasoningJob(id="job-1", execution_id="exec-1", step_name="fetch")
    )

    # no job store configured
    assert await queue.load_pending_jobs() == 0

    queue = ReasoningQueue(storage, _generator, job_store=storage)
    await queue.wait_until_idle()
    assert queue.get_job("job-1").status == JobStatus.COMPLETED
    assert await queue.load_pending_jobs() == 0


@pytest.mark.asyncio
async def test_job_store_failures_do_not_fail_jobs(caplog):
    storage = await _seeded_storage()
    job_store = BrokenJobStore()
    queue = ReasoningQueue(storage, _generator, job_store=job_store)

    job_id = await queue.enqueue("exec-1", "fetch")
    await queue.wait_until_idle()

    assert queue.get_job(job_id).status == JobStatus.COMPLETED
    assert job_store.save_calls == 3
    assert "Failed to load pending jobs" in caplog.text
    assert "Failed to persist job" in caplog.text
