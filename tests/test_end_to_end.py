"""Tracker, storage and queue working together."""

import pytest

from xraytrace import (
    JobStatus,
    ReasoningConfig,
    ReasoningQueue,
    SQLiteStorage,
    XRay,
    create_simple_generator,
)


async def fetched_three(step):
    return "Fetched 3 results"


@pytest.mark.asyncio
async def test_tracked_step_gets_reasoning(tmp_path):
    storage = SQLiteStorage(tmp_path / "xray.db")
    xray = XRay("exec-1", {"projectId": "demo"}, storage)

    xray.start_step("fetch", {"q": "shoes"})
    xray.end_step("fetch", {"count": 3})
    xray.end({"success": True})

    await xray.save()
    queue = ReasoningQueue(storage, fetched_three)
    await xray.enqueue_reasoning(queue)
    await queue.process_execution("exec-1")

    execution = await storage.get_execution_by_id("exec-1")
    assert execution.steps[0].reasoning == "Fetched 3 results"
    assert execution.final_outcome == {"success": True}
    stats = queue.get_stats()
    assert stats.pending == 0
    assert stats.processing == 0
    assert stats.completed == stats.total_jobs == 1


@pytest.mark.asyncio
async def test_pipeline_with_simple_generator_and_job_mirror(tmp_path):
    storage = SQLiteStorage(tmp_path / "xray.db")
    queue = ReasoningQueue(
        storage,
        create_simple_generator(),
        ReasoningConfig(concurrency=2, debug=True),
        job_store=storage,
    )
    xray = XRay("reasoning-exec-1", storage=storage, project_id="demo")

    xray.start_step("search_products", {"query": "laptops", "limit": 100})
    xray.end_step("search_products", {"total_results": 100, "candidates_fetched": 50})
    xray.start_step("filter_by_rating", {"threshold": 4.5})
    xray.end_step("filter_by_rating", {"total_evaluated": 50, "passed": 15})
    xray.start_step("select_top", {"criteria": "best_price"})
    xray.end_step(
        "select_top",
        {
            "ranked_candidates": [
                {"title": "Laptop A", "price": 999},
                {"title": "Laptop B", "price": 1099},
                {"title": "Laptop C", "price": 899},
            ],
            "selection": {"title": "Laptop C", "price": 899},
        },
    )
    xray.end({"success": True, "selectedProduct": "Laptop C"})

    await xray.save()
    job_ids = await xray.enqueue_reasoning(queue)
    await queue.wait_until_idle()

    execution = await storage.get_execution_by_id("reasoning-exec-1")
    assert [s.reasoning for s in execution.steps] == [
        "100→50 results",
        "15/50 passed",
        'Ranked 3 candidate(s) and selected "Laptop C" as top choice',
    ]
    completed = await storage.load_jobs([JobStatus.COMPLETED])
    assert sorted(j.id for j in completed) == sorted(job_ids)
