"""Generate step reasoning in the background after saving an execution.

Uses the heuristic generator so no API key is needed. Pass
``create_agent_generator()`` instead to ask an LLM through pydantic-ai.
"""

import asyncio
import logging

from xraytrace import (
    InMemoryStorage,
    ReasoningQueue,
    XRay,
    create_reasoning_config,
    create_simple_generator,
)


async def main():
    logging.basicConfig(level=logging.INFO)

    storage = InMemoryStorage()
    queue = ReasoningQueue(
        storage,
        create_simple_generator(),
        create_reasoning_config(concurrency=3, debug=True),
    )
    xray = XRay("reasoning-exec-1", {"projectId": "demo"}, storage)

    xray.start_step("search_products", {"query": "laptops", "limit": 100})
    await asyncio.sleep(0.1)
    xray.end_step("search_products", {"total_results": 100, "candidates_fetched": 50})

    xray.start_step("filter_by_rating", {"threshold": 4.5})
    await asyncio.sleep(0.05)
    xray.end_step("filter_by_rating", {"total_evaluated": 50, "passed": 15})

    xray.start_step("select_top", {"criteria": "best_price"})
    await asyncio.sleep(0.03)
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

    execution = xray.end({"success": True, "selectedProduct": "Laptop C"})
    await xray.save()

    await xray.enqueue_reasoning(queue)
    await queue.wait_until_idle()

    updated = await storage.get_execution_by_id(execution.execution_id)
    for i, step in enumerate(updated.steps, start=1):
        print(f"{i}. {step.name} ({step.duration_ms}ms): {step.reasoning}")

    stats = queue.get_stats()
    print(f"📊 {stats.completed}/{stats.total_jobs} jobs completed, {stats.failed} failed")


if __name__ == "__main__":
    asyncio.run(main())
