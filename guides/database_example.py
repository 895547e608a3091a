"""Persist executions and reasoning jobs in a database.

The backend comes from ``XRAY_DATABASE_URL`` (``sqlite://path`` or
``postgresql://...``) or ``database_url`` in ``xray.yaml``. Jobs left
pending by a crashed run are picked up again when the queue starts.
"""

import asyncio

from xraytrace import ReasoningQueue, XRay, create_simple_generator, get_storage, load_config


async def main():
    config = load_config()
    storage = get_storage(config.database_url or "sqlite://xray.db", config)
    queue = ReasoningQueue(
        storage, create_simple_generator(), config.reasoning, job_store=storage
    )

    xray = XRay("db-exec-1", {"projectId": config.project_id or "demo"}, storage)
    xray.start_step("step1", {"input": "data"})
    await asyncio.sleep(0.1)
    xray.end_step("step1", {"output": "result"})
    xray.start_step("step2", {"input": "result"})
    await asyncio.sleep(0.05)
    xray.end_step("step2", {"output": "final"})

    execution = xray.end({"success": True})
    await xray.save()
    print(f"✅ Execution saved: {execution.execution_id}")

    await queue.process_execution(execution.execution_id)

    retrieved = await storage.get_execution_by_id(execution.execution_id)
    for step in retrieved.steps:
        print(f"   {step.name}: {step.reasoning}")

    executions = await storage.get_all_executions()
    print(f"📋 Total executions in database: {len(executions)}")


if __name__ == "__main__":
    asyncio.run(main())
