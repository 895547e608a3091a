"""Track a small pipeline in memory, without reasoning."""

import asyncio

from xraytrace import InMemoryStorage, XRay


async def main():
    storage = InMemoryStorage()
    xray = XRay("basic-exec-1", {"projectId": "demo"}, storage)

    xray.start_step("fetch_data", {"query": "laptops", "limit": 10})
    await asyncio.sleep(0.1)
    data = ["laptop1", "laptop2", "laptop3"]
    xray.end_step("fetch_data", {"count": len(data), "items": data})

    xray.start_step("process_data", {"items": data})
    await asyncio.sleep(0.05)
    processed = [item.upper() for item in data]
    xray.end_step("process_data", {"processed": len(processed)})

    xray.start_step("save_results", {"count": len(processed)})
    await asyncio.sleep(0.03)
    xray.end_step("save_results", {"success": True})

    execution = xray.end({"totalProcessed": len(processed)})
    await xray.save()

    print(f"✅ Execution {execution.execution_id} finished with {len(execution.steps)} steps")
    print(f"⏱️  Duration: {execution.ended_at - execution.started_at}")

    retrieved = await storage.get_execution_by_id(execution.execution_id)
    print("🔗 Steps:", " → ".join(s.name for s in retrieved.steps))


if __name__ == "__main__":
    asyncio.run(main())
