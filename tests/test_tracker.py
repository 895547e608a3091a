"""Step tracking tests."""

import logging
from datetime import timedelta

import pytest

from xraytrace import (
    DuplicateStepError,
    InMemoryStorage,
    ReasoningQueue,
    XRay,
    create_simple_generator,
)


def test_steps_are_recorded_in_completion_order():
    xray = XRay("exec-order")
    xray.start_step("a", {"n": 1})
    xray.start_step("b", {"n": 2})
    xray.end_step("b", {"ok": True})
    xray.end_step("a", {"ok": True})

    steps = xray.get_execution().steps
    assert [s.name for s in steps] == ["b", "a"]
    for step in steps:
        assert step.duration_ms == (step.ended_at - step.started_at) // timedelta(
            milliseconds=1
        )
        assert step.reasoning is None
    assert xray.pending_reasoning_steps == ["b", "a"]


def test_end_step_sets_output_and_error_step_sets_error():
    xray = XRay("exec-paths")
    xray.start_step("ok", {"q": "shoes"}, metadata={"source": "api"})
    xray.end_step("ok", {"count": 3})
    xray.start_step("bad", {"q": "boots"})
    xray.error_step("bad", RuntimeError("upstream exploded"))

    ok, bad = xray.get_execution().steps
    assert ok.output == {"count": 3}
    assert ok.error is None
    assert ok.metadata == {"source": "api"}
    assert bad.error == "upstream exploded"
    assert bad.output is None
    assert bad.input == {"q": "boots"}


def test_closing_unknown_step_is_ignored():
    xray = XRay("exec-unknown")
    xray.end_step("never-started", {"x": 1})
    xray.error_step("never-started", "boom")

    assert xray.get_execution().steps == []
    assert xray.pending_reasoning_steps == []


def test_duplicate_start_replaces_open_step(caplog):
    xray = XRay("exec-dup")
    xray.start_step("fetch", {"attempt": 1})
    with caplog.at_level(logging.WARNING, logger="xraytrace.tracker"):
        xray.start_step("fetch", {"attempt": 2})
    xray.end_step("fetch", {"ok": True})

    steps = xray.get_execution().steps
    assert len(steps) == 1
    assert steps[0].input == {"attempt": 2}
    assert "fetch" in caplog.text


def test_duplicate_start_raises_in_strict_mode():
    xray = XRay("exec-strict", strict=True)
    xray.start_step("fetch", {})

    with pytest.raises(DuplicateStepError):
        xray.start_step("fetch", {})


def test_end_sets_outcome_without_persisting():
    storage = InMemoryStorage()
    xray = XRay("exec-end", metadata={"user": "u1"}, storage=storage, project_id="demo")
    xray.start_step("fetch", {})
    xray.end_step("fetch", {})

    execution = xray.end({"success": True})
    assert execution.ended_at is not None
    assert execution.final_outcome == {"success": True}
    assert execution.project_id == "demo"
    assert execution.metadata == {"user": "u1"}
    assert execution is xray.get_execution()


def test_log_step_records_finished_step():
    xray = XRay("exec-log")
    xray.log_step("legacy", {"in": 1}, {"out": 2}, metadata={"v": 1})

    (step,) = xray.get_execution().steps
    assert step.name == "legacy"
    assert step.output == {"out": 2}
    assert step.timestamp is not None
    assert step.duration_ms is None
    assert xray.pending_reasoning_steps == []


@pytest.mark.asyncio
async def test_save_without_storage_is_noop():
    xray = XRay("exec-nostore")
    xray.start_step("fetch", {})
    xray.end_step("fetch", {})
    await xray.save()


@pytest.mark.asyncio
async def test_save_then_enqueue_reasoning():
    storage = InMemoryStorage()
    xray = XRay("exec-1", storage=storage)
    xray.start_step("fetch", {"q": "shoes"})
    xray.end_step("fetch", {"count": 3})
    xray.start_step("filter", {"threshold": 4.5})
    xray.error_step("filter", ValueError("ratings missing"))
    xray.end({"success": False})

    await xray.save()
    queue = ReasoningQueue(storage, create_simple_generator())
    job_ids = await xray.enqueue_reasoning(queue)
    await queue.wait_until_idle()

    assert len(job_ids) == 2
    saved = await storage.get_execution_by_id("exec-1")
    assert saved.steps[0].reasoning == "fetch processed ({}ms)".format(
        saved.steps[0].duration_ms
    )
    assert saved.steps[1].reasoning == "filter failed: ratings missing"
    assert xray.get_execution().steps[0].reasoning is None
