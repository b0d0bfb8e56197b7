from __future__ import annotations

import asyncio

import pytest

from future_self.errors import RunInProgressError, RunStateError
from future_self.services.generation_tasks import (
    GenerationRequest,
    JobOutcome,
    LifestyleParameters,
)
from future_self.services.orchestration import (
    RunManager,
    RunState,
    SequentialOrchestrator,
    WorkItem,
    pose_items,
    timeline_items,
)
from future_self.services.prompts import POSES


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


class ScriptedJob:
    """Fake job returning outcomes by image and checking the one-at-a-time rule."""

    def __init__(self, outcomes, items=None, on_call=None):
        self.outcomes = outcomes
        self.items = items or []
        self.seen: list[GenerationRequest] = []
        self._on_call = on_call

    async def run(self, request, cancel_token=None):
        generating = [item for item in self.items if item.is_generating]
        assert len(generating) == 1
        assert generating[0].request is request
        self.seen.append(request)
        if self._on_call is not None:
            self._on_call(request)
        await asyncio.sleep(0)
        outcome = self.outcomes[request.image]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _item(label, image=None):
    return WorkItem(label=label, request=GenerationRequest(image=image) if image else None)


def _ok(url):
    return JobOutcome(succeeded=True, result_url=url)


def _failed(reason):
    return JobOutcome(succeeded=False, error=f"polling: {reason}", stage="polling")


def test_partial_failure_is_isolated_to_the_failing_item():
    items = [_item("one", "img-1"), _item("two", "img-2"), _item("three", "img-3")]
    job = ScriptedJob(
        {"img-1": _ok("https://x/1.mp4"), "img-2": _failed("boom"), "img-3": _ok("https://x/3.mp4")},
        items,
    )
    run = SequentialOrchestrator(job=job, items=items)

    _run(run.run())

    assert run.state is RunState.COMPLETED
    assert [item.state for item in items] == ["succeeded", "failed", "succeeded"]
    assert items[0].result == "https://x/1.mp4" and items[0].error is None
    assert items[1].error == "polling: boom" and items[1].result is None
    assert items[2].result == "https://x/3.mp4"
    assert not any(item.is_generating for item in items)
    assert [request.image for request in job.seen] == ["img-1", "img-2", "img-3"]


def test_items_without_input_are_skipped():
    items = [_item("one"), _item("two", "img-2"), _item("three")]
    job = ScriptedJob({"img-2": _ok("https://x/2.mp4")}, items)
    run = SequentialOrchestrator(job=job, items=items)

    _run(run.run())

    assert len(job.seen) == 1
    for item in (items[0], items[2]):
        assert item.state == "empty"
        assert item.result is None and item.error is None and not item.is_generating
    assert run.state is RunState.COMPLETED


def test_unexpected_exception_becomes_item_failure():
    items = [_item("one", "img-1"), _item("two", "img-2")]
    job = ScriptedJob({"img-1": ValueError("bad payload"), "img-2": _ok("https://x/2.mp4")}, items)
    run = SequentialOrchestrator(job=job, items=items)

    _run(run.run())

    assert items[0].state == "failed"
    assert "bad payload" in items[0].error
    assert items[1].state == "succeeded"


def test_run_log_records_progress():
    items = [_item("present", "img-1"), _item("future", "img-2")]
    job = ScriptedJob({"img-1": _ok("https://x/1.mp4"), "img-2": _failed("no face")}, items)
    run = SequentialOrchestrator(job=job, items=items)

    _run(run.run())

    assert run.log[0] == "Run started with 2 items"
    assert any("present completed" in line for line in run.log)
    assert any("future failed: polling: no face" in line for line in run.log)
    assert run.log[-1] == "Run completed: 1/2 items succeeded"


def test_cancellation_keeps_finished_items_and_stops_the_run():
    items = [_item("one", "img-1"), _item("two", "img-2"), _item("three", "img-3")]
    run = None

    def cancel_on_second(request):
        if request.image == "img-2":
            run.cancel()

    outcomes = {
        "img-1": _ok("https://x/1.mp4"),
        "img-2": JobOutcome(succeeded=False, error="polling: Cancelled", stage="polling", cancelled=True),
        "img-3": _ok("https://x/3.mp4"),
    }
    job = ScriptedJob(outcomes, items, on_call=cancel_on_second)
    run = SequentialOrchestrator(job=job, items=items)

    _run(run.run())

    assert run.state is RunState.CANCELLED
    assert items[0].state == "succeeded"
    assert items[1].state == "cancelled"
    assert items[1].error == "Cancelled"
    assert items[2].state == "pending"
    assert len(job.seen) == 2


def test_run_cannot_be_started_twice():
    items = [_item("one", "img-1")]
    run = SequentialOrchestrator(job=ScriptedJob({"img-1": _ok("https://x/1.mp4")}, items), items=items)
    _run(run.run())

    with pytest.raises(RunStateError):
        _run(run.run())


def test_concurrent_start_of_the_same_run_is_rejected():
    items = [_item("one", "img-1")]
    run = SequentialOrchestrator(job=ScriptedJob({"img-1": _ok("https://x/1.mp4")}, items), items=items)

    async def scenario():
        first = asyncio.create_task(run.run())
        await asyncio.sleep(0)
        with pytest.raises(RunInProgressError):
            await run.run()
        await first

    _run(scenario())
    assert run.state is RunState.COMPLETED


def test_run_manager_rejects_second_run_until_first_finishes():
    manager = RunManager()
    items = [_item("one", "img-1")]
    job = ScriptedJob({"img-1": _ok("https://x/1.mp4")}, items)

    async def scenario():
        first = manager.create_run(items, job)
        with pytest.raises(RunInProgressError):
            manager.create_run([_item("other", "img-1")], job)
        await manager.launch(first)
        return first, manager.create_run([_item("next")], job)

    first, second = _run(scenario())
    assert first.state is RunState.COMPLETED
    assert manager.get(second.run_id) is second


def test_run_manager_cancel_of_unlaunched_run_releases_the_slot():
    manager = RunManager()
    run = manager.create_run([_item("one", "img-1")], ScriptedJob({}))

    manager.cancel(run.run_id)

    assert run.state is RunState.CANCELLED
    assert manager.active_run is None
    with pytest.raises(KeyError):
        manager.cancel("missing")


def test_timeline_items_cover_present_and_future():
    params = LifestyleParameters(uv_exposure=3)
    items = timeline_items("img", params)

    assert [item.label for item in items] == ["present", "future"]
    assert [item.request.mode for item in items] == ["present", "future"]
    assert all(item.request.parameters is params for item in items)
    assert all(item.state == "empty" for item in timeline_items(None, params))


def test_pose_items_match_images_by_index():
    items = pose_items(["a", None, "c"], LifestyleParameters())

    assert len(items) == len(POSES) == 9
    assert items[0].request.mode == POSES[0]
    assert items[1].request is None
    assert items[2].request.image == "c"
    assert all(item.request is None for item in items[3:])

    with pytest.raises(ValueError):
        pose_items(["x"] * 10, LifestyleParameters())


def test_cancel_while_last_item_still_succeeds_completes_the_run():
    items = [_item("only", "img-1")]
    run = None
    job = ScriptedJob({"img-1": _ok("https://x/1.mp4")}, items, on_call=lambda request: run.cancel())
    run = SequentialOrchestrator(job=job, items=items)

    _run(run.run())

    assert items[0].state == "succeeded"
    assert run.state is RunState.COMPLETED
    assert run.log[-1] == "Run completed: 1/1 items succeeded"


def test_run_manager_keeps_only_recent_finished_runs():
    manager = RunManager(max_finished_runs=3)

    async def scenario():
        run_ids = []
        for n in range(10):
            items = [_item(f"item {n}", "img")]
            run = manager.create_run(items, ScriptedJob({"img": _ok("https://x/1.mp4")}, items))
            run_ids.append(run.run_id)
            await manager.launch(run)
        return run_ids

    run_ids = _run(scenario())

    assert len(manager) == 4
    assert all(manager.get(run_id) is not None for run_id in run_ids[-4:])
    assert all(manager.get(run_id) is None for run_id in run_ids[:-4])


class BlockingJob:
    """Succeeds for the first image and blocks on every later one."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def run(self, request, cancel_token=None):
        if request.image == "img-1":
            return _ok("https://x/1.mp4")
        self.started.set()
        await self.release.wait()
        return _ok("https://x/late.mp4")


def test_shutdown_cancels_the_in_flight_item_and_keeps_finished_ones():
    manager = RunManager()
    items = [_item("one", "img-1"), _item("two", "img-2"), _item("three", "img-3")]

    async def scenario():
        job = BlockingJob()
        run = manager.create_run(items, job)
        task = manager.launch(run)
        await job.started.wait()
        await manager.shutdown()
        return run, task

    run, task = _run(scenario())

    assert task.cancelled()
    assert run.state is RunState.CANCELLED
    assert items[0].state == "succeeded" and items[0].result == "https://x/1.mp4"
    assert items[1].state == "cancelled"
    assert items[1].error == "Cancelled"
    assert not items[1].is_generating
    assert items[2].state == "pending"
    assert any("cancelled during two" in line for line in run.log)
