"""Sequential multi-item orchestration of generation jobs."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol, Sequence

from ..errors import RunInProgressError, RunStateError
from .generation_tasks import (
    CancellationToken,
    GenerationRequest,
    JobOutcome,
    LifestyleParameters,
)
from .prompts import FUTURE_MODE, POSES, PRESENT_MODE

logger = logging.getLogger(__name__)


class JobRunner(Protocol):
    async def run(
        self, request: GenerationRequest, cancel_token: Optional[CancellationToken] = None
    ) -> JobOutcome: ...


class RunState(Enum):
    """States of one orchestrator run."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class WorkItem:
    """One pose or timeline period bound to a single generation request."""

    label: str
    request: Optional[GenerationRequest] = None
    is_generating: bool = False
    result: Optional[str] = None
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def state(self) -> str:
        if self.request is None:
            return "empty"
        if self.is_generating:
            return "generating"
        if self.cancelled:
            return "cancelled"
        if self.result is not None:
            return "succeeded"
        if self.error is not None:
            return "failed"
        return "pending"

    def as_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "state": self.state,
            "is_generating": self.is_generating,
            "result": self.result,
            "error": self.error,
        }


@dataclass
class SequentialOrchestrator:
    """Drive a job over a fixed sequence of items, one at a time.

    A failed item never aborts the run; success and failure are only
    observable per item.
    """

    job: JobRunner
    items: list[WorkItem]
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: RunState = RunState.IDLE
    log: list[str] = field(default_factory=list)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)

    def _record(self, message: str, *args: Any, level: int = logging.INFO) -> None:
        line = message % args if args else message
        self.log.append(line)
        logger.log(level, "[Run %s] %s", self.run_id, line)

    @property
    def finished(self) -> bool:
        return self.state in (RunState.COMPLETED, RunState.CANCELLED)

    def cancel(self) -> None:
        if self.finished:
            return
        self.cancel_token.cancel()
        self._record("Cancellation requested")

    async def run(self) -> None:
        if self.state is RunState.RUNNING:
            raise RunInProgressError(f"Run {self.run_id} is already running")
        if self.state is not RunState.IDLE:
            raise RunStateError(f"Run {self.run_id} already finished as {self.state.value}")

        self.state = RunState.RUNNING
        total = len(self.items)
        self._record("Run started with %d items", total)

        for index, item in enumerate(self.items):
            if item.request is None:
                continue
            if self.cancel_token.cancelled:
                self.state = RunState.CANCELLED
                self._record("Run cancelled before %s", item.label)
                return

            self._record("Generating %s (%d/%d)", item.label, index + 1, total)
            item.is_generating = True
            try:
                outcome = await self.job.run(item.request, cancel_token=self.cancel_token)
            except asyncio.CancelledError:
                item.is_generating = False
                item.cancelled = True
                item.error = "Cancelled"
                self.state = RunState.CANCELLED
                self._record("Run task cancelled during %s", item.label, level=logging.WARNING)
                raise
            except Exception as exc:  # keep the remaining items alive
                logger.exception("[Run %s] Unexpected error generating %s", self.run_id, item.label)
                outcome = JobOutcome(succeeded=False, error=f"Unexpected error: {exc}")

            item.is_generating = False
            if outcome.succeeded:
                item.result = outcome.result_url
                self._record("%s completed: %s", item.label, outcome.result_url)
            elif outcome.cancelled:
                item.cancelled = True
                item.error = "Cancelled"
                self._record("%s cancelled", item.label, level=logging.WARNING)
            else:
                item.error = outcome.error
                self._record("%s failed: %s", item.label, outcome.error, level=logging.ERROR)

        if any(item.cancelled for item in self.items):
            self.state = RunState.CANCELLED
            self._record("Run cancelled")
            return

        self.state = RunState.COMPLETED
        succeeded = sum(1 for item in self.items if item.state == "succeeded")
        attempted = sum(1 for item in self.items if item.request is not None)
        self._record("Run completed: %d/%d items succeeded", succeeded, attempted)

    def snapshot(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "items": [item.as_dict() for item in self.items],
            "log": list(self.log),
        }


def timeline_items(image: Optional[str], parameters: LifestyleParameters) -> list[WorkItem]:
    """Two-period timeline: the person now, and 25 years later."""

    items = []
    for period in (PRESENT_MODE, FUTURE_MODE):
        request = GenerationRequest(image=image, parameters=parameters, mode=period) if image else None
        items.append(WorkItem(label=period, request=request))
    return items


def pose_items(images: Sequence[Optional[str]], parameters: LifestyleParameters) -> list[WorkItem]:
    """Nine-pose grid; images are matched to poses by index."""

    if len(images) > len(POSES):
        raise ValueError(f"At most {len(POSES)} pose images are supported")
    items = []
    for index, pose in enumerate(POSES):
        image = images[index] if index < len(images) else None
        request = GenerationRequest(image=image, parameters=parameters, mode=pose) if image else None
        items.append(WorkItem(label=f"pose {index + 1}", request=request))
    return items


class RunManager:
    """Process-wide registry that allows one live run at a time.

    The provider is a single paid job queue, so a second run is rejected
    while another one is idle or running.
    """

    def __init__(self, *, max_finished_runs: int = 20) -> None:
        self._runs: dict[str, SequentialOrchestrator] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._max_finished_runs = max_finished_runs

    def __len__(self) -> int:
        return len(self._runs)

    @property
    def active_run(self) -> Optional[SequentialOrchestrator]:
        for run in self._runs.values():
            if not run.finished:
                return run
        return None

    def create_run(self, items: list[WorkItem], job: JobRunner) -> SequentialOrchestrator:
        active = self.active_run
        if active is not None:
            raise RunInProgressError(f"Run {active.run_id} is still {active.state.value}")
        self._prune()
        run = SequentialOrchestrator(job=job, items=items)
        self._runs[run.run_id] = run
        return run

    def _prune(self) -> None:
        """Forget the oldest finished runs beyond the retention count."""

        finished = [run_id for run_id, run in self._runs.items() if run.finished]
        excess = len(finished) - self._max_finished_runs
        for run_id in finished[:max(excess, 0)]:
            del self._runs[run_id]

    def launch(self, run: SequentialOrchestrator) -> asyncio.Task:
        task = asyncio.create_task(run.run(), name=f"run-{run.run_id}")
        self._tasks[run.run_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(run.run_id, None))
        return task

    def get(self, run_id: str) -> Optional[SequentialOrchestrator]:
        return self._runs.get(run_id)

    def cancel(self, run_id: str) -> SequentialOrchestrator:
        run = self._runs.get(run_id)
        if run is None:
            raise KeyError(run_id)
        run.cancel()
        # A run that was registered but never launched has nothing to wait for.
        if run.state is RunState.IDLE and run_id not in self._tasks:
            run.state = RunState.CANCELLED
        return run

    async def shutdown(self) -> None:
        for run in self._runs.values():
            run.cancel()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


run_manager = RunManager()


def get_run_manager() -> RunManager:
    return run_manager
