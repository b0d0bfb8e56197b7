"""BytePlus ModelArk generation-task client: submit, poll, extract."""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..config import Settings, get_settings
from ..errors import (
    ConfigurationError,
    GenerationError,
    JobCancelled,
    JobFailure,
    JobTimeout,
    ProtocolError,
    TransportError,
)
from .prompts import build_prompt

logger = logging.getLogger(__name__)

TASKS_PATH = "/contents/generations/tasks"

SUBMISSION = "submission"
POLLING = "polling"

LIFESTYLE_LEVELS = (1, 2, 3)

# Searched in order; the provider has moved the video URL around between releases.
RESULT_URL_PATHS: tuple[tuple[str, ...], ...] = (
    ("content", "video_url"),
    ("video_url",),
    ("videoUrl",),
    ("url",),
    ("result", "video_url"),
    ("result", "url"),
    ("data", "video_url"),
    ("data", "url"),
)

_SUCCEEDED_STATUSES = {"succeeded", "success"}
_FAILED_STATUSES = {"failed"}


@dataclass(frozen=True)
class LifestyleParameters:
    """Three lifestyle levels on a 1-3 scale that drive the aging prompt."""

    uv_exposure: int = 2
    body_composition: int = 2
    sleep_stress: int = 2

    def __post_init__(self) -> None:
        for name in ("uv_exposure", "body_composition", "sleep_stress"):
            value = getattr(self, name)
            if isinstance(value, bool) or value not in LIFESTYLE_LEVELS:
                raise ValueError(f"{name} must be one of {LIFESTYLE_LEVELS}, got {value!r}")


@dataclass(frozen=True)
class GenerationRequest:
    image: str
    parameters: LifestyleParameters = field(default_factory=LifestyleParameters)
    mode: Optional[str] = None


class TaskStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @classmethod
    def normalize(cls, raw: Any) -> "TaskStatus":
        """Map a vendor status string onto the local lifecycle."""

        value = str(raw or "").strip().lower()
        if value in _SUCCEEDED_STATUSES:
            return cls.SUCCEEDED
        if value in _FAILED_STATUSES:
            return cls.FAILED
        return cls.PENDING

    @property
    def terminal(self) -> bool:
        return self is not TaskStatus.PENDING


@dataclass
class GenerationTask:
    """One in-flight remote job as seen by the poller."""

    id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    result: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    reported_success: bool = False
    last_payload: Any = None

    def finish(
        self,
        status: TaskStatus,
        *,
        result: Optional[str] = None,
        error: Optional[str] = None,
    ) -> "GenerationTask":
        """Move to a terminal state. Allowed exactly once."""

        if self.status.terminal:
            raise RuntimeError(f"Task {self.id} already finished as {self.status.value}")
        if not status.terminal:
            raise ValueError("finish() requires a terminal status")
        self.status = status
        if status is TaskStatus.SUCCEEDED:
            self.result = result
        else:
            self.error = error
        return self


@dataclass(frozen=True)
class JobOutcome:
    succeeded: bool
    result_url: Optional[str] = None
    error: Optional[str] = None
    stage: Optional[str] = None
    cancelled: bool = False


class CancellationToken:
    """Cooperative cancellation flag checked between items and poll attempts."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class MissingTaskIdError(ProtocolError):
    public_message = "No task ID in response"


def extract_result_url(payload: Any) -> Optional[str]:
    """Return the first non-empty result URL found in a task payload.

    Missing keys and unexpected shapes are normal here and yield ``None``.
    """

    for path in RESULT_URL_PATHS:
        node = payload
        for key in path:
            if not isinstance(node, Mapping):
                node = None
                break
            node = node.get(key)
        if isinstance(node, str) and node.strip():
            return node
    return None


def _failure_reason(payload: Any) -> str:
    error = payload.get("error") if isinstance(payload, Mapping) else None
    if isinstance(error, Mapping):
        error = error.get("message") or error.get("code")
    if error:
        return str(error)
    return "Unknown error"


def _json_or_none(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


class _ArkClient:
    """Shared credential and connection handling for the task endpoints."""

    def __init__(
        self,
        *,
        api_key: Optional[str],
        base_url: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        key = (api_key or "").strip()
        if not key:
            raise ConfigurationError("BYTEPLUS_API_KEY missing; set your ModelArk API key")
        raw_base = (base_url or "").strip()
        if not raw_base.startswith(("http://", "https://")):
            raise ConfigurationError("BYTEPLUS_BASE_URL must include http/https scheme")
        self._api_key = key
        self._base_url = raw_base.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def tasks_url(self) -> str:
        return f"{self._base_url}{TASKS_PATH}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )


class TaskSubmitter(_ArkClient):
    """Creates image-to-video tasks and returns the provider's task id."""

    def __init__(self, *, model: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._model = model

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        return {
            "model": self._model,
            "content": [
                {"type": "text", "text": build_prompt(request.parameters, request.mode)},
                {"type": "image_url", "image_url": {"url": request.image}},
            ],
        }

    async def submit(self, request: GenerationRequest) -> str:
        payload = self.build_payload(request)
        logger.info("Creating generation task at %s (mode=%s)", self.tasks_url, request.mode or "future")
        try:
            async with self._client() as client:
                resp = await client.post(self.tasks_url, json=payload)
        except httpx.HTTPError as exc:
            raise TransportError(f"Task creation request failed: {exc}", stage=SUBMISSION) from exc

        if not resp.is_success:
            logger.error("Video API error (%s): %s", resp.status_code, resp.text[:500])
            raise TransportError(
                f"Provider rejected task creation with status {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
                stage=SUBMISSION,
            )

        data = _json_or_none(resp)
        task_id = None
        if isinstance(data, Mapping):
            task_id = data.get("id") or data.get("task_id")
        if not task_id:
            raise MissingTaskIdError("No task ID in response", stage=SUBMISSION, details=resp.text)
        return str(task_id)


class TaskPoller(_ArkClient):
    """Fixed-interval poller with a counted attempt budget."""

    def __init__(
        self,
        *,
        max_attempts: int = 60,
        poll_interval: float = 5.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._max_attempts = max_attempts
        self._poll_interval = poll_interval
        self._sleep = sleep

    async def _fetch_status(self, client: httpx.AsyncClient, task_id: str) -> Any:
        url = f"{self.tasks_url}/{task_id}"
        try:
            resp = await client.get(url)
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to check task status: {exc}", stage=POLLING) from exc
        if not resp.is_success:
            raise TransportError(
                f"Failed to check task status: {resp.text}",
                status_code=resp.status_code,
                body=resp.text,
                stage=POLLING,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise ProtocolError("Task status response is not JSON", stage=POLLING, details=resp.text) from exc

    async def poll(self, task_id: str, cancel_token: Optional[CancellationToken] = None) -> GenerationTask:
        """Poll until the task is terminal and return it.

        Transport failures propagate immediately; everything else ends in a
        terminal ``GenerationTask``.
        """

        task = GenerationTask(id=task_id)
        async with self._client() as client:
            for attempt in range(1, self._max_attempts + 1):
                if cancel_token is not None and cancel_token.cancelled:
                    logger.info("Task %s cancelled before attempt %d", task_id, attempt)
                    return task.finish(TaskStatus.CANCELLED, error="Cancelled")

                data = await self._fetch_status(client, task_id)
                task.attempts = attempt
                task.last_payload = data
                raw_status = data.get("status") if isinstance(data, Mapping) else None
                status = TaskStatus.normalize(raw_status)
                logger.info(
                    "Task %s status (attempt %d/%d): %s", task_id, attempt, self._max_attempts, raw_status
                )

                if status is TaskStatus.SUCCEEDED:
                    task.reported_success = True
                    url = extract_result_url(data)
                    if url:
                        logger.info("Video URL found for task %s: %s", task_id, url)
                        return task.finish(TaskStatus.SUCCEEDED, result=url)
                    # Provider may still be finalizing the payload; keep polling.
                    logger.warning("Task %s status is succeeded but no video URL found", task_id)
                elif status is TaskStatus.FAILED:
                    return task.finish(TaskStatus.FAILED, error=_failure_reason(data))
                else:
                    task.reported_success = False

                if attempt < self._max_attempts:
                    await self._sleep(self._poll_interval)

        if task.reported_success:
            error = f"Task reported success without a result URL after {task.attempts} attempts"
        else:
            error = f"Video generation timed out after {task.attempts} attempts"
        logger.error("Task %s: %s", task_id, error)
        return task.finish(TaskStatus.TIMED_OUT, error=error)


class GenerationJob:
    """Submit one request, wait for it and return the result URL."""

    def __init__(self, submitter: TaskSubmitter, poller: TaskPoller) -> None:
        self._submitter = submitter
        self._poller = poller

    async def execute(self, request: GenerationRequest, cancel_token: Optional[CancellationToken] = None) -> str:
        """Run the job, raising a stage-annotated ``GenerationError`` on failure."""

        if cancel_token is not None and cancel_token.cancelled:
            raise JobCancelled(stage=SUBMISSION)

        task_id = await self._submitter.submit(request)
        logger.info("Video generation task created: %s", task_id)

        task = await self._poller.poll(task_id, cancel_token=cancel_token)
        if task.status is TaskStatus.SUCCEEDED:
            return task.result
        if task.status is TaskStatus.FAILED:
            raise JobFailure(task.error or "Unknown error")
        if task.status is TaskStatus.CANCELLED:
            raise JobCancelled(stage=POLLING)
        if task.reported_success:
            raise ProtocolError(task.error, stage=POLLING, details=json.dumps(task.last_payload, default=str))
        raise JobTimeout(task.attempts)

    async def run(self, request: GenerationRequest, cancel_token: Optional[CancellationToken] = None) -> JobOutcome:
        """Run the job and fold every ``GenerationError`` into an outcome."""

        try:
            url = await self.execute(request, cancel_token=cancel_token)
        except JobCancelled as exc:
            return JobOutcome(succeeded=False, error=exc.describe(), stage=exc.stage, cancelled=True)
        except GenerationError as exc:
            logger.error("Generation job failed during %s: %s", exc.stage or "setup", exc.message)
            return JobOutcome(succeeded=False, error=exc.describe(), stage=exc.stage)
        return JobOutcome(succeeded=True, result_url=url)


def build_generation_job(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> GenerationJob:
    """Wire a ``GenerationJob`` from settings.

    Raises ``ConfigurationError`` before any network call when the API key is
    missing.
    """

    cfg = settings or get_settings()
    common = {
        "api_key": cfg.byteplus_api_key,
        "base_url": cfg.byteplus_base_url,
        "timeout": cfg.request_timeout_seconds,
        "transport": transport,
    }
    submitter = TaskSubmitter(model=cfg.generation_model, **common)
    poller = TaskPoller(
        max_attempts=cfg.poll_max_attempts,
        poll_interval=cfg.poll_interval_seconds,
        sleep=sleep,
        **common,
    )
    return GenerationJob(submitter, poller)
