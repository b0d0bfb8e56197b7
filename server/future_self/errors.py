"""Exception hierarchy for generation jobs and orchestrated runs."""
from __future__ import annotations

from typing import Optional


class GenerationError(Exception):
    """Base class for every failure a generation job can produce.

    ``stage`` records which half of the job raised (``submission`` or
    ``polling``); ``status_code`` and ``public_message`` drive the HTTP
    translation in the application's exception handler.
    """

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str, *, stage: Optional[str] = None, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.details = details

    def describe(self) -> str:
        """Message prefixed with the stage that produced it."""

        if self.stage:
            return f"{self.stage}: {self.message}"
        return self.message


class ConfigurationError(GenerationError):
    public_message = "API key not configured"


class TransportError(GenerationError):
    """Network failure or non-2xx reply from the provider."""

    public_message = "Failed to reach the generation provider"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message, stage=stage, details=body)
        self.provider_status = status_code
        self.body = body
        if stage == "submission":
            self.public_message = "Failed to create video generation task"
            # Provider rejections pass through with the provider's own status.
            if status_code is not None and status_code >= 400:
                self.status_code = status_code
        elif stage == "polling":
            self.public_message = "Failed to check task status"


class ProtocolError(GenerationError):
    """A 2xx reply that is missing a field the provider contract promises."""

    public_message = "Unexpected response from the generation provider"


class JobFailure(GenerationError):
    public_message = "Video generation failed"

    def __init__(self, reason: str, *, stage: Optional[str] = "polling") -> None:
        super().__init__(f"Video generation failed: {reason}", stage=stage, details=reason)
        self.reason = reason


class JobTimeout(GenerationError):
    public_message = "Video generation timed out"

    def __init__(self, attempts: int, *, stage: Optional[str] = "polling") -> None:
        super().__init__(f"Video generation timed out after {attempts} attempts", stage=stage)
        self.attempts = attempts


class JobCancelled(GenerationError):
    public_message = "Video generation cancelled"

    def __init__(self, *, stage: Optional[str] = None) -> None:
        super().__init__("Cancelled", stage=stage)


class RunStateError(RuntimeError):
    """Raised when a run is started from a state that does not allow it."""


class RunInProgressError(RunStateError):
    """Another run is still registered as idle or running."""
