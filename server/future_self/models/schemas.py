"""Pydantic models describing request and response payloads."""
from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..services.generation_tasks import LifestyleParameters


class LifestyleParametersPayload(BaseModel):
    """Lifestyle levels on a 1-3 scale; omitted levels default to 2."""

    model_config = ConfigDict(populate_by_name=True)

    uv_exposure: int = Field(default=2, ge=1, le=3, alias="uvExposure")
    body_composition: int = Field(default=2, ge=1, le=3, alias="bodyComposition")
    sleep_stress: int = Field(default=2, ge=1, le=3, alias="sleepStress")

    def to_domain(self) -> LifestyleParameters:
        return LifestyleParameters(
            uv_exposure=self.uv_exposure,
            body_composition=self.body_composition,
            sleep_stress=self.sleep_stress,
        )


class GenerateFutureRequest(BaseModel):
    """Incoming payload for a single aged-video generation."""

    image: Optional[str] = Field(default=None, description="Photo as a data URL or http(s) URL")
    parameters: LifestyleParametersPayload = Field(default_factory=LifestyleParametersPayload)
    mode: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("mode", "period"),
        description="Timeline period (present/future) or a pose description",
    )

    @field_validator("parameters", mode="before")
    @classmethod
    def null_parameters_mean_defaults(cls, value: Any) -> Any:
        return {} if value is None else value


class GenerateFutureResponse(BaseModel):
    video_url: str = Field(..., serialization_alias="videoUrl")


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None


class RunItemPayload(BaseModel):
    label: str
    image: Optional[str] = None
    mode: Optional[str] = None


class RunCreateRequest(BaseModel):
    """Start a multi-item run: a timeline, a pose grid, or explicit items."""

    kind: Literal["timeline", "poses", "custom"] = "timeline"
    image: Optional[str] = Field(default=None, description="Source photo for timeline runs")
    images: List[Optional[str]] = Field(default_factory=list, description="Per-pose photos, by index")
    items: List[RunItemPayload] = Field(default_factory=list, description="Explicit items for custom runs")
    parameters: LifestyleParametersPayload = Field(default_factory=LifestyleParametersPayload)

    @field_validator("parameters", mode="before")
    @classmethod
    def null_parameters_mean_defaults(cls, value: Any) -> Any:
        return {} if value is None else value


class WorkItemStatus(BaseModel):
    label: str
    state: str
    is_generating: bool
    result: Optional[str] = None
    error: Optional[str] = None


class RunStatusResponse(BaseModel):
    """Represents the current state of a run."""

    run_id: str
    state: str
    items: List[WorkItemStatus]
    log: List[str] = Field(default_factory=list)
