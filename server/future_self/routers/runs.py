"""Multi-item run endpoints (timeline periods, pose grids)."""
from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from ..errors import RunInProgressError
from ..models import schemas
from ..services.generation_tasks import GenerationJob, GenerationRequest
from ..services.orchestration import (
    RunManager,
    WorkItem,
    get_run_manager,
    pose_items,
    timeline_items,
)
from .generations import get_job_factory

router = APIRouter(prefix="/runs", tags=["runs"])


def _build_items(payload: schemas.RunCreateRequest) -> list[WorkItem]:
    parameters = payload.parameters.to_domain()
    if payload.kind == "timeline":
        return timeline_items(payload.image, parameters)
    if payload.kind == "poses":
        return pose_items(payload.images, parameters)
    return [
        WorkItem(
            label=item.label,
            request=GenerationRequest(image=item.image, parameters=parameters, mode=item.mode)
            if item.image
            else None,
        )
        for item in payload.items
    ]


@router.post(
    "",
    status_code=202,
    response_model=schemas.RunStatusResponse,
    responses={400: {"model": schemas.ErrorResponse}, 409: {"model": schemas.ErrorResponse}},
)
async def create_run(
    payload: schemas.RunCreateRequest,
    manager: RunManager = Depends(get_run_manager),
    job_factory: Callable[[], GenerationJob] = Depends(get_job_factory),
) -> schemas.RunStatusResponse | JSONResponse:
    """Start a run in the background and return its initial snapshot."""

    try:
        items = _build_items(payload)
    except ValueError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    if not any(item.request is not None for item in items):
        return JSONResponse(status_code=400, content={"error": "Image is required"})

    job = job_factory()
    try:
        run = manager.create_run(items, job)
    except RunInProgressError as exc:
        return JSONResponse(status_code=409, content={"error": "A run is already in progress", "details": str(exc)})

    snapshot = run.snapshot()
    manager.launch(run)
    return schemas.RunStatusResponse(**snapshot)


@router.get("/{run_id}", response_model=schemas.RunStatusResponse)
async def get_run_status(run_id: str, manager: RunManager = Depends(get_run_manager)) -> schemas.RunStatusResponse:
    """Return the current state, per-item status and log of a run."""

    run = manager.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return schemas.RunStatusResponse(**run.snapshot())


@router.post("/{run_id}/cancel", response_model=schemas.RunStatusResponse)
async def cancel_run(run_id: str, manager: RunManager = Depends(get_run_manager)) -> schemas.RunStatusResponse:
    try:
        run = manager.cancel(run_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Run not found") from None
    return schemas.RunStatusResponse(**run.snapshot())
