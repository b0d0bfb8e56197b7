"""Single-item generation endpoint."""
from __future__ import annotations

import logging
from typing import Callable

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..models import schemas
from ..services.generation_tasks import GenerationJob, GenerationRequest, build_generation_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generations"])


def get_job_factory() -> Callable[[], GenerationJob]:
    """Return the callable that wires a job; overridden in tests."""

    return build_generation_job


@router.post(
    "/generate-future",
    response_model=schemas.GenerateFutureResponse,
    responses={400: {"model": schemas.ErrorResponse}, 500: {"model": schemas.ErrorResponse}},
)
async def generate_future(
    payload: schemas.GenerateFutureRequest,
    job_factory: Callable[[], GenerationJob] = Depends(get_job_factory),
) -> schemas.GenerateFutureResponse | JSONResponse:
    """Render an aged video of the uploaded photo and wait for the result.

    The request blocks until the provider task is terminal, which can take
    several minutes.
    """

    if not payload.image:
        return JSONResponse(status_code=400, content={"error": "Image is required"})

    # Credential problems surface here, before any provider call.
    job = job_factory()
    request = GenerationRequest(
        image=payload.image,
        parameters=payload.parameters.to_domain(),
        mode=payload.mode,
    )
    video_url = await job.execute(request)
    logger.info("Future video ready at %s", video_url)
    return schemas.GenerateFutureResponse(video_url=video_url)
