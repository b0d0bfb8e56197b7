"""FastAPI application entrypoint for the future-self generation service."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .errors import GenerationError
from .routers import generations, runs
from .services.orchestration import run_manager

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Runs have no outer timeout; stop whatever is still polling on shutdown.
    await run_manager.shutdown()


async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    """Translate job failures into ``{error, details?}`` responses."""

    logger.error("Generation request failed (%s): %s", type(exc).__name__, exc.describe())
    content = {"error": exc.public_message}
    details = exc.details or exc.message
    if details and details != exc.public_message:
        content["details"] = details
    return JSONResponse(status_code=exc.status_code, content=content)


def create_app() -> FastAPI:
    """Instantiate and configure the FastAPI application."""
    application = FastAPI(
        title="Future Self Generator",
        description="Submits aged-portrait video jobs to the generation provider and tracks them.",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.add_exception_handler(GenerationError, generation_error_handler)
    application.include_router(generations.router)
    application.include_router(runs.router)

    @application.get("/")
    async def root() -> dict[str, str]:
        """Lightweight health endpoint for service discovery."""
        return {"service": "future-self", "status": "ok"}

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
