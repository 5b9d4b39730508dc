"""FastAPI application bootstrap."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routers import health, jobs
from app.core.config import get_settings
from app.core.exceptions import InvalidJobTypeError

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Instantiate the FastAPI app and include top-level routers."""
    settings = get_settings()
    app = FastAPI(title=settings.app_name, version="0.1.0")

    @app.exception_handler(InvalidJobTypeError)
    async def invalid_job_type_handler(request: Request, exc: InvalidJobTypeError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    app.include_router(health.router)
    app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])

    logger.info(f"{settings.app_name} API configured")
    return app


app = create_app()
