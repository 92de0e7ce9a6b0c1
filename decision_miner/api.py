"""
FastAPI application for the decision pipeline.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .db.base import get_session_local, init_database
from .errors import LimitExceeded, PipelineError, RateLimited
from .logging_config import configure_logging
from .routes import router
from .sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger()

settings = get_settings()


def _package_version() -> str:
    try:
        return importlib.metadata.version("decision-miner")
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings.log_level, settings.log_format)
    logger.info("api_starting", app_name=settings.app_name)

    try:
        init_database()
        reconciled = SyncOrchestrator(get_session_local()).reconcile_stale_runs()
        if reconciled:
            logger.warning("stale_sync_runs_reconciled", count=reconciled)
    except Exception as e:
        logger.error("api_startup_failed", error=str(e))
        raise

    yield

    logger.info("api_stopped")


app = FastAPI(
    title="Decision Miner",
    description="Mines architectural decisions from merged pull requests",
    version=_package_version(),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Render pipeline errors as ``{"error": {code, message, details}}``."""
    headers = {}
    if isinstance(exc, (RateLimited, LimitExceeded)) and exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    if exc.status_code >= 500:
        logger.error(
            "request_failed", path=request.url.path, error_code=exc.code, error=exc.message
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.get("/health", tags=["system"])
async def health() -> dict:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/version", tags=["system"])
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": _package_version()}


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
