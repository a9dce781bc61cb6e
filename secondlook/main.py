"""
SecondLook — bounded business snapshots from field-service activity.

App factory, lifespan, router mounts and error handlers. Process-lifetime
collaborators are built once here and hung on app.state.
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import settings
from .database import SessionLocal
from .http_client import close_clients
from .logging_config import setup_logging
from .routers import bucket, connections, ingest, snapshots, sources, webhooks
from .schemas.errors import ErrorResponse, FieldError
from .services.credential_service import CredentialManager
from .services.snapshot_service import SnapshotOrchestrator
from .services.telemetry import FallbackRateTracker
from .startup import run_startup_migrations


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)
    run_startup_migrations()
    logger.info("SecondLook started", mode=settings.snapshot_mode, version=__version__)
    yield
    await close_clients()
    logger.info("SecondLook stopped")


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id") or uuid.uuid4().hex[:12]


def create_app() -> FastAPI:
    app = FastAPI(title="SecondLook", version=__version__, lifespan=lifespan)

    tracker = FallbackRateTracker.from_settings(settings)
    app.state.tracker = tracker
    app.state.session_factory = SessionLocal
    app.state.orchestrator = SnapshotOrchestrator(settings, tracker)
    app.state.credentials = CredentialManager(settings, SessionLocal)

    app.include_router(ingest.router)
    app.include_router(bucket.router)
    app.include_router(snapshots.router)
    app.include_router(connections.router)
    app.include_router(sources.router)
    app.include_router(webhooks.router)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        body = ErrorResponse(error=str(exc.detail), status_code=exc.status_code, request_id=_request_id(request))
        return JSONResponse(body.model_dump(), status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        body = ErrorResponse(
            error="Invalid request",
            status_code=422,
            request_id=_request_id(request),
            detail=[FieldError(loc=list(e.get("loc", ())), msg=e.get("msg", "")) for e in exc.errors()],
        )
        return JSONResponse(body.model_dump(), status_code=422)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        rid = _request_id(request)
        logger.opt(exception=exc).error("Unhandled error", path=request.url.path, request_id=rid)
        body = ErrorResponse(error="Internal server error", status_code=500, request_id=rid)
        return JSONResponse(body.model_dump(), status_code=500)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__, "mode": settings.snapshot_mode}

    return app


app = create_app()
