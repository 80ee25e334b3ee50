"""
feedwatch - Reddit keyword feed with an LLM relevance-filtering queue.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from feedwatch.config import get_settings
from feedwatch.api.router import api_router
from feedwatch.services.filter_queue import (
    LeaseConflictError,
    QueueItemNotFoundError,
    QueueValidationError,
)
from feedwatch.services.storage import get_store, reset_store
from feedwatch.utils.locks import LockTimeoutError
from feedwatch.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("feedwatch")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("feedwatch starting up (env=%s)", settings.app_env)

    if not settings.worker_auth_token:
        logger.warning(
            "WORKER_AUTH_TOKEN not set - queue worker endpoints are unauthenticated."
        )

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    store = get_store()
    await store.init()
    logger.info("Storage ready (backend=%s)", store.backend)

    worker_tasks: list[asyncio.Task] = []

    if settings.queue_sweeper_enabled:
        from feedwatch.workers.queue_sweeper import run_queue_sweeper
        worker_tasks.append(asyncio.create_task(run_queue_sweeper()))
        logger.info("Queue sweeper started")
    else:
        logger.info("Queue sweeper disabled (reset-stuck/cleanup rely on the external scheduler)")

    yield

    logger.info("feedwatch shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        # Wait up to 10 seconds for workers to finish
        done, pending = await asyncio.wait(worker_tasks, timeout=10.0)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    await store.close()
    reset_store()
    logger.info("feedwatch shutdown complete")


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


def register_exception_handlers(application: FastAPI) -> None:
    """Map queue errors to HTTP status codes. Anything unexpected is a 500 with the raw message."""

    @application.exception_handler(QueueValidationError)
    async def _validation_error(request: Request, exc: QueueValidationError):
        return _error_response(400, exc)

    @application.exception_handler(QueueItemNotFoundError)
    async def _not_found(request: Request, exc: QueueItemNotFoundError):
        return _error_response(404, exc)

    @application.exception_handler(LeaseConflictError)
    async def _lease_conflict(request: Request, exc: LeaseConflictError):
        return _error_response(409, exc)

    @application.exception_handler(LockTimeoutError)
    async def _lock_busy(request: Request, exc: LockTimeoutError):
        return _error_response(409, exc)

    @application.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error("Unhandled error on %s: %s", request.url.path, str(exc), exc_info=exc)
        return _error_response(500, exc)


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="feedwatch",
        description="Reddit keyword feed with an LLM relevance-filtering queue",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization", "Content-Type", "X-Correlation-ID",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    register_exception_handlers(application)

    # Include all routes
    application.include_router(api_router)

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run("feedwatch.main:app", host=_settings.app_host, port=_settings.app_port)
