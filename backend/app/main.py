"""Main FastAPI application entry point"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from app.api.apps import router as apps_router
from app.api.health import APP_VERSION, router as health_router
from app.core.config import settings
from app.core.logging import setup_logging
from app.db.database import async_session_factory, close_db, init_db
from app.services.rofl.sync import sync_apps
from app.services.store import SQLRegistryStore
from app.services.verification.service import verification_service

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


async def _check_database_startup():
    """Validate database connectivity during startup with retries."""
    start = time.perf_counter()
    max_retries = 5
    retry_delay = 2.0  # seconds

    for attempt in range(1, max_retries + 1):
        try:
            async with async_session_factory() as session:
                await asyncio.wait_for(session.execute(select(1)), timeout=3.0)
            duration = time.perf_counter() - start
            logger.info(
                "Startup database check succeeded",
                extra={"duration_seconds": round(duration, 3), "attempt": attempt},
            )
            return
        except (asyncio.TimeoutError, SQLAlchemyError, ConnectionRefusedError) as exc:
            if attempt < max_retries:
                logger.warning(
                    f"Startup database check failed (attempt {attempt}/{max_retries}), retrying in {retry_delay}s...",
                    extra={"error": str(exc), "attempt": attempt},
                )
                await asyncio.sleep(retry_delay)
            else:
                logger.error(
                    "Startup database check failed after all retries",
                    extra={"error": str(exc), "attempts": max_retries},
                )
                raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler
    """
    logger.info("Starting ROFL registry...")

    await _check_database_startup()
    await init_db()

    store = SQLRegistryStore(async_session_factory)
    app.state.store = store

    # Seed apps from the registry; a failure here must not block the API
    try:
        synced = await sync_apps(
            store,
            verification_service.fetcher,
            settings.APPS_REGISTRY_URL,
            settings.APPS_FALLBACK_REPOS,
        )
        logger.info(f"Synced {synced} apps from registry")
    except Exception as exc:
        logger.warning(f"Apps registry sync failed: {exc}")

    await verification_service.initialize(store)
    app.state.verification_service = verification_service

    logger.info("ROFL registry started successfully")

    try:
        yield
    finally:
        logger.info("Shutting down ROFL registry...")

        await verification_service.cleanup()
        await close_db()

        logger.info("ROFL registry shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Registry of ROFL apps with continuous reproducible-build verification",
    version=APP_VERSION,
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan,
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": exc.detail,
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
    """Handle validation errors without echoing user input."""
    errors = []
    for error in exc.errors():
        errors.append(
            {
                "type": error.get("type", ""),
                "location": error.get("loc", []),
                "message": error.get("msg", ""),
            }
        )

    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid request data",
            "details": errors,
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_SERVER_ERROR",
            "message": "An unexpected error occurred",
        },
    )


app.include_router(apps_router, prefix="/api", tags=["apps"])
app.include_router(health_router, tags=["health"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=settings.APP_DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
