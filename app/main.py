"""
FastAPI main application.

Entry point for the Strategy Trade Engine backend.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from app.api.v1.strategy_trades import router as strategy_trades_router
from app.config.settings import get_settings
from app.core.logger import get_logger, setup_logging_from_settings
from app.core.responses import error_response
from app.scheduling.jobs import register_trade_jobs
from app.scheduling.scheduler import Scheduler
from app.services.factory import build_trade_services
from app.shared.exceptions import AppException
from app.utils.cache import get_redis_client, close_redis_client

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Connects Redis, wires the trade services and starts the in-process
    scheduler; tears everything down on shutdown.
    """
    # Startup
    setup_logging_from_settings(settings)
    logger.info(f"Starting application ({settings.ENVIRONMENT})...")

    scheduler = None
    try:
        redis_client = await get_redis_client()
        services = build_trade_services(redis_client, settings=settings)
        app.state.trade_services = services

        if settings.SCHEDULER_ENABLED:
            scheduler = Scheduler()
            register_trade_jobs(scheduler, services, settings)
            await scheduler.start()
        app.state.scheduler = scheduler

        logger.info("Application started successfully")
    except Exception as e:
        logger.error(f"Failed to start application: {str(e)}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down application...")

    try:
        if scheduler is not None:
            await scheduler.stop()
        await app.state.trade_services.close()
        await close_redis_client()
        logger.info("Application shut down successfully")
    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    description="Virtual options/futures strategy trades: targets, partial exits, trailing stops and EOD liquidation.",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Render application errors in the standard response format."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.status_code, "Request failed", exc.code, exc.message),
    )


# Include routers
app.include_router(strategy_trades_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION
    }
