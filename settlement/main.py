from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from settlement.routes import admin
from settlement.services.startup import startup_manager
from settlement.services.watcher import create_watcher
from config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown"""

    # Startup
    logger.info("Starting Monero settlement service...")

    # Missing wallet configuration disables the watcher, never the service
    watcher = create_watcher()
    app.state.watcher = watcher

    startup_status = await startup_manager.run_startup_checks(watcher)
    if startup_status["status"] == "degraded":
        logger.warning("Application started with some issues - check logs above")

    if watcher is not None:
        watcher.start()
    else:
        logger.warning("Monero watcher not running - invoices will stay pending until MONERO_RPC_URL is set")

    yield

    # Shutdown
    logger.info("Shutting down Monero settlement service...")
    if watcher is not None:
        watcher.stop()
    logger.info("Application shutdown complete")

# Create FastAPI application
app = FastAPI(
    title="Monero Settlement Service",
    description="Reconciles Monero payments against subscription invoices",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware conditionally
if settings.CORS_ENABLED:
    logger.info(f"CORS enabled with origins: {settings.CORS_ORIGINS}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.cors_methods_list,
        allow_headers=settings.cors_headers_list,
    )
else:
    logger.info("CORS disabled - assuming handled by nginx/webserver")

# Include routers
app.include_router(admin.router)

def watcher_status(request: Request) -> dict:
    watcher = getattr(request.app.state, "watcher", None)
    if watcher is None:
        return {"enabled": False, "running": False}

    report = watcher.last_report
    return {
        "enabled": True,
        "running": watcher.is_running,
        "poll_interval_seconds": watcher.poll_interval,
        "required_confirmations": watcher.required_confirmations,
        "account_index": watcher.account_index,
        "last_cycle_at": watcher.last_cycle_at.isoformat() if watcher.last_cycle_at else None,
        "last_error": watcher.last_error,
        "last_report": {
            "height": report.height,
            "checked": report.checked,
            "paid": report.paid,
            "confirmed": report.confirmed,
            "expired": report.expired,
            "errors": report.errors
        } if report else None
    }

# Health check endpoint
@app.get("/", tags=["health"], summary="Basic health check", include_in_schema=False)
async def root(request: Request):
    """Basic service information and status"""
    return {
        "service": "Monero Settlement Service",
        "status": "healthy",
        "version": "1.0.0",
        "watcher_enabled": getattr(request.app.state, "watcher", None) is not None,
        "documentation": "/docs"
    }

@app.get("/health", tags=["health"], summary="Detailed health check")
async def health_check(request: Request):
    """
    Detailed health check endpoint

    Returns startup check results, uptime, database information and the
    state of the Monero watcher including its last cycle report.
    """
    startup_status = startup_manager.get_startup_status()

    uptime_seconds = int(startup_status["uptime_seconds"])
    days = uptime_seconds // 86400
    hours = (uptime_seconds % 86400) // 3600
    minutes = (uptime_seconds % 3600) // 60
    seconds = uptime_seconds % 60

    if days > 0:
        uptime_formatted = f"{days}d {hours}h {minutes}m {seconds}s"
    elif hours > 0:
        uptime_formatted = f"{hours}h {minutes}m {seconds}s"
    elif minutes > 0:
        uptime_formatted = f"{minutes}m {seconds}s"
    else:
        uptime_formatted = f"{seconds}s"

    return {
        "status": startup_status["status"],
        "uptime_seconds": uptime_seconds,
        "uptime": uptime_formatted,
        "startup_checks": {
            "passed": startup_status["checks_passed"],
            "total": startup_status["total_checks"],
            "details": startup_status["checks"],
            "errors": startup_status["errors"],
            "warnings": startup_status["warnings"]
        },
        "watcher": watcher_status(request),
        "database": startup_manager.get_database_info()
    }
