"""FastAPI + MCP server for the Imaging Intake service using FastMCP."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastmcp import FastMCP

from src.config import settings
from src.database.connection import init_database
from src.handlers.imaging_handler import polling_scheduler
from src.handlers.imaging_handler import router as imaging_router

logger = logging.getLogger(__name__)


async def start_services(target: FastAPI):
    logger.info("Starting Imaging Intake...")
    init_database()

    if settings.scheduler_enabled:
        target.state.processing_task = asyncio.create_task(polling_scheduler.start_processing())
    else:
        logger.info("Polling scheduler disabled; polls run only when triggered")

    logger.info("Imaging Intake started successfully")


async def stop_services(target: FastAPI):
    logger.info("Shutting down Imaging Intake...")
    await polling_scheduler.stop_processing()

    task = getattr(target.state, "processing_task", None)
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    logger.info("Imaging Intake shut down complete")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    await start_services(app)
    yield
    await stop_services(app)


# 1. Create normal FastAPI app
app = FastAPI(
    title="Imaging Intake API",
    description="Mailbox document intake with barcode classification",
    version="1.0.0",
    lifespan=lifespan,
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "imaging-intake", "scheduler_active": polling_scheduler.processing}


# Include routers
app.include_router(imaging_router)


# Root endpoint for API
@app.get("/")
async def api_root():
    """API root endpoint with basic info."""
    return {
        "service": "Imaging Intake API",
        "version": "1.0.0",
        "description": "Mailbox document intake with barcode classification",
        "api_docs": "/docs",
        "health": "/health",
    }


# 2. Convert to MCP
if settings.mcp_enabled:
    logger.info("Converting FastAPI app to MCP...")
    mcp = FastMCP.from_fastapi(app, name="ImagingIntake MCP")

    # 3. Create MCP's ASGI app
    mcp_app = mcp.http_app(path="/mcp")
else:
    mcp_app = None


@asynccontextmanager
async def combined_lifespan(final_app: FastAPI):
    """Combined lifespan for the intake services and MCP."""
    await start_services(final_app)

    if mcp_app is not None:
        async with mcp_app.lifespan(final_app):
            yield
    else:
        yield

    await stop_services(final_app)


# 4. Create the final app with combined lifespan
final_app = FastAPI(
    title="Imaging Intake Service",
    description="Mailbox document intake with HTTP API and MCP support",
    version="1.0.0",
    lifespan=combined_lifespan,
)

# Mount the original API
final_app.mount("/api/v1", app)

# Mount the MCP app
if mcp_app is not None:
    final_app.mount("/llm", mcp_app)


# Add a root endpoint
@final_app.get("/")
async def root():
    """Root endpoint showing available APIs."""
    apis = {"http": "/api/v1", "health": "/api/v1/health", "docs": "/api/v1/docs"}
    if mcp_app is not None:
        apis["mcp"] = "/llm/mcp"
    return {
        "service": "Imaging Intake",
        "version": "1.0.0",
        "description": "Mailbox document intake with barcode classification",
        "apis": apis,
    }
