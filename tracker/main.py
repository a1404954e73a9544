"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from tracker.api import router as api_router
from tracker.core.config import get_settings
from tracker.core.logging import get_logger
from tracker.core.opportunity_dates import wait_for_pending_syncs

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Give background CBC task syncs a chance to finish on shutdown."""
    yield
    cancelled = await wait_for_pending_syncs(timeout=get_settings().SHUTDOWN_SYNC_TIMEOUT_SECONDS)
    logger.info(f"Shutdown complete ({cancelled} CBC task syncs cancelled)")


app = FastAPI(
    title="Opportunity Tracker Scheduler",
    description="Next-call-date and Contact-Before-Call scheduling for sales opportunities",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
