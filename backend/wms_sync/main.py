"""Main FastAPI application."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from wms_sync import __version__
from wms_sync.api.v1.api import api_router
from wms_sync.api.v1.endpoints import webhook
from wms_sync.config import settings
from wms_sync.database import init_db
from wms_sync.scheduler import shutdown_scheduler, start_scheduler
from wms_sync.services.sync_service import SyncSessionScheduler
from wms_sync.utils.log_setup import configure_logging

configure_logging(settings.log_level)
log = logging.getLogger(__name__)

app = FastAPI(
    title="WMS Sync",
    description="Synchronization and reconciliation of orders, products, inventory and shipments with external WMS systems",
    version=__version__
)

# One scheduler per process; it owns the per-tenant locks and credit ledgers
app.state.sync_scheduler = SyncSessionScheduler()


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__
    }


@app.get("/")
async def root():
    """Root endpoint - redirect to docs."""
    return {
        "message": "WMS Sync API",
        "version": __version__,
        "docs": "/docs"
    }


app.include_router(webhook.router, tags=["webhook"])
app.include_router(api_router, prefix=settings.api_v1_str)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    log.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


@app.on_event("startup")
async def startup_event():
    init_db()
    if settings.scheduler_enabled:
        start_scheduler(app.state.sync_scheduler)
    else:
        log.info("Periodic sync disabled by configuration")


@app.on_event("shutdown")
async def shutdown_event():
    shutdown_scheduler()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=settings.log_level.lower())
