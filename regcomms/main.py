"""Regulatory incident communication API."""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from regcomms import __version__
from regcomms.config import settings
from regcomms.database import close_database, get_session_maker
from regcomms.dependencies import build_container
from regcomms.logging_config import get_logger, setup_logging
from regcomms.middleware import CorrelationIdMiddleware
from regcomms.routers import communications, deadlines, escalations, health, rules
from regcomms.services.scheduler import start_scheduler, stop_scheduler

setup_logging(
    log_format=settings.log_format,
    log_level=settings.log_level,
    service_name=settings.service_name,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    # Note: migrations are applied with `alembic upgrade head` before startup
    services = build_container(get_session_maker(), settings)
    app.state.services = services
    await services.catalog.reload()

    if settings.scheduler_enabled:
        start_scheduler(services, settings)
    logger.info("Regulatory communications API started")

    yield

    # Shutdown
    logger.info("Shutting down regulatory communications API...")
    stop_scheduler()
    await close_database()
    logger.info("Regulatory communications API shutdown complete")


app = FastAPI(
    title="Regulatory Communications API",
    description="Incident escalation, stakeholder notification and regulatory deadline tracking",
    version=__version__,
    lifespan=lifespan,
)

# Middleware (order matters: first added = last executed)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(health.router)
app.include_router(escalations.router)
app.include_router(communications.router)
app.include_router(deadlines.router)
app.include_router(rules.router)


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint."""
    return {
        "name": "Regulatory Communications API",
        "version": __version__,
        "docs": "/docs",
    }
