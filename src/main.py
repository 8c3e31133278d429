"""FastAPI application entry point for the compliance engine."""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.middleware.error_handler import global_exception_handler
from src.api.middleware.logging import StructuredLoggingMiddleware
from src.api.routes.compliance import router as compliance_router
from src.api.routes.health import router as health_router
from src.config import settings
from src.domains.compliance.errors import ComplianceError
from src.domains.compliance.screening import StaticReferenceListProvider
from src.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level, json_output=settings.log_json)

    logger.info(
        "complii_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        default_region=settings.default_region,
        debug=settings.debug,
    )

    from src.db.database import close_db, init_db

    try:
        await init_db()
    except Exception:
        logger.warning("database_init_failed", exc_info=True)

    yield

    logger.info("complii_shutting_down")
    await close_db()


app = FastAPI(
    title="Complii Engine",
    description="AML/CTF compliance detection and regulator reporting",
    version=settings.app_version,
    lifespan=lifespan,
)

# Reference lists are loaded by the deployment; empty until then
app.state.reference_provider = StaticReferenceListProvider({})

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Structured logging middleware
app.add_middleware(StructuredLoggingMiddleware)

# Engine errors map to 4xx/5xx; ValueError covers model validation failures
app.add_exception_handler(ComplianceError, global_exception_handler)
app.add_exception_handler(ValueError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.include_router(health_router)
app.include_router(compliance_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
