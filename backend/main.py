"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import connected_accounts, consents, institutions, jobs
from api.helpers import set_aggregation_core
from config import settings
from database import get_session_local
from logging_config import setup_logging
from services.aggregation import build_aggregation_core

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the Open Finance aggregation core when the feature is enabled.

    The TLS context is built eagerly so broken certificate material fails
    startup instead of the first institution call.
    """
    core = None
    if settings.OPEN_FINANCE_ENABLED:
        core = build_aggregation_core(settings, session_factory=get_session_local())
        core.provisioner.get_ssl_context()
        set_aggregation_core(core)
    else:
        logger.info("Open Finance disabled; aggregation endpoints will return 404")
    try:
        yield
    finally:
        set_aggregation_core(None)
        if core is not None:
            core.close()


app = FastAPI(
    title="Finlink",
    description="Open Finance account aggregation",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(institutions.router)
app.include_router(consents.router)
app.include_router(connected_accounts.router)
app.include_router(jobs.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "open_finance": settings.OPEN_FINANCE_ENABLED}
