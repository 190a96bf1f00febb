"""TowMech Dispatch API -- Main Application Entry Point

Creates the FastAPI application, configures CORS middleware and registers
the API route modules under the /api/v1 prefix.

Run with::

    uvicorn towmech.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from towmech.core.config import settings


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Startup:
      - Configure logging at the configured level.

    Shutdown:
      - Give in-flight offer notifications a moment to finish.
    """
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    yield

    from towmech.services.offerNotifier import drain_pending_deliveries

    await drain_pending_deliveries()


# ---------------------------------------------------------------------------
# Application instance
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# CORS middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health():
    """Lightweight health check for load balancers and orchestrator readiness checks."""
    return {"status": "ok", "version": settings.app_version}


# ---------------------------------------------------------------------------
# Register API route modules
# ---------------------------------------------------------------------------
# Each router defines its own prefix (/jobs, /providers) and tags. They are
# mounted under the shared /api/v1 prefix.
# ---------------------------------------------------------------------------

from towmech.api.routes import jobs, providers  # noqa: E402

_prefix = settings.api_v1_prefix

app.include_router(jobs.router, prefix=_prefix)
app.include_router(providers.router, prefix=_prefix)
