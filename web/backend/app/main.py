"""FastAPI application for the Diagram Forge moderation service.

Provides REST API endpoints wrapping the diagram_forge package for:
- Content submission through the safety pipeline
- The manual review queue and admin decisions
- Moderation audit history and rate-limit quota
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from diagram_forge import __version__
from diagram_forge.logging_config import configure_logging
from web.backend.app.routers import moderation

configure_logging()

app = FastAPI(
    title="Diagram Forge API",
    description=(
        "REST API for the Diagram Forge content-safety pipeline. "
        "Provides endpoints for content submission, the manual review queue, "
        "and moderation history."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for development)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(moderation.router)


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "Diagram Forge API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
