"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the
Study Buddy API.

The application provides:
- Password and face authentication with a single session authority
- Completion-backed learning plans, quizzes and explanations
- Versioned notes and study history
- Identity provider webhooks
- User management and health check endpoints

Usage:
    # From project root:
    uvicorn buddy_api.app:app --host 0.0.0.0 --port 8000 --reload

    # Or run directly:
    python -m buddy_api.app
"""

import logging
import sqlite3
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from buddy_api.dependencies import get_db
from buddy_api.routes import (
    auth_router,
    face_router,
    management_router,
    notes_router,
    study_router,
    webhooks_router,
)
from buddy_api.schemas import HealthResponse
from buddy_core.config import (
    get_api_config,
    get_completion_config,
    get_identity_config,
    get_logging_config,
    get_matching_config,
    get_server_config,
    get_session_config,
)
from buddy_core.store import StudyStore, get_store

API_VERSION = "0.1.0"

# Configure logging
_logging_config = get_logging_config()
logging.basicConfig(
    level=getattr(logging, str(_logging_config.get("level", "INFO")).upper(), logging.INFO),
    format=_logging_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
)
logger = logging.getLogger(__name__)


def _configured_services() -> dict:
    return {
        "session": bool(get_session_config().get("secret")),
        "identity": bool(get_identity_config().get("secret_key")),
        "webhooks": bool(get_identity_config().get("webhook_secret")),
        "completion": bool(get_completion_config().get("api_key")),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup:
    - Initialize the store (creates the schema on first run)
    - Report which upstream services are configured

    Runs on shutdown:
    - Close the database connection
    """
    logger.info("=" * 60)
    logger.info("Starting Study Buddy API")
    logger.info("=" * 60)

    logger.info("Initializing store...")
    store = get_store()
    stats = store.get_stats()
    logger.info(
        f"Store ready: {stats['total_users']} users, "
        f"{stats['enrolled_faces']} enrolled faces, {stats['total_notes']} notes"
    )

    matching = get_matching_config()
    logger.info(
        f"Face matching: dim={matching.get('embedding_dim')}, "
        f"threshold={matching.get('accept_threshold')}"
    )

    for name, configured in _configured_services().items():
        if configured:
            logger.info(f"{name}: configured")
        else:
            logger.warning(f"{name}: not configured - related endpoints will fail")

    logger.info("API startup complete!")
    logger.info("=" * 60)

    yield

    # Cleanup on shutdown
    logger.info("Shutting down API...")
    store.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=get_api_config().get("title", "Study Buddy API"),
    description="""
API for a personal study assistant with face sign-in.

## Features
- **Authentication**: Email/password via the identity provider, or face
- **Study**: Learning plans, quizzes and answer explanations
- **Notes**: Rich-text notes with version history and restore
- **User Management**: List, view, and delete users (admin token)

## Face sign-in
The browser computes a 128-number face embedding and posts it to
`/face/login`. Images never reach the server.
    """,
    version=API_VERSION,
    lifespan=lifespan,
)

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_api_config().get("cors_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(face_router)
app.include_router(study_router)
app.include_router(notes_router)
app.include_router(webhooks_router)
app.include_router(management_router)


# ============================================================
# Health Check Endpoint
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check(store: StudyStore = Depends(get_db)):
    """
    Check the health of the API and its dependencies.

    Returns status of:
    - The database (and user/face counts)
    - Whether sessions, the identity provider and the completion service
      are configured
    """
    try:
        stats = store.get_stats()
        database_ok = True
    except sqlite3.Error as e:
        logger.error(f"Health check could not query the database: {e}")
        stats = {}
        database_ok = False

    services = _configured_services()
    status = "healthy" if database_ok and services["session"] else "degraded"

    return HealthResponse(
        status=status,
        database_ok=database_ok,
        total_users=stats.get("total_users", 0),
        enrolled_faces=stats.get("enrolled_faces", 0),
        session_configured=services["session"],
        identity_configured=services["identity"],
        completion_configured=services["completion"],
    )


@app.get("/", tags=["system"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Study Buddy API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    server = get_server_config()

    logger.info(f"Starting server on {server['host']}:{server['port']}")
    uvicorn.run(
        "buddy_api.app:app",
        host=server["host"],
        port=server["port"],
        reload=True,
        log_level="info",
    )
