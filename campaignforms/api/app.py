"""
FastAPI application factory for the campaign forms backend.

Creates and configures the FastAPI app, builds the storage tiers and the
respondent session store, and mounts the routes.

Run with:
    uvicorn campaignforms.api.app:app --reload
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campaignforms.api.routes import configure_routes, router
from campaignforms.core.session import SessionStore
from campaignforms.storage.base import DEFAULT_SHARE_BASE_URL, Repository
from campaignforms.storage.factory import build_repository, describe_storage

# Load environment variables from .env
load_dotenv()

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    repository: Repository | None = None,
    session_store: SessionStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        repository: Storage to use. Built from the environment if omitted.
        session_store: Respondent session store. Built from the environment
            if omitted.
    """

    application = FastAPI(
        title="Campaign Forms",
        description="Dynamic forms with conditional logic and gated submissions",
        version="0.1.0",
    )

    # CORS: all origins unless CORS_ALLOWED_ORIGINS narrows it
    allowed_origins = os.getenv("CORS_ALLOWED_ORIGINS", "*").split(",")
    application.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if repository is None:
        repository = build_repository(
            mode=os.getenv("STORAGE_MODE", "tiered"),
            database_path=os.getenv("DATABASE_PATH", "data/campaignforms.db"),
            data_dir=os.getenv("DATA_DIR", "data"),
            share_base_url=os.getenv("APP_URL", DEFAULT_SHARE_BASE_URL),
        )

    session_timeout = int(os.getenv("SESSION_TIMEOUT_SECONDS", "1800"))
    if session_store is None:
        session_store = SessionStore(timeout_seconds=session_timeout)

    configure_routes(application, repository, session_store)
    application.include_router(router, prefix="/api")

    logger.info("Campaign forms backend configured (storage: %s)", describe_storage(repository))
    logger.info("Session timeout: %d seconds", session_timeout)

    return application


# Create the app instance (used by uvicorn)
app = create_app()
