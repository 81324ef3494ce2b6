"""FastAPI application factory and middleware setup."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

from main_configs import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
    MAIN_APP_DESCRIPTION,
    MAIN_APP_TITLE,
    MAIN_APP_VERSION,
)

logger = logging.getLogger("NBA Engine API")


def create_app() -> FastAPI:
    """
    Factory function to create and configure the FastAPI application.

    Includes:
    - CORS middleware
    - Health check endpoint
    - Root endpoint
    - Next action and operator memory routes

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=MAIN_APP_TITLE,
        description=MAIN_APP_DESCRIPTION,
        version=MAIN_APP_VERSION,
    )

    # --------------------
    # CORS Middleware
    # --------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOW_ORIGINS,
        allow_credentials=CORS_ALLOW_CREDENTIALS,
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
    )

    # --------------------
    # Health Check
    # --------------------
    @app.get("/ping")
    def ping():
        """Health check endpoint."""
        return {"status": "ok"}

    # --------------------
    # Root Endpoint
    # --------------------
    @app.get("/", response_class=HTMLResponse)
    def index():
        return HTMLResponse(f"<h1>{MAIN_APP_TITLE}</h1>", status_code=200)

    # --------------------
    # API Routes
    # --------------------
    from api.handlers import create_api_router
    from api.memory_handlers import create_memory_router

    app.include_router(create_api_router())
    app.include_router(create_memory_router())

    logger.info("API routes registered")
    return app
