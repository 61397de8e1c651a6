"""FastAPI application entry point for the sensing upload service.

This module initializes the FastAPI application, sets up logging,
registers routers, and translates service errors into responses.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sensing.config import get_settings
from sensing.errors import SensingError
from sensing.logging_config import request_id_var, setup_logging, get_logger
from sensing.models.database import create_tables
from sensing.routes import health, upload

logger = get_logger(__name__)

SERVICE_NAME = "Sensing Upload Service"
SERVICE_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging and create missing tables on startup."""
    settings = get_settings()
    setup_logging()
    create_tables()

    logger.info(
        f"{SERVICE_NAME} starting - "
        f"Environment: {settings.environment}, "
        f"Log Level: {settings.log_level}, "
        f"Definitions: {settings.definitions_dir}"
    )

    yield

    logger.info(f"{SERVICE_NAME} shutting down")


app = FastAPI(
    title=SERVICE_NAME,
    description="Validates and stores uploads of mobile sensing data and survey responses",
    version=SERVICE_VERSION,
    lifespan=lifespan
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag every log record of a request with its request id."""
    request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-Id"] = request_id
    return response


@app.get("/")
async def root() -> dict:
    """Root endpoint with basic API information."""
    settings = get_settings()
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "environment": settings.environment,
        "status": "operational"
    }


app.include_router(health.router, tags=["Health"])
app.include_router(upload.router, tags=["Upload"])


@app.exception_handler(SensingError)
async def sensing_error_handler(request: Request, exc: SensingError) -> JSONResponse:
    """Render service errors as a failure body with the error's code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} for {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"Rejected {request.method} {request.url.path}: {exc.code}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={"result": "failure", "errors": [exc.to_dict()]},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled exceptions.

    Logs the exception and returns a generic error response so internals
    are not leaked.
    """
    logger.error(
        f"Unhandled exception for {request.method} {request.url}: {exc}",
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "result": "failure",
            "errors": [{
                "code": "server_error",
                "text": "An unexpected error occurred. Please try again later."
            }]
        }
    )
