"""
FastAPI application entry point for the Retention Analytics API.

Configures logging, the database pool lifecycle, CORS, the domain error
handlers and the API routers.

Domain errors map to HTTP status codes:
- NotFound -> 404
- InvariantViolation -> 409
- AggregationFailure -> 502
- InconsistentState -> 500
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Type

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from retention_analytics import __version__
from retention_analytics.api import api_router
from retention_analytics.core.config import get_settings
from retention_analytics.core.database import apply_schema, close_db, init_db
from retention_analytics.core.dependencies import reset_playbook_engine
from retention_analytics.core.exceptions import (
    AggregationFailure,
    InconsistentState,
    InvariantViolation,
    NotFound,
    RetentionAnalyticsError,
)


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


ERROR_STATUS_CODES: Dict[Type[RetentionAnalyticsError], int] = {
    NotFound: 404,
    InvariantViolation: 409,
    AggregationFailure: 502,
    InconsistentState: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Open the database pool on startup and close it on shutdown.

    Retention tables are created on startup when AUTO_CREATE_SCHEMA is set.
    """
    logger.info("Retention Analytics API starting")
    await init_db()
    if get_settings().auto_create_schema:
        await apply_schema()
    logger.info("Database connection pool initialized")

    yield

    logger.info("Retention Analytics API shutting down")
    reset_playbook_engine()
    await close_db()
    logger.info("Database connection pool closed")


app = FastAPI(
    title="Retention Analytics API",
    version=__version__,
    description=(
        "Client health scores, churn prediction, retention playbooks, "
        "funnel cohort retention and MRR decomposition for the advisor CRM."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RetentionAnalyticsError)
async def retention_error_handler(request: Request, exc: RetentionAnalyticsError) -> JSONResponse:
    """Translate domain errors into JSON error responses."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring and load balancers."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    """API name, version and documentation links."""
    return {
        "name": "Retention Analytics API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "retention_analytics.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
