"""FastAPI application setup and configuration."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from salesdesk.api.middleware.error_handler import (
    AppError,
    app_error_handler,
    database_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    permission_exception_handler,
    validation_exception_handler,
)
from salesdesk.api.middleware.logging import LoggingMiddleware, setup_logging
from salesdesk.api.routes import (
    analytics,
    attendance,
    auth,
    daily_followups,
    export,
    health,
    immediate_sales,
    notifications,
    opportunity_scoring,
    pending_quotations,
    pipeline,
    projects,
    reports,
)
from salesdesk.services.database import initialize_database, shutdown_database


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown events.
    """
    # Startup
    setup_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_format=os.getenv("LOG_FORMAT", "json"),
    )

    database_url = os.getenv("DATABASE_URL")
    if database_url:
        db_manager = initialize_database(database_url)
        await db_manager.initialize_async()
        if os.getenv("DATABASE_CREATE_TABLES", "false").lower() == "true":
            await db_manager.create_tables()

    yield

    # Shutdown
    await shutdown_database()


app = FastAPI(
    title="SalesDesk CRM",
    description="Sales team CRM: attendance, pipelines, quotations, projects, reports and analytics",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# ========== CORS Configuration ==========

allowed_origins = os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["Authorization", "Content-Type"],
)

# ========== Custom Middleware ==========

app.add_middleware(LoggingMiddleware)

# ========== Exception Handlers ==========

app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(ValidationError, validation_exception_handler)
app.add_exception_handler(SQLAlchemyError, database_exception_handler)
app.add_exception_handler(PermissionError, permission_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# ========== Route Registration ==========

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(attendance.router)
app.include_router(pipeline.router)
app.include_router(pending_quotations.router)
app.include_router(daily_followups.router)
app.include_router(immediate_sales.router)
app.include_router(projects.router)
app.include_router(opportunity_scoring.router)
app.include_router(analytics.router)
app.include_router(reports.router)
app.include_router(notifications.router)
app.include_router(export.router)

# ========== Root Endpoint ==========


@app.get(
    "/",
    tags=["root"],
    summary="API root",
    description="Returns API information and available endpoints",
)
async def root() -> dict:
    """API root endpoint.

    Returns:
        API information and version
    """
    return {
        "service": "SalesDesk CRM",
        "version": "0.1.0",
        "documentation": {
            "openapi": "/openapi.json",
            "swagger": "/docs",
            "redoc": "/redoc",
        },
        "health": {
            "liveness": "/api/health/liveness",
            "readiness": "/api/health/readiness",
            "health": "/api/health",
        },
    }


# ========== Development Server ==========

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "salesdesk.api.main:app",
        host="0.0.0.0",
        port=8080,
        reload=True,
        log_level="info",
    )
