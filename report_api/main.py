"""
Boarding House Reports API - FastAPI Application

Main entry point for the report service.
Run with: uvicorn report_api.main:app --reload
"""

from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from report_api.config.settings import settings
from report_api.config.database import init_db
from report_api.endpoints import api_router
from report_api.middleware.auth import AuthMiddleware
from report_api.middleware.error_handler import setup_exception_handlers
from report_api.middleware.logging import LoggingMiddleware, configure_logging
from report_api.services.variable_manager import VariableManagerService
from report_api.utils.pdf_renderer import PdfRenderer

# Configure structured logging
configure_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info(
        "Starting report API",
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        output_dir=settings.REPORT_OUTPUT_DIR,
    )

    # Initialize database tables (in dev mode)
    if settings.DEBUG:
        logger.info("Initializing database tables (DEBUG mode)")
        try:
            init_db()
        except Exception as e:
            logger.error("Failed to initialize database", error=str(e))

    Path(settings.REPORT_OUTPUT_DIR).mkdir(parents=True, exist_ok=True)

    # Shared, stateless across requests
    app.state.variable_manager = VariableManagerService(
        locale=settings.REPORT_LOCALE,
        currency=settings.REPORT_CURRENCY,
    )
    app.state.pdf_renderer = PdfRenderer(
        max_concurrent=settings.PDF_MAX_CONCURRENT_RENDERS,
        timeout_seconds=settings.PDF_RENDER_TIMEOUT_SECONDS,
        browser_args=settings.PDF_BROWSER_ARGS,
    )

    yield

    logger.info("Shutting down report API")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="HTML/Handlebars report templates rendered to PDF for boarding-house owners",
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
    openapi_url="/api/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan,
)

# Setup exception handlers
setup_exception_handlers(app)

# Add authentication middleware
app.add_middleware(AuthMiddleware)

# Add logging middleware (wraps auth so rejected requests are logged too)
app.add_middleware(LoggingMiddleware)

# Add CORS middleware (outermost)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix="/api/v1")

# Generated PDFs, downloaded by URL
app.mount(
    settings.REPORT_PUBLIC_URL.rstrip("/"),
    StaticFiles(directory=settings.REPORT_OUTPUT_DIR, check_dir=False),
    name="generated-reports",
)


# Root health endpoint (for load balancer)
@app.get("/health")
async def root_health():
    """Simple health check for load balancer."""
    return {"status": "ok", "version": settings.APP_VERSION}


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/api/docs" if settings.DEBUG else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "report_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
