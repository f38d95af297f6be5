"""
FastAPI application for the PDF table converter.

Provides endpoints for:
- Converting an uploaded (optionally password-protected) PDF into a table
- Editing the extracted rows
- Exporting the table to Excel
- A stateless extraction call for already-encoded payloads
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import get_settings
from .exceptions import ConversionError
from .models import HealthResponse
from .routers import extract, sessions
from .services.ai import get_ai_service
from .services.normalizer import get_normalizer
from .services.pdf_service import get_pdf_service
from .services.rate_limiter import get_rate_limiter

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting PDF Table Converter...")
    settings = get_settings()
    if settings.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    # Initialize services on startup
    get_pdf_service()
    get_normalizer()
    get_rate_limiter()
    get_ai_service()
    logger.info(
        "Services initialized (strategy=%s, guest quota=%d per %gh)",
        settings.normalization_strategy,
        settings.rate_limit_quota,
        settings.rate_limit_window_hours,
    )
    yield
    logger.info("Shutting down PDF Table Converter...")


# Create FastAPI application
app = FastAPI(
    title="PDF Table Converter API",
    description="Extract accounting tables from PDFs with AI and export them to Excel",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",  # Vite development server
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Health Endpoints
# =============================================================================


@app.get("/", response_model=HealthResponse)
async def root() -> HealthResponse:
    """Root endpoint - health check."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        message="PDF Table Converter API is running",
    )


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__, message="Service is healthy")


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(extract.router)
app.include_router(sessions.router)


# =============================================================================
# Exception Handlers
# =============================================================================

ERROR_STATUS_CODES: dict[str, int] = {
    "rate_limited": status.HTTP_429_TOO_MANY_REQUESTS,
    "file_read_error": status.HTTP_400_BAD_REQUEST,
    "corrupted": 422,
    "empty_document": 422,
    "empty_result": 422,
    "invalid_shape": 422,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "upstream_error": status.HTTP_503_SERVICE_UNAVAILABLE,
    "ai_error": status.HTTP_503_SERVICE_UNAVAILABLE,
}


@app.exception_handler(ConversionError)
async def conversion_error_handler(request: Request, exc: ConversionError):
    """Map pipeline errors to HTTP responses carrying their kind."""
    status_code = ERROR_STATUS_CODES.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "kind": exc.kind},
    )
