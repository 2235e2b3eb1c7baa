"""
FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sheetport.config import get_settings
from sheetport.dependencies import get_upload_gate
from sheetport.routes import google, health, imports
from sheetport.utils.logger import get_logger, setup_logging
from sheetport.utils.errors import ErrorKind

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    gate = get_upload_gate()
    gate.ensure_dir()
    gate.purge_expired()
    yield


# Create FastAPI app
app = FastAPI(
    title="SheetPort",
    description="Spreadsheet upload and Google Sheets import service",
    version="0.1.0",
    lifespan=lifespan,
)

# Get settings
settings = get_settings()

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are a 400 in the import contract."""
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request format.") if errors else "Invalid request format."
    return JSONResponse(
        status_code=400,
        content={"success": False, "code": ErrorKind.INVALID_REQUEST.value, "message": message},
    )


# Include routers
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(imports.router, prefix="/api/import", tags=["Import"])
app.include_router(google.router, prefix="/api/google", tags=["Google"])


@app.get("/")
async def root():
    """Root endpoint - redirects to docs."""
    return {
        "message": "SheetPort API",
        "docs": "/docs",
        "health": "/api/health",
    }
