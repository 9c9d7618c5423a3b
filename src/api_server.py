"""
FastAPI API Server.

REST API for the clinic intake pipeline: free-form queries, research
filter extraction, voice recording sessions, transcript processing and
appointment commits.

Start with:
    uvicorn src.api_server:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from dotenv import load_dotenv
load_dotenv(".env.local")

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.appointments import router as appointments_router
from src.api.intake import router as intake_router
from src.api.middleware import RateLimitMiddleware, RequestIdMiddleware
from src.api.research import router as research_router
from src.api.voice import router as voice_router
from src.errors import ExtractionUnavailable, IntakeError
from src.logging_config import get_logger, setup_logging
from src.services.session_manager import close_session_store

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle hooks."""
    logger.info("api_server_starting")
    yield
    await close_session_store()
    logger.info("api_server_stopping")


app = FastAPI(
    title="Clinic Intake Service API",
    description="Turns typed requests and voice transcripts into validated clinic records",
    version="0.1.0",
    lifespan=lifespan,
)

# Middleware (order matters — outermost first)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(IntakeError)
async def intake_error_handler(request: Request, exc: IntakeError) -> JSONResponse:
    """Render taxonomy errors as ``{"error": {kind, message, details}}``."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log("intake_error", kind=exc.kind, message=exc.message, path=request.url.path)

    headers = {"Retry-After": "5"} if isinstance(exc, ExtractionUnavailable) else None
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()}, headers=headers)


# Routers
app.include_router(intake_router)
app.include_router(research_router)
app.include_router(voice_router)
app.include_router(appointments_router)


@app.get("/health", tags=["System"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "service": "clinic-intake-service"}


@app.get("/", tags=["System"])
async def root() -> dict[str, str]:
    """API root."""
    return {
        "service": "Clinic Intake Service",
        "version": "0.1.0",
        "docs": "/docs",
    }
