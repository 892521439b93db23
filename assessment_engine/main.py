"""
Competition & Assessment Engine - Main Application

FastAPI backend with:
- MongoDB for assessments, attempts, events and the audit trail
- JWT authentication (tokens issued by the platform's identity service)

Run: uvicorn assessment_engine.main:app --reload
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from assessment_engine.api.routes import api_router
from assessment_engine.core.config import get_settings
from assessment_engine.core.errors import (
    ConcurrentUpdateError, EngineError, Forbidden, InvalidState, NotFound, ValidationError
)
from assessment_engine.core.logging_config import configure_logging
from assessment_engine.db.mongodb import init_mongo_indexes, test_mongo_connection

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Competition & Assessment Engine",
    description="""
    Timed assessments and multi-round events for the placement platform.

    ## Features
    - **Assessments**: Create, start/resume, answer, submit, auto-graded results
    - **Proctoring**: Tab-switch counting with automatic flagging
    - **Events**: Registration, round-by-round evaluation, embedded quiz
    - **Leaderboards**: Competition ranking with pagination
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware (allow all for development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix="/api")


# ============================================================
# ERROR MAPPING
# ============================================================

def status_for(exc: EngineError) -> int:
    # NotFound first: a closed attempt is reported the same way as a missing one
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, Forbidden):
        return 403
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, (InvalidState, ConcurrentUpdateError)):
        return 409
    return 400


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    body = {"detail": exc.message}
    if isinstance(exc, ValidationError) and exc.field:
        body["field"] = exc.field
    return JSONResponse(status_code=status_for(exc), content=body)


# Startup event
@app.on_event("startup")
async def startup_event():
    """Initialize MongoDB indexes on startup."""
    try:
        init_mongo_indexes()
    except PyMongoError as e:
        logger.warning("MongoDB index initialization failed: %s", e)


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "app": "Competition & Assessment Engine",
        "mongodb": "connected" if test_mongo_connection() else "disconnected"
    }
