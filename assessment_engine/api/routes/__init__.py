"""
API Routes - Combines all route modules into single router.
"""

from fastapi import APIRouter

from assessment_engine.api.routes.assessment_routes import router as assessment_router
from assessment_engine.api.routes.event_routes import router as event_router

# Main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(assessment_router)
api_router.include_router(event_router)
