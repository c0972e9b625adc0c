"""
API Router v1

This module aggregates all API v1 routes and provides the main API router
that gets mounted to the FastAPI application in main.py.
"""

from fastapi import APIRouter

from app.api.v1.adoptions import router as adoptions_router
from app.api.v1.animals import router as animals_router
from app.api.v1.applications import router as applications_router
from app.api.v1.contracts import router as contracts_router
from app.api.v1.fosters import router as fosters_router
from app.api.v1.media import router as media_router
from app.api.v1.users import router as users_router
from app.core.config import settings

# =============================================================================
# Main API Router
# =============================================================================

api_router = APIRouter()

COMMON_RESPONSES = {
    400: {"description": "Validation error"},
    401: {"description": "Missing or invalid token"},
    403: {"description": "User not authorized or inactive"},
    500: {"description": "Internal server error"},
}

# =============================================================================
# Include Sub-Routers
# =============================================================================

# Routes are declared with their full paths inside each module
api_router.include_router(
    animals_router,
    tags=["animals"],
    responses={**COMMON_RESPONSES, 404: {"description": "Animal not found"}},
)

api_router.include_router(
    adoptions_router,
    tags=["adoptions"],
    responses={**COMMON_RESPONSES, 409: {"description": "Status conflict"}},
)

api_router.include_router(media_router, tags=["media"], responses=COMMON_RESPONSES)

api_router.include_router(applications_router, tags=["applications"], responses=COMMON_RESPONSES)

api_router.include_router(fosters_router, tags=["fosters"], responses=COMMON_RESPONSES)

api_router.include_router(users_router, tags=["users"], responses=COMMON_RESPONSES)

api_router.include_router(
    contracts_router,
    tags=["email"],
    responses={**COMMON_RESPONSES, 503: {"description": "Email service unavailable"}},
)


@api_router.get("/info", tags=["system"])
async def api_info():
    """API information endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": settings.APP_DESCRIPTION,
        "api_version": "v1",
        "environment": settings.ENVIRONMENT,
    }
