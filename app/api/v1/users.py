"""
Users API Endpoints

Login-time synchronization of identity-provider users into the local users
table, and the caller's own profile.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PermissionDeniedError, RescueAppException
from app.core.security import get_token_claims, require_active_user
from app.models.database import User, get_db_session
from app.services.users import sync_user, update_profile

# =============================================================================
# Logger
# =============================================================================

logger = structlog.get_logger(__name__)
router = APIRouter()

# =============================================================================
# Request Models
# =============================================================================

class UserSyncRequest(BaseModel):
    """Identity-provider profile posted by the frontend after login."""
    sub: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    given_name: Optional[str] = Field(None, max_length=100)
    family_name: Optional[str] = Field(None, max_length=100)
    name: Optional[str] = Field(None, max_length=255)


class ProfileUpdateRequest(BaseModel):
    """Request model for updating the caller's name."""
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)

    @field_validator("first_name", "last_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


def format_user_response(user: User) -> Dict[str, Any]:
    """Format user data for API response."""
    return {
        "id": str(user.id),
        "external_provider_id": user.external_provider_id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "full_name": user.full_name,
        "primary_phone": user.primary_phone,
        "primary_phone_type": user.primary_phone_type,
        "role": user.role.value,
        "is_active": user.is_active,
        "last_login_date": user.last_login_date,
        "date_created": user.date_created,
        "date_updated": user.date_updated,
    }


# =============================================================================
# User Endpoints
# =============================================================================

@router.post("/users/sync", response_model=Dict[str, Any])
async def sync_current_user(
    request: UserSyncRequest,
    response: Response,
    claims: Dict[str, Any] = Depends(get_token_claims),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """
    Create or refresh the local user for the authenticated subject.

    Returns 201 when the user was created, 200 otherwise. Roles are never
    taken from the request; new users start as Guest.
    """
    subject = claims.get("sub")
    if not subject:
        raise PermissionDeniedError("User identifier missing from token.")
    if request.sub != subject:
        logger.warning("User sync subject mismatch", token_subject=subject)
        raise PermissionDeniedError("Token subject does not match the user being synced.")

    try:
        result = await sync_user(
            session,
            subject=subject,
            email=request.email,
            given_name=request.given_name,
            family_name=request.family_name,
            full_name=request.name,
        )

    except RescueAppException:
        raise

    except Exception as e:
        logger.error("Failed to sync user", error=str(e), exc_info=True)
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to sync user"
        )

    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    return format_user_response(result.user)


@router.get("/users/me", response_model=Dict[str, Any])
async def get_my_profile(current_user: User = Depends(require_active_user)) -> Dict[str, Any]:
    return format_user_response(current_user)


@router.put("/users/me", response_model=Dict[str, Any])
async def update_my_profile(
    request: ProfileUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_active_user),
) -> Dict[str, Any]:
    """Update the caller's first and last name."""
    try:
        user = await update_profile(
            session,
            current_user,
            first_name=request.first_name,
            last_name=request.last_name,
        )
        return format_user_response(user)

    except Exception as e:
        logger.error("Failed to update profile", user_id=str(current_user.id), error=str(e), exc_info=True)
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update profile"
        )
