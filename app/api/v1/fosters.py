"""
Fosters API Endpoints

Staff views of approved fosters: the active roster with how many animals
each currently cares for, a foster's full profile, and profile updates.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.v1.animals import primary_image_url
from app.core.exceptions import NotFoundError, RescueAppException
from app.core.security import require_staff
from app.models.database import (
    Animal,
    FosterApplication,
    FosterProfile,
    User,
    get_db_session,
)
from app.services.fosters import update_foster_profile

# =============================================================================
# Logger
# =============================================================================

logger = structlog.get_logger(__name__)
router = APIRouter()

FOSTER_SORTS = {
    "lastname_asc": (asc(User.last_name), asc(User.first_name)),
    "lastname_desc": (desc(User.last_name), desc(User.first_name)),
    "approvaldate_asc": (asc(FosterProfile.approval_date),),
    "approvaldate_desc": (desc(FosterProfile.approval_date),),
}

# =============================================================================
# Request Models
# =============================================================================

class FosterProfileUpdateRequest(BaseModel):
    """Partial update of a foster's user record and profile."""
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    is_user_active: Optional[bool] = None
    primary_phone: Optional[str] = Field(None, max_length=30)
    primary_phone_type: Optional[str] = Field(None, max_length=10)
    primary_email: Optional[EmailStr] = None
    is_active_foster: Optional[bool] = None
    availability_notes: Optional[str] = None
    capacity_details: Optional[str] = None
    home_visit_date: Optional[datetime] = None
    home_visit_notes: Optional[str] = None


# =============================================================================
# Utility Functions
# =============================================================================

def format_foster_detail(
    user: User,
    profile: FosterProfile,
    application: Optional[FosterApplication],
    animals: List[Animal],
) -> Dict[str, Any]:
    return {
        "user_id": str(user.id),
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "primary_phone": user.primary_phone,
        "primary_phone_type": user.primary_phone_type,
        "is_user_active": user.is_active,
        "user_role": user.role.value,
        "foster_profile_id": profile.id,
        "approval_date": profile.approval_date,
        "is_active_foster": profile.is_active_foster,
        "availability_notes": profile.availability_notes,
        "capacity_details": profile.capacity_details,
        "home_visit_date": profile.home_visit_date,
        "home_visit_notes": profile.home_visit_notes,
        "profile_date_created": profile.date_created,
        "profile_date_updated": profile.date_updated,
        "foster_application_id": profile.foster_application_id,
        "applicant_street_address": application.street_address if application else None,
        "applicant_city": application.city if application else None,
        "currently_fostering": [
            {
                "id": animal.id,
                "name": animal.name,
                "animal_type": animal.animal_type,
                "breed": animal.breed,
                "adoption_status": animal.adoption_status.value,
                "primary_image_url": primary_image_url(animal),
            }
            for animal in animals
        ],
    }


async def load_foster_detail(session: AsyncSession, user_id: uuid.UUID) -> Dict[str, Any]:
    result = await session.execute(
        select(FosterProfile, User)
        .join(User, FosterProfile.user_id == User.id)
        .where(FosterProfile.user_id == user_id)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFoundError("Foster profile", user_id)
    profile, user = row

    application = None
    if profile.foster_application_id is not None:
        application = await session.get(FosterApplication, profile.foster_application_id)

    animals = await session.execute(
        select(Animal)
        .where(Animal.current_foster_user_id == user_id)
        .options(selectinload(Animal.images))
        .order_by(Animal.name)
    )
    return format_foster_detail(user, profile, application, list(animals.scalars().all()))


# =============================================================================
# Foster Endpoints
# =============================================================================

@router.get("/fosters", response_model=List[Dict[str, Any]])
async def list_fosters(
    sort_by: str = Query("lastname_asc", pattern="^(lastname_asc|lastname_desc|approvaldate_desc|approvaldate_asc)$"),
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> List[Dict[str, Any]]:
    """Active fosters with their current foster count."""
    foster_counts = (
        select(Animal.current_foster_user_id.label("user_id"), func.count(Animal.id).label("animal_count"))
        .where(Animal.current_foster_user_id.is_not(None))
        .group_by(Animal.current_foster_user_id)
        .subquery()
    )

    result = await session.execute(
        select(FosterProfile, User, func.coalesce(foster_counts.c.animal_count, 0))
        .join(User, FosterProfile.user_id == User.id)
        .outerjoin(foster_counts, foster_counts.c.user_id == User.id)
        .where(FosterProfile.is_active_foster.is_(True))
        .order_by(*FOSTER_SORTS[sort_by])
    )

    return [
        {
            "user_id": str(user.id),
            "foster_profile_id": profile.id,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "email": user.email,
            "primary_phone": user.primary_phone,
            "approval_date": profile.approval_date,
            "is_active_foster": profile.is_active_foster,
            "availability_notes": profile.availability_notes,
            "current_foster_count": count,
        }
        for profile, user, count in result.all()
    ]


@router.get("/fosters/{user_id}", response_model=Dict[str, Any])
async def get_foster(
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """Foster profile with the animals currently in their care."""
    return await load_foster_detail(session, user_id)


@router.put("/fosters/{user_id}", response_model=Dict[str, Any])
async def update_foster(
    user_id: uuid.UUID,
    request: FosterProfileUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """Update user and profile fields of a foster; omitted fields are kept."""
    try:
        await update_foster_profile(
            session,
            user_id,
            request.model_dump(exclude_unset=True),
            current_user,
        )
        return await load_foster_detail(session, user_id)

    except RescueAppException:
        raise

    except Exception as e:
        logger.error("Failed to update foster profile", user_id=str(user_id), error=str(e), exc_info=True)
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update foster profile"
        )
