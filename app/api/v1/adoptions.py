"""
Adoption API Endpoints

Finalizing adoptions, processing returns and the public graduates list.
Both write endpoints delegate to ``app.services.lifecycle``, which owns the
status preconditions and the transaction.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.v1.animals import format_animal_response, primary_image_url
from app.core.config import settings
from app.core.exceptions import RescueAppException
from app.core.security import require_staff
from app.models.database import (
    Adopter,
    AdoptionHistory,
    AdoptionStatus,
    Animal,
    User,
    get_db_session,
)
from app.services.lifecycle import finalize_adoption, process_return

# =============================================================================
# Logger
# =============================================================================

logger = structlog.get_logger(__name__)
router = APIRouter()

GRADUATE_SORTS = {
    "adoption_date_desc": (desc(AdoptionHistory.adoption_date),),
    "adoption_date_asc": (asc(AdoptionHistory.adoption_date),),
    "name_asc": (asc(Animal.name), asc(AdoptionHistory.adoption_date)),
    "name_desc": (desc(Animal.name), desc(AdoptionHistory.adoption_date)),
}

# =============================================================================
# Request Models
# =============================================================================

class AdoptionCreateRequest(BaseModel):
    """Request model for finalizing an adoption."""
    animal_id: int = Field(..., ge=1)

    adopter_first_name: str = Field(..., min_length=1, max_length=100)
    adopter_last_name: str = Field(..., min_length=1, max_length=100)
    adopter_email: EmailStr
    adopter_primary_phone: str = Field(..., min_length=1, max_length=30)
    adopter_primary_phone_type: str = Field(..., min_length=1, max_length=10)
    adopter_secondary_phone: Optional[str] = Field(None, max_length=30)
    adopter_secondary_phone_type: Optional[str] = Field(None, max_length=10)
    adopter_street_address: str = Field(..., min_length=1, max_length=255)
    adopter_apt_unit: Optional[str] = Field(None, max_length=50)
    adopter_city: str = Field(..., min_length=1, max_length=100)
    adopter_state_province: str = Field(..., min_length=1, max_length=100)
    adopter_zip_postal_code: str = Field(..., min_length=1, max_length=20)
    spouse_partner_roommate: Optional[str] = Field(None, max_length=255)

    adoption_date: Optional[datetime] = None
    adoption_notes: Optional[str] = None

    def adopter_fields(self) -> Dict[str, Any]:
        return self.model_dump(
            exclude={"animal_id", "adoption_date", "adoption_notes"},
            mode="json",
        )


class ReturnRequest(BaseModel):
    """Request model for processing a return."""
    animal_id: int = Field(..., ge=1)
    adoption_status: AdoptionStatus = Field(..., description="Status after the return, anything but Adopted")
    return_date: Optional[datetime] = None
    notes: Optional[str] = None


# =============================================================================
# Utility Functions
# =============================================================================

def format_history(history: AdoptionHistory) -> Dict[str, Any]:
    return {
        "id": history.id,
        "animal_id": history.animal_id,
        "adopter_id": history.adopter_id,
        "adoption_date": history.adoption_date,
        "return_date": history.return_date,
        "notes": history.notes,
        "date_created": history.date_created,
        "date_updated": history.date_updated,
    }


def format_adopter(adopter: Adopter) -> Dict[str, Any]:
    return {
        "id": adopter.id,
        "adopter_first_name": adopter.adopter_first_name,
        "adopter_last_name": adopter.adopter_last_name,
        "adopter_email": adopter.adopter_email,
        "adopter_primary_phone": adopter.adopter_primary_phone,
        "adopter_primary_phone_type": adopter.adopter_primary_phone_type,
        "adopter_secondary_phone": adopter.adopter_secondary_phone,
        "adopter_secondary_phone_type": adopter.adopter_secondary_phone_type,
        "adopter_street_address": adopter.adopter_street_address,
        "adopter_apt_unit": adopter.adopter_apt_unit,
        "adopter_city": adopter.adopter_city,
        "adopter_state_province": adopter.adopter_state_province,
        "adopter_zip_postal_code": adopter.adopter_zip_postal_code,
        "spouse_partner_roommate": adopter.spouse_partner_roommate,
    }


async def load_animal(session: AsyncSession, animal_id: int) -> Animal:
    result = await session.execute(
        select(Animal)
        .where(Animal.id == animal_id)
        .options(selectinload(Animal.images))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


# =============================================================================
# Adoption Endpoints
# =============================================================================

@router.post("/adoptions", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def create_adoption(
    request: AdoptionCreateRequest,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """
    Finalize an adoption.

    Only animals that are Available, Available - In Foster or Adoption
    Pending can be adopted; anything else is rejected with 400.
    """
    try:
        outcome = await finalize_adoption(
            session,
            animal_id=request.animal_id,
            adopter_fields=request.adopter_fields(),
            actor=current_user,
            adoption_date=request.adoption_date,
            notes=request.adoption_notes,
        )
        animal = await load_animal(session, outcome.animal.id)

    except RescueAppException:
        raise

    except Exception as e:
        logger.error("Failed to finalize adoption", animal_id=request.animal_id, error=str(e), exc_info=True)
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred while finalizing the adoption."
        )

    response.headers["Location"] = f"{settings.API_V1_PREFIX}/adoptions/{outcome.history.id}"
    return {
        "message": "Adoption finalized successfully.",
        "adoption_history": format_history(outcome.history),
        "animal": format_animal_response(animal),
        "adopter": format_adopter(outcome.adopter),
    }


@router.post("/returns", response_model=Dict[str, Any])
async def create_return(
    request: ReturnRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """Process the return of an adopted animal and set its new status."""
    try:
        outcome = await process_return(
            session,
            animal_id=request.animal_id,
            new_status=request.adoption_status,
            actor=current_user,
            return_date=request.return_date,
            notes=request.notes,
        )
        animal = await load_animal(session, outcome.animal.id)

    except RescueAppException:
        raise

    except Exception as e:
        logger.error("Failed to process return", animal_id=request.animal_id, error=str(e), exc_info=True)
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred while processing the return."
        )

    return {
        "message": "Return processed successfully.",
        "adoption_history": format_history(outcome.history),
        "animal": format_animal_response(animal),
    }


@router.get("/graduates", response_model=List[Dict[str, Any]])
async def list_graduates(
    animal_type: Optional[str] = Query(None, max_length=50),
    gender: Optional[str] = Query(None, max_length=10),
    breed: Optional[str] = Query(None, max_length=100),
    sort_by: str = Query(
        "adoption_date_desc",
        pattern="^(adoption_date_desc|adoption_date_asc|name_asc|name_desc)$",
    ),
    session: AsyncSession = Depends(get_db_session),
) -> List[Dict[str, Any]]:
    """Animals currently adopted out, with their adoption date."""
    query = (
        select(AdoptionHistory)
        .join(Animal, AdoptionHistory.animal_id == Animal.id)
        .where(
            AdoptionHistory.return_date.is_(None),
            Animal.adoption_status == AdoptionStatus.ADOPTED,
        )
        .options(selectinload(AdoptionHistory.animal).selectinload(Animal.images))
    )
    if animal_type:
        query = query.where(func.lower(Animal.animal_type) == animal_type.strip().lower())
    if gender:
        query = query.where(func.lower(Animal.gender) == gender.strip().lower())
    if breed:
        query = query.where(Animal.breed.ilike(f"%{breed.strip()}%"))

    result = await session.execute(query.order_by(*GRADUATE_SORTS[sort_by]))
    graduates = [
        {
            "id": history.animal.id,
            "name": history.animal.name,
            "animal_type": history.animal.animal_type,
            "breed": history.animal.breed,
            "gender": history.animal.gender,
            "image_url": primary_image_url(history.animal),
            "adoption_date": history.adoption_date,
        }
        for history in result.scalars().all()
    ]

    logger.info("Graduates listed", count=len(graduates), sort_by=sort_by)
    return graduates
