"""
Animals API Endpoints

Public browsing of adoptable animals and staff management of animal records.
Status and foster changes go through ``app.services.lifecycle``; the
Adopted status is only reachable through the adoptions endpoints.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import ConflictError, NotFoundError, RescueAppException, ValidationError
from app.core.security import require_admin, require_staff
from app.models.database import (
    AdoptionHistory,
    AdoptionStatus,
    Animal,
    AnimalImage,
    User,
    get_db_session,
    utcnow,
)
from app.services.file_storage import BlobStorageService, get_blob_storage
from app.services.lifecycle import apply_status_change

# =============================================================================
# Logger
# =============================================================================

logger = structlog.get_logger(__name__)
router = APIRouter()

ANIMAL_SORTS = {
    "name_asc": (asc(Animal.name),),
    "name_desc": (desc(Animal.name),),
    "date_added_asc": (asc(Animal.date_added), asc(Animal.id)),
    "date_added_desc": (desc(Animal.date_added), desc(Animal.id)),
}

# =============================================================================
# Request Models
# =============================================================================

class AnimalCreateRequest(BaseModel):
    """Request model for creating an animal."""
    animal_type: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    breed: str = Field(..., min_length=1, max_length=100)
    date_of_birth: Optional[datetime] = None
    gender: str = Field(..., min_length=1, max_length=10)
    weight: Optional[float] = Field(None, ge=0)
    story: Optional[str] = None
    adoption_status: AdoptionStatus = AdoptionStatus.NOT_YET_AVAILABLE
    current_foster_user_id: Optional[uuid.UUID] = None

    @field_validator("animal_type", "name", "breed", "gender")
    @classmethod
    def strip_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class AnimalUpdateRequest(BaseModel):
    """Request model for a partial animal update."""
    animal_type: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    breed: Optional[str] = Field(None, min_length=1, max_length=100)
    date_of_birth: Optional[datetime] = None
    gender: Optional[str] = Field(None, min_length=1, max_length=10)
    weight: Optional[float] = Field(None, ge=0)
    story: Optional[str] = None
    adoption_status: Optional[AdoptionStatus] = None
    current_foster_user_id: Optional[uuid.UUID] = None


# =============================================================================
# Utility Functions
# =============================================================================

def format_image(image: AnimalImage) -> Dict[str, Any]:
    return {
        "id": image.id,
        "animal_id": image.animal_id,
        "image_url": image.image_url,
        "blob_name": image.blob_name,
        "file_name": image.file_name,
        "caption": image.caption,
        "display_order": image.display_order,
        "is_primary": image.is_primary,
        "date_uploaded": image.date_uploaded,
    }


def primary_image_url(animal: Animal) -> Optional[str]:
    for image in animal.images:
        if image.is_primary:
            return image.image_url
    return animal.images[0].image_url if animal.images else None


def format_animal_response(animal: Animal, include_images: bool = False) -> Dict[str, Any]:
    """Format animal data for API response. ``images`` must be loaded."""
    data = {
        "id": animal.id,
        "animal_type": animal.animal_type,
        "name": animal.name,
        "breed": animal.breed,
        "date_of_birth": animal.date_of_birth,
        "gender": animal.gender,
        "weight": animal.weight,
        "story": animal.story,
        "adoption_status": animal.adoption_status.value,
        "current_foster_user_id": str(animal.current_foster_user_id) if animal.current_foster_user_id else None,
        "date_added": animal.date_added,
        "date_updated": animal.date_updated,
        "primary_image_url": primary_image_url(animal),
    }
    if include_images:
        data["images"] = [format_image(image) for image in animal.images]
    return data


def parse_statuses(raw: Optional[str]) -> List[AdoptionStatus]:
    """Parse a comma-separated ``adoption_status`` filter."""
    if not raw:
        return []
    statuses = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            statuses.append(AdoptionStatus(part))
        except ValueError:
            raise ValidationError(f"Unknown adoption status '{part}'.", field="adoption_status")
    return statuses


async def get_animal_or_404(session: AsyncSession, animal_id: int) -> Animal:
    result = await session.execute(
        select(Animal)
        .where(Animal.id == animal_id)
        .options(selectinload(Animal.images))
        .execution_options(populate_existing=True)
    )
    animal = result.scalar_one_or_none()
    if animal is None:
        raise NotFoundError("Animal", animal_id)
    return animal


# =============================================================================
# Public Endpoints
# =============================================================================

@router.get("/animals", response_model=Dict[str, Any])
async def list_animals(
    animal_type: Optional[str] = Query(None, max_length=50),
    breed: Optional[str] = Query(None, max_length=100),
    gender: Optional[str] = Query(None, max_length=10),
    adoption_status: Optional[str] = Query(None, description="Comma-separated statuses"),
    name: Optional[str] = Query(None, max_length=100),
    sort_by: str = Query("date_added_desc", pattern="^(name_asc|name_desc|date_added_asc|date_added_desc)$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """List animals with optional filters, sorting and pagination."""
    statuses = parse_statuses(adoption_status)

    try:
        query = select(Animal)
        if animal_type:
            query = query.where(func.lower(Animal.animal_type) == animal_type.strip().lower())
        if breed:
            query = query.where(func.lower(Animal.breed) == breed.strip().lower())
        if gender:
            query = query.where(func.lower(Animal.gender) == gender.strip().lower())
        if statuses:
            query = query.where(Animal.adoption_status.in_(statuses))
        if name:
            query = query.where(Animal.name.ilike(f"%{name.strip()}%"))

        total = (await session.execute(
            select(func.count()).select_from(query.subquery())
        )).scalar_one()

        result = await session.execute(
            query.options(selectinload(Animal.images))
            .order_by(*ANIMAL_SORTS[sort_by])
            .limit(limit)
            .offset(offset)
        )
        animals = result.scalars().all()

        return {
            "animals": [format_animal_response(animal) for animal in animals],
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    except Exception as e:
        logger.error("Failed to list animals", error=str(e), exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve animals"
        )


@router.get("/animals/types", response_model=List[str])
async def list_animal_types(session: AsyncSession = Depends(get_db_session)) -> List[str]:
    """Distinct animal types, sorted."""
    result = await session.execute(
        select(Animal.animal_type).distinct().order_by(Animal.animal_type)
    )
    return [row for row in result.scalars().all() if row]


@router.get("/animals/{animal_id}", response_model=Dict[str, Any])
async def get_animal(
    animal_id: int,
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Get one animal with its images in display order."""
    animal = await get_animal_or_404(session, animal_id)
    return format_animal_response(animal, include_images=True)


# =============================================================================
# Staff Endpoints
# =============================================================================

@router.post("/animals", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def create_animal(
    request: AnimalCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """Create an animal record; new animals default to Not Yet Available."""
    try:
        now = utcnow()
        animal = Animal(
            animal_type=request.animal_type,
            name=request.name,
            breed=request.breed,
            date_of_birth=request.date_of_birth,
            gender=request.gender,
            weight=request.weight,
            story=request.story,
            adoption_status=AdoptionStatus.NOT_YET_AVAILABLE,
            created_by_user_id=current_user.id,
            date_added=now,
        )
        await apply_status_change(
            session,
            animal,
            actor=current_user,
            new_status=request.adoption_status,
            foster_user_id=request.current_foster_user_id,
            foster_user_id_set=request.current_foster_user_id is not None,
        )
        session.add(animal)
        await session.commit()

        logger.info(
            "Animal created",
            animal_id=animal.id,
            adoption_status=animal.adoption_status.value,
            user_id=str(current_user.id),
        )

        animal = await get_animal_or_404(session, animal.id)
        return format_animal_response(animal, include_images=True)

    except RescueAppException:
        await session.rollback()
        raise

    except Exception as e:
        logger.error("Failed to create animal", error=str(e), exc_info=True)
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create animal"
        )


@router.put("/animals/{animal_id}", response_model=Dict[str, Any])
async def update_animal(
    animal_id: int,
    request: AnimalUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """
    Partially update an animal.

    Sending ``current_foster_user_id`` assigns (or, with null, clears) the
    foster; see ``apply_status_change`` for how it interacts with status.
    """
    try:
        animal = await get_animal_or_404(session, animal_id)

        update_data = request.model_dump(exclude_unset=True)
        new_status = update_data.pop("adoption_status", None)
        foster_set = "current_foster_user_id" in update_data
        foster_user_id = update_data.pop("current_foster_user_id", None)

        for field, value in update_data.items():
            if field in {"animal_type", "name", "breed", "gender"}:
                if value is None or not value.strip():
                    raise ValidationError(f"{field} must not be blank.", field=field)
                value = value.strip()
            setattr(animal, field, value)

        await apply_status_change(
            session,
            animal,
            actor=current_user,
            new_status=new_status,
            foster_user_id=foster_user_id,
            foster_user_id_set=foster_set,
        )
        await session.commit()

        logger.info(
            "Animal updated",
            animal_id=animal.id,
            updated_fields=sorted(request.model_dump(exclude_unset=True).keys()),
            user_id=str(current_user.id),
        )
        return format_animal_response(animal, include_images=True)

    except RescueAppException:
        await session.rollback()
        raise

    except Exception as e:
        logger.error("Failed to update animal", animal_id=animal_id, error=str(e), exc_info=True)
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update animal"
        )


@router.delete("/animals/{animal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_animal(
    animal_id: int,
    session: AsyncSession = Depends(get_db_session),
    storage: BlobStorageService = Depends(get_blob_storage),
    current_user: User = Depends(require_admin),
):
    """
    Delete an animal with its image and document records (admin only).

    Animals with adoption history are kept; their blobs are removed
    best-effort after the commit.
    """
    try:
        result = await session.execute(
            select(Animal)
            .where(Animal.id == animal_id)
            .options(selectinload(Animal.images), selectinload(Animal.documents))
        )
        animal = result.scalar_one_or_none()
        if animal is None:
            raise NotFoundError("Animal", animal_id)

        history_count = (await session.execute(
            select(func.count(AdoptionHistory.id)).where(AdoptionHistory.animal_id == animal_id)
        )).scalar_one()
        if history_count:
            raise ConflictError(
                "Animal has adoption history and cannot be deleted.",
                details={"animal_id": animal_id},
            )

        blobs = [(storage.images_container, image.blob_name) for image in animal.images]
        blobs += [(storage.documents_container, document.blob_name) for document in animal.documents]

        await session.delete(animal)
        await session.commit()

    except RescueAppException:
        await session.rollback()
        raise

    except Exception as e:
        logger.error("Failed to delete animal", animal_id=animal_id, error=str(e), exc_info=True)
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete animal"
        )

    for container, blob_name in blobs:
        await storage.delete_blob(container, blob_name)

    logger.info(
        "Animal deleted",
        animal_id=animal_id,
        blobs_deleted=len(blobs),
        admin_user_id=str(current_user.id),
    )
