"""
Animal lifecycle rules.

Central table of which adoption statuses allow which operations, plus the
transactional operations that move an animal through them: finalizing an
adoption, processing a return, assigning or clearing a foster, and keeping
a single primary image per animal.

Finalize/return/image insertion read the animal row with
``SELECT ... FOR UPDATE`` so concurrent writers on the same animal are
serialized by the database.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ConflictError,
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models.database import (
    Adopter,
    AdoptionHistory,
    AdoptionStatus,
    Animal,
    AnimalImage,
    User,
    UserRole,
    utcnow,
)

logger = structlog.get_logger(__name__)

# =============================================================================
# Transition Table
# =============================================================================

# Statuses from which an adoption may be finalized
ADOPTABLE_STATUSES = frozenset({
    AdoptionStatus.AVAILABLE,
    AdoptionStatus.AVAILABLE_IN_FOSTER,
    AdoptionStatus.ADOPTION_PENDING,
})

# The only status from which a return may be processed
RETURNABLE_STATUS = AdoptionStatus.ADOPTED

# Statuses meaning the animal lives with a foster
FOSTER_STATUSES = frozenset({
    AdoptionStatus.AVAILABLE_IN_FOSTER,
    AdoptionStatus.MEDICAL_HOLD_IN_FOSTER,
})

# Roles that cannot be given an animal to foster
NON_FOSTER_ROLES = frozenset({UserRole.GUEST})


def can_finalize_adoption(current: AdoptionStatus) -> bool:
    return current in ADOPTABLE_STATUSES


def can_process_return(current: AdoptionStatus) -> bool:
    return current == RETURNABLE_STATUS


def is_foster_status(current: Optional[AdoptionStatus]) -> bool:
    return current in FOSTER_STATUSES


# =============================================================================
# Results
# =============================================================================

@dataclass
class AdoptionOutcome:
    history: AdoptionHistory
    animal: Animal
    adopter: Adopter
    adopter_created: bool = False


@dataclass
class ReturnOutcome:
    history: AdoptionHistory
    animal: Animal
    previous_status: AdoptionStatus


# =============================================================================
# Helpers
# =============================================================================

async def lock_animal(session: AsyncSession, animal_id: int) -> Optional[Animal]:
    """Load an animal and lock its row until the transaction ends."""
    result = await session.execute(
        select(Animal).where(Animal.id == animal_id).with_for_update()
    )
    return result.scalar_one_or_none()


async def get_active_adoption(session: AsyncSession, animal_id: int) -> Optional[AdoptionHistory]:
    result = await session.execute(
        select(AdoptionHistory)
        .where(
            AdoptionHistory.animal_id == animal_id,
            AdoptionHistory.return_date.is_(None),
        )
        .order_by(AdoptionHistory.adoption_date.desc())
    )
    return result.scalars().first()


def append_note(existing: Optional[str], line: str) -> str:
    if existing and existing.strip():
        return f"{existing.rstrip()}\n{line}"
    return line


async def find_or_update_adopter(
    session: AsyncSession,
    fields: Dict[str, Any],
    actor: User,
) -> tuple[Adopter, bool]:
    """
    Match an adopter by email (case-insensitive), refreshing changed fields,
    or create one.

    ``fields`` uses the Adopter column names.
    """
    email = fields["adopter_email"].strip()
    result = await session.execute(
        select(Adopter).where(func.lower(Adopter.adopter_email) == email.lower())
    )
    adopter = result.scalar_one_or_none()
    now = utcnow()

    if adopter is None:
        adopter = Adopter(
            **{**fields, "adopter_email": email},
            created_by_user_id=actor.id,
            updated_by_user_id=actor.id,
            date_created=now,
            date_updated=now,
        )
        session.add(adopter)
        return adopter, True

    changed = False
    for name, value in fields.items():
        if name == "adopter_email" or value is None:
            continue
        if getattr(adopter, name) != value:
            setattr(adopter, name, value)
            changed = True
    if changed:
        adopter.updated_by_user_id = actor.id
        adopter.date_updated = now
    return adopter, False


# =============================================================================
# Adoption / Return
# =============================================================================

async def finalize_adoption(
    session: AsyncSession,
    *,
    animal_id: int,
    adopter_fields: Dict[str, Any],
    actor: User,
    adoption_date: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> AdoptionOutcome:
    """
    Mark an adoptable animal as Adopted and record the adoption.

    Raises:
        NotFoundError: animal does not exist (404)
        InvalidStatusTransitionError: status is not adoptable (400)
        ConflictError: an active adoption row already exists (409)
    """
    try:
        animal = await lock_animal(session, animal_id)
        if animal is None:
            raise NotFoundError("Animal", animal_id)

        if not can_finalize_adoption(animal.adoption_status):
            raise InvalidStatusTransitionError(
                current_status=animal.adoption_status.value,
                operation="adopt",
                message=(
                    f"Animal '{animal.name}' cannot be adopted because its status is "
                    f"'{animal.adoption_status.value}'."
                ),
            )

        if await get_active_adoption(session, animal.id) is not None:
            raise ConflictError(
                "Animal already has an active adoption record.",
                details={"animal_id": animal.id},
            )

        adopter, adopter_created = await find_or_update_adopter(session, adopter_fields, actor)

        now = utcnow()
        history = AdoptionHistory(
            animal=animal,
            adopter=adopter,
            adoption_date=adoption_date or now,
            return_date=None,
            notes=notes,
            created_by_user_id=actor.id,
            updated_by_user_id=actor.id,
            date_created=now,
            date_updated=now,
        )
        session.add(history)

        previous_status = animal.adoption_status
        animal.adoption_status = AdoptionStatus.ADOPTED
        animal.date_updated = now
        animal.updated_by_user_id = actor.id

        await session.commit()

    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Adoption finalized",
        animal_id=animal.id,
        adoption_history_id=history.id,
        adopter_id=adopter.id,
        adopter_created=adopter_created,
        previous_status=previous_status.value,
        user_id=str(actor.id),
    )
    return AdoptionOutcome(history=history, animal=animal, adopter=adopter, adopter_created=adopter_created)


async def process_return(
    session: AsyncSession,
    *,
    animal_id: int,
    new_status: AdoptionStatus,
    actor: User,
    return_date: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> ReturnOutcome:
    """
    Close the animal's active adoption and set its post-return status.

    Raises:
        NotFoundError: animal or active adoption missing (404)
        ValidationError: new_status is Adopted (400)
        InvalidStatusTransitionError: animal is not Adopted (409)
    """
    if new_status == AdoptionStatus.ADOPTED:
        raise ValidationError(
            "A returned animal cannot stay Adopted. Choose another status.",
            field="adoption_status",
        )

    try:
        animal = await lock_animal(session, animal_id)
        if animal is None:
            raise NotFoundError("Animal", animal_id)

        history = await get_active_adoption(session, animal.id)
        if history is None:
            raise NotFoundError(
                "Adoption",
                message=f"No active adoption found for animal {animal.id}.",
            )

        if not can_process_return(animal.adoption_status):
            raise InvalidStatusTransitionError(
                current_status=animal.adoption_status.value,
                operation="return",
                message=(
                    f"Animal status is '{animal.adoption_status.value}', expected "
                    f"'{RETURNABLE_STATUS.value}'. Cannot process return."
                ),
                status_code=409,
            )

        now = utcnow()
        returned_at = return_date or now
        line = f"Return processed on {returned_at:%Y-%m-%d}"
        if notes and notes.strip():
            line = f"{line}: {notes.strip()}"

        history.return_date = returned_at
        history.notes = append_note(history.notes, line)
        history.updated_by_user_id = actor.id
        history.date_updated = now

        previous_status = animal.adoption_status
        animal.adoption_status = new_status
        animal.date_updated = now
        animal.updated_by_user_id = actor.id

        await session.commit()

    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Return processed",
        animal_id=animal.id,
        adoption_history_id=history.id,
        new_status=new_status.value,
        user_id=str(actor.id),
    )
    return ReturnOutcome(history=history, animal=animal, previous_status=previous_status)


# =============================================================================
# Foster Assignment
# =============================================================================

async def _eligible_foster(session: AsyncSession, user_id: uuid.UUID) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise ValidationError(f"Foster user {user_id} does not exist.", field="current_foster_user_id")
    if not user.is_active or user.role in NON_FOSTER_ROLES:
        raise ValidationError(
            f"User {user_id} cannot be assigned as a foster.",
            field="current_foster_user_id",
        )
    return user


async def _guard_active_adoption(session: AsyncSession, animal: Animal) -> None:
    """Refuse to move an animal out of Adopted while its adoption is still open."""
    if (
        animal.adoption_status == AdoptionStatus.ADOPTED
        and await get_active_adoption(session, animal.id) is not None
    ):
        raise InvalidStatusTransitionError(
            current_status=animal.adoption_status.value,
            operation="update",
            message="Animal has an active adoption. Use the returns endpoint to change its status.",
            status_code=409,
        )


async def apply_status_change(
    session: AsyncSession,
    animal: Animal,
    *,
    actor: User,
    new_status: Optional[AdoptionStatus] = None,
    foster_user_id: Optional[uuid.UUID] = None,
    foster_user_id_set: bool = False,
) -> None:
    """
    Apply a status and/or foster change to ``animal`` (no commit).

    Foster placement has no precondition on the prior status:
    - a foster status with a foster id assigns that foster
    - a foster status with an explicit null foster id clears it, otherwise
      the current foster stays
    - any other status clears the foster
    - a bare foster id assigns it and moves the animal to
      "Available - In Foster" unless it is already in a foster status
    - an explicit null foster id clears it

    Adopted is only entered through ``finalize_adoption`` and only left
    through ``process_return`` while an adoption is active.
    """
    if new_status is not None and new_status != animal.adoption_status:
        if new_status == AdoptionStatus.ADOPTED:
            raise InvalidStatusTransitionError(
                current_status=animal.adoption_status.value,
                operation="update",
                message="Use the adoptions endpoint to mark an animal as Adopted.",
                status_code=409,
            )
        await _guard_active_adoption(session, animal)

        if is_foster_status(new_status) and foster_user_id is not None:
            await _eligible_foster(session, foster_user_id)
            animal.current_foster_user_id = foster_user_id
        elif not is_foster_status(new_status) or foster_user_id_set:
            animal.current_foster_user_id = None

        logger.info(
            "Animal status changing",
            animal_id=animal.id,
            from_status=animal.adoption_status.value,
            to_status=new_status.value,
        )
        animal.adoption_status = new_status

    elif foster_user_id_set and foster_user_id is not None:
        if not is_foster_status(animal.adoption_status):
            await _guard_active_adoption(session, animal)
        if foster_user_id != animal.current_foster_user_id:
            await _eligible_foster(session, foster_user_id)
            animal.current_foster_user_id = foster_user_id
        if not is_foster_status(animal.adoption_status):
            animal.adoption_status = AdoptionStatus.AVAILABLE_IN_FOSTER
        logger.info("Foster assigned", animal_id=animal.id, foster_user_id=str(foster_user_id))

    elif foster_user_id_set and animal.current_foster_user_id is not None:
        logger.info("Foster cleared", animal_id=animal.id, foster_user_id=str(animal.current_foster_user_id))
        animal.current_foster_user_id = None

    animal.updated_by_user_id = actor.id
    animal.date_updated = utcnow()


# =============================================================================
# Images
# =============================================================================

async def add_animal_image(
    session: AsyncSession,
    *,
    animal_id: int,
    image_url: str,
    blob_name: str,
    actor: User,
    file_name: Optional[str] = None,
    caption: Optional[str] = None,
    display_order: Optional[int] = None,
    is_primary: bool = False,
) -> AnimalImage:
    """
    Insert image metadata keeping at most one primary image per animal.

    The first image of an animal is promoted to primary automatically; a
    new primary demotes every other image in the same transaction.
    """
    try:
        animal = await lock_animal(session, animal_id)
        if animal is None:
            raise NotFoundError("Animal", animal_id)

        result = await session.execute(
            select(AnimalImage).where(AnimalImage.animal_id == animal.id)
        )
        existing: List[AnimalImage] = list(result.scalars().all())

        make_primary = is_primary or not any(image.is_primary for image in existing)
        if make_primary:
            for image in existing:
                if image.is_primary:
                    image.is_primary = False

        if display_order is None:
            display_order = max((image.display_order for image in existing), default=-1) + 1

        image = AnimalImage(
            animal_id=animal.id,
            image_url=image_url,
            blob_name=blob_name,
            file_name=file_name,
            caption=caption,
            display_order=display_order,
            is_primary=make_primary,
            uploaded_by_user_id=actor.id,
            date_uploaded=utcnow(),
        )
        session.add(image)
        await session.commit()

    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Animal image added",
        animal_id=animal_id,
        image_id=image.id,
        is_primary=image.is_primary,
        auto_promoted=make_primary and not is_primary,
    )
    return image


async def remove_animal_image(session: AsyncSession, image_id: int) -> AnimalImage:
    """
    Delete image metadata; if it was primary, promote the next image by
    display order. Returns the deleted row so the caller can remove the blob.
    """
    try:
        image = await session.get(AnimalImage, image_id)
        if image is None:
            raise NotFoundError("Image", image_id)

        await lock_animal(session, image.animal_id)
        was_primary = image.is_primary
        await session.delete(image)
        await session.flush()

        promoted_id = None
        if was_primary:
            result = await session.execute(
                select(AnimalImage)
                .where(AnimalImage.animal_id == image.animal_id)
                .order_by(AnimalImage.display_order, AnimalImage.id)
                .limit(1)
            )
            successor = result.scalar_one_or_none()
            if successor is not None:
                successor.is_primary = True
                promoted_id = successor.id

        await session.commit()

    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Animal image deleted",
        image_id=image_id,
        animal_id=image.animal_id,
        promoted_image_id=promoted_id,
    )
    return image


__all__ = [
    "ADOPTABLE_STATUSES",
    "RETURNABLE_STATUS",
    "FOSTER_STATUSES",
    "can_finalize_adoption",
    "can_process_return",
    "is_foster_status",
    "AdoptionOutcome",
    "ReturnOutcome",
    "lock_animal",
    "get_active_adoption",
    "append_note",
    "find_or_update_adopter",
    "finalize_adoption",
    "process_return",
    "apply_status_change",
    "add_animal_image",
    "remove_animal_image",
]
