"""
Application review and foster onboarding.

Approving a foster application promotes (or creates) the applicant's user
with the Foster role and creates or reactivates their foster profile, all
in the same transaction as the status change.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Type, Union

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, ValidationError
from app.models.database import (
    ApplicationStatus,
    FosterApplication,
    FosterProfile,
    User,
    UserRole,
    VolunteerApplication,
    utcnow,
)
from app.services.lifecycle import append_note

logger = structlog.get_logger(__name__)

# Users holding these roles keep them when approved as fosters
PRIVILEGED_ROLES = frozenset({UserRole.ADMIN, UserRole.STAFF})

ReviewableApplication = Union[FosterApplication, VolunteerApplication]


@dataclass
class ReviewOutcome:
    application: ReviewableApplication
    foster_user: Optional[User] = None
    foster_profile: Optional[FosterProfile] = None


def review_note(actor: User, notes: str, when: Optional[datetime] = None) -> str:
    when = when or utcnow()
    return f"[{when:%Y-%m-%d %H:%M} by {actor.email}]: {notes}"


def _stamp_review(
    application: ReviewableApplication,
    *,
    new_status: ApplicationStatus,
    notes: Optional[str],
    actor: User,
) -> None:
    now = utcnow()
    application.status = new_status
    if notes and notes.strip():
        application.internal_notes = append_note(
            application.internal_notes, review_note(actor, notes.strip(), now)
        )
    application.review_date = now
    application.reviewed_by_user_id = actor.id


async def approve_foster(
    session: AsyncSession,
    application: FosterApplication,
) -> tuple[User, FosterProfile]:
    """Find-or-create the applicant's user as a Foster and activate their profile (no commit)."""
    email = (application.primary_email or "").strip()
    if not email:
        raise ValidationError("Application is missing primary email, cannot approve.", field="primary_email")

    now = utcnow()
    result = await session.execute(
        select(User).where(func.lower(User.email) == email.lower())
    )
    user = result.scalar_one_or_none()

    if user is None:
        user = User(
            first_name=application.first_name,
            last_name=application.last_name,
            email=email,
            primary_phone=application.primary_phone,
            primary_phone_type=application.primary_phone_type,
            role=UserRole.FOSTER,
            is_active=True,
            external_provider_id=None,
            date_created=now,
            date_updated=now,
        )
        session.add(user)
        await session.flush()
        logger.info("Foster user created from application", user_id=str(user.id), application_id=application.id)
    else:
        if user.role not in PRIVILEGED_ROLES and user.role != UserRole.FOSTER:
            logger.info(
                "Promoting user to Foster",
                user_id=str(user.id),
                previous_role=user.role.value,
            )
            user.role = UserRole.FOSTER
        user.is_active = True
        user.date_updated = now

    result = await session.execute(
        select(FosterProfile).where(FosterProfile.user_id == user.id)
    )
    profile = result.scalar_one_or_none()

    if profile is None:
        profile = FosterProfile(
            user_id=user.id,
            foster_application_id=application.id,
            approval_date=now,
            is_active_foster=True,
            date_created=now,
            date_updated=now,
        )
        session.add(profile)
    else:
        profile.is_active_foster = True
        if profile.foster_application_id is None:
            profile.foster_application_id = application.id
        profile.date_updated = now

    return user, profile


async def review_application(
    session: AsyncSession,
    model: Type[ReviewableApplication],
    application_id: int,
    *,
    new_status: ApplicationStatus,
    notes: Optional[str],
    actor: User,
) -> ReviewOutcome:
    """
    Change an application's status and append a reviewer note.

    Approving a foster application also onboards the foster.
    """
    try:
        application = await session.get(model, application_id)
        if application is None:
            raise NotFoundError(model.__name__, application_id)

        _stamp_review(application, new_status=new_status, notes=notes, actor=actor)

        outcome = ReviewOutcome(application=application)
        if isinstance(application, FosterApplication) and new_status == ApplicationStatus.APPROVED:
            outcome.foster_user, outcome.foster_profile = await approve_foster(session, application)

        await session.commit()

    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Application reviewed",
        application_type=model.__tablename__,
        application_id=application_id,
        status=new_status.value,
        reviewer_id=str(actor.id),
        foster_user_id=str(outcome.foster_user.id) if outcome.foster_user else None,
    )
    return outcome


# Field groups accepted by the foster profile update
USER_FIELDS = {
    "first_name": "first_name",
    "last_name": "last_name",
    "is_user_active": "is_active",
    "primary_phone": "primary_phone",
    "primary_phone_type": "primary_phone_type",
    "primary_email": "email",
}
PROFILE_FIELDS = {
    "is_active_foster",
    "availability_notes",
    "capacity_details",
    "home_visit_date",
    "home_visit_notes",
}


async def update_foster_profile(
    session: AsyncSession,
    user_id: uuid.UUID,
    changes: Dict[str, Any],
    actor: User,
) -> tuple[User, FosterProfile]:
    """Partially update a foster's user record and profile."""
    try:
        result = await session.execute(
            select(FosterProfile).where(FosterProfile.user_id == user_id)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            raise NotFoundError("Foster profile", user_id)
        user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)

        now = utcnow()
        updated = []

        for name, column in USER_FIELDS.items():
            if name in changes and getattr(user, column) != changes[name]:
                setattr(user, column, changes[name])
                updated.append(name)
        for name in PROFILE_FIELDS:
            if name in changes and getattr(profile, name) != changes[name]:
                setattr(profile, name, changes[name])
                updated.append(name)

        if updated:
            user.date_updated = now
            profile.date_updated = now
        await session.commit()

    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Foster profile updated",
        user_id=str(user_id),
        updated_fields=sorted(updated),
        actor_id=str(actor.id),
    )
    return user, profile
