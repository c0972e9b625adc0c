"""
Applications API Endpoints

Public intake forms (foster, volunteer, adoption, partnership/sponsorship)
and staff review of foster and volunteer applications.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Type

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import asc, desc, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.core.exceptions import NotFoundError, RescueAppException, ValidationError
from app.core.security import require_staff
from app.models.database import (
    AdoptionApplication,
    Animal,
    ApplicationStatus,
    FosterApplication,
    PartnershipSponsorshipApplication,
    User,
    VolunteerApplication,
    get_db_session,
    utcnow,
)
from app.services.fosters import ReviewableApplication, review_application

# =============================================================================
# Logger
# =============================================================================

logger = structlog.get_logger(__name__)
router = APIRouter()

SORT_PATTERN = "^(submissiondate|applicantname|status)_(asc|desc)$"

# =============================================================================
# Request Models
# =============================================================================

class ContactRequest(BaseModel):
    """Applicant contact block shared by every intake form."""
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    spouse_partner_roommate: Optional[str] = Field(None, max_length=255)
    street_address: Optional[str] = Field(None, max_length=255)
    apt_unit: Optional[str] = Field(None, max_length=50)
    city: Optional[str] = Field(None, max_length=100)
    state_province: Optional[str] = Field(None, max_length=100)
    zip_postal_code: Optional[str] = Field(None, max_length=20)
    primary_phone: str = Field(..., min_length=1, max_length=30)
    primary_phone_type: str = Field(..., min_length=1, max_length=10)
    secondary_phone: Optional[str] = Field(None, max_length=30)
    secondary_phone_type: Optional[str] = Field(None, max_length=10)
    primary_email: EmailStr
    secondary_email: Optional[EmailStr] = None
    how_heard: Optional[str] = None


class WaiverRequest(BaseModel):
    waiver_agreed: bool = False
    e_signature_name: Optional[str] = Field(None, max_length=255)
    waiver_agreement_timestamp: Optional[datetime] = None


class FosterApplicationRequest(ContactRequest, WaiverRequest):
    adults_in_home: str = Field(..., min_length=1, max_length=255)
    children_in_home: Optional[str] = None
    has_allergies: Optional[str] = Field(None, max_length=10)
    household_aware_foster: str = Field(..., min_length=1, max_length=10)
    dwelling_type: str = Field(..., min_length=1, max_length=50)
    rent_or_own: str = Field(..., min_length=1, max_length=10)
    landlord_permission: Optional[bool] = None
    yard_type: Optional[str] = Field(None, max_length=50)
    separation_plan: str = Field(..., min_length=1)
    has_current_pets: str = Field(..., min_length=1, max_length=10)
    current_pets_details: Optional[str] = None
    current_pets_spayed_neutered: Optional[str] = Field(None, max_length=10)
    current_pets_vaccinations: Optional[str] = Field(None, max_length=10)
    vet_clinic_name: Optional[str] = Field(None, max_length=255)
    vet_phone: Optional[str] = Field(None, max_length=30)
    has_fostered_before: str = Field(..., min_length=1, max_length=10)
    previous_foster_details: Optional[str] = None
    why_foster: str = Field(..., min_length=1)
    foster_animal_types: Optional[str] = None
    willing_medical: str = Field(..., min_length=1, max_length=10)
    willing_behavioral: str = Field(..., min_length=1, max_length=10)
    commitment_length: str = Field(..., min_length=1, max_length=50)
    can_transport: str = Field(..., min_length=1, max_length=10)
    transport_explanation: Optional[str] = None
    previous_pets_details: Optional[str] = None


class VolunteerApplicationRequest(ContactRequest, WaiverRequest):
    age_confirmation: str = Field(..., min_length=1, max_length=10)
    previous_volunteer_experience: Optional[str] = Field(None, max_length=10)
    previous_experience_details: Optional[str] = None
    comfort_level_special_needs: Optional[str] = Field(None, max_length=10)
    areas_of_interest: Optional[str] = None
    other_skills: Optional[str] = None
    location_acknowledgement: bool = False
    volunteer_reason: Optional[str] = None
    emergency_contact_name: str = Field(..., min_length=1, max_length=255)
    emergency_contact_phone: str = Field(..., min_length=1, max_length=30)
    crime_conviction_check: str = Field(..., min_length=1, max_length=10)
    policy_acknowledgement: bool = False


class AdoptionApplicationRequest(ContactRequest, WaiverRequest):
    animal_id: Optional[int] = Field(None, ge=1)
    which_animal_text: Optional[str] = Field(None, max_length=255)
    dwelling_type: str = Field(..., min_length=1, max_length=50)
    rent_or_own: str = Field(..., min_length=1, max_length=10)
    landlord_permission: Optional[bool] = None
    yard_type: Optional[str] = Field(None, max_length=50)
    adults_in_home: str = Field(..., min_length=1, max_length=255)
    children_in_home: Optional[str] = None
    has_allergies: Optional[str] = Field(None, max_length=10)
    household_aware: str = Field(..., min_length=1, max_length=10)
    has_current_pets: str = Field(..., min_length=1, max_length=10)
    current_pets_details: Optional[str] = None
    current_pets_spayed_neutered: Optional[str] = Field(None, max_length=10)
    current_pets_vaccinations: Optional[str] = Field(None, max_length=10)
    has_previous_pets: Optional[str] = Field(None, max_length=10)
    previous_pets_details: Optional[str] = None
    vet_clinic_name: Optional[str] = Field(None, max_length=255)
    vet_phone: Optional[str] = Field(None, max_length=30)
    why_adopt: Optional[str] = None
    primary_caregiver: str = Field(..., min_length=1, max_length=255)
    hours_alone_per_day: str = Field(..., min_length=1, max_length=20)
    pet_alone_location: str = Field(..., min_length=1)
    pet_sleep_location: str = Field(..., min_length=1)
    moving_plan: Optional[str] = None
    prepared_for_costs: str = Field(..., min_length=1, max_length=10)


class PartnershipSponsorshipRequest(ContactRequest):
    organization_name: Optional[str] = Field(None, max_length=255)
    contact_title: Optional[str] = Field(None, max_length=100)
    website_url: Optional[str] = Field(None, max_length=255)
    interest_type: Optional[str] = Field(None, max_length=100)
    details_of_interest: Optional[str] = None


class ApplicationReviewRequest(BaseModel):
    """Staff decision on an application."""
    new_status: ApplicationStatus
    internal_notes: Optional[str] = None


# =============================================================================
# Utility Functions
# =============================================================================

def format_application(application: Any) -> Dict[str, Any]:
    """All column values of an application row."""
    data: Dict[str, Any] = {}
    for column in application.__table__.columns:
        value = getattr(application, column.key)
        if isinstance(value, ApplicationStatus):
            value = value.value
        elif column.key == "reviewed_by_user_id" and value is not None:
            value = str(value)
        data[column.key] = value
    return data


def format_application_list_item(application: ReviewableApplication, reviewer: Optional[User]) -> Dict[str, Any]:
    return {
        "id": application.id,
        "submission_date": application.submission_date,
        "applicant_name": f"{application.first_name} {application.last_name}".strip(),
        "primary_email": application.primary_email,
        "primary_phone": application.primary_phone,
        "status": application.status.value,
        "reviewed_by": reviewer.email if reviewer else None,
        "review_date": application.review_date,
    }


async def submit_application(
    session: AsyncSession,
    model: Type[Any],
    request: BaseModel,
) -> Dict[str, Any]:
    """Store a public intake form as Pending Review."""
    try:
        data = request.model_dump()
        now = utcnow()
        if data.get("waiver_agreed") and not data.get("waiver_agreement_timestamp"):
            data["waiver_agreement_timestamp"] = now

        application = model(
            **data,
            status=ApplicationStatus.PENDING_REVIEW,
            submission_date=now,
        )
        session.add(application)
        await session.commit()

        logger.info(
            "Application submitted",
            application_type=model.__tablename__,
            application_id=application.id,
        )
        return format_application(application)

    except Exception as e:
        logger.error(
            "Failed to save application",
            application_type=model.__tablename__,
            error=str(e),
            exc_info=True,
        )
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to submit application. Please try again."
        )


async def list_applications(
    session: AsyncSession,
    model: Type[ReviewableApplication],
    status_filter: Optional[ApplicationStatus],
    sort_by: str,
) -> List[Dict[str, Any]]:
    reviewer = aliased(User)
    query = select(model, reviewer).outerjoin(reviewer, model.reviewed_by_user_id == reviewer.id)
    if status_filter is not None:
        query = query.where(model.status == status_filter)

    field, direction = sort_by.rsplit("_", 1)
    order = desc if direction == "desc" else asc
    columns = {
        "submissiondate": (model.submission_date,),
        "applicantname": (model.last_name, model.first_name),
        "status": (model.status,),
    }[field]
    query = query.order_by(*(order(column) for column in columns), order(model.id))

    result = await session.execute(query)
    return [format_application_list_item(application, user) for application, user in result.all()]


async def apply_review(
    session: AsyncSession,
    model: Type[ReviewableApplication],
    application_id: int,
    request: ApplicationReviewRequest,
    current_user: User,
) -> Dict[str, Any]:
    try:
        outcome = await review_application(
            session,
            model,
            application_id,
            new_status=request.new_status,
            notes=request.internal_notes,
            actor=current_user,
        )

    except RescueAppException:
        raise

    except Exception as e:
        logger.error(
            "Failed to update application",
            application_type=model.__tablename__,
            application_id=application_id,
            error=str(e),
            exc_info=True,
        )
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update application"
        )

    response = {
        "message": f"Application status updated to {request.new_status.value}.",
        "application": format_application(outcome.application),
    }
    if outcome.foster_user is not None:
        response["foster_user_id"] = str(outcome.foster_user.id)
        response["foster_profile_id"] = outcome.foster_profile.id
    return response


# =============================================================================
# Public Intake Endpoints
# =============================================================================

@router.post("/foster-applications", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def create_foster_application(
    request: FosterApplicationRequest,
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Submit a foster application."""
    return await submit_application(session, FosterApplication, request)


@router.post("/volunteer-applications", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def create_volunteer_application(
    request: VolunteerApplicationRequest,
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Submit a volunteer application."""
    return await submit_application(session, VolunteerApplication, request)


@router.post("/adoption-applications", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def create_adoption_application(
    request: AdoptionApplicationRequest,
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Submit an adoption application, optionally for a specific animal."""
    if request.animal_id is not None and await session.get(Animal, request.animal_id) is None:
        raise ValidationError(f"Animal {request.animal_id} does not exist.", field="animal_id")
    return await submit_application(session, AdoptionApplication, request)


@router.post(
    "/partnership-sponsorship-applications",
    response_model=Dict[str, Any],
    status_code=status.HTTP_201_CREATED,
)
async def create_partnership_sponsorship_application(
    request: PartnershipSponsorshipRequest,
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Submit a partnership or sponsorship enquiry."""
    return await submit_application(session, PartnershipSponsorshipApplication, request)


# =============================================================================
# Foster Application Review
# =============================================================================

@router.get("/foster-applications", response_model=List[Dict[str, Any]])
async def list_foster_applications(
    status_filter: Optional[ApplicationStatus] = Query(None, alias="status"),
    sort_by: str = Query("submissiondate_desc", pattern=SORT_PATTERN),
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> List[Dict[str, Any]]:
    """Foster applications for review."""
    return await list_applications(session, FosterApplication, status_filter, sort_by)


@router.get("/foster-applications/{application_id}", response_model=Dict[str, Any])
async def get_foster_application(
    application_id: int,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    application = await session.get(FosterApplication, application_id)
    if application is None:
        raise NotFoundError("Foster application", application_id)
    return format_application(application)


@router.put("/foster-applications/{application_id}", response_model=Dict[str, Any])
async def update_foster_application(
    application_id: int,
    request: ApplicationReviewRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """
    Review a foster application.

    Approval also makes the applicant a Foster user with an active foster
    profile, in the same transaction.
    """
    return await apply_review(session, FosterApplication, application_id, request, current_user)


# =============================================================================
# Volunteer Application Review
# =============================================================================

@router.get("/volunteer-applications", response_model=List[Dict[str, Any]])
async def list_volunteer_applications(
    status_filter: Optional[ApplicationStatus] = Query(None, alias="status"),
    sort_by: str = Query("submissiondate_desc", pattern=SORT_PATTERN),
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> List[Dict[str, Any]]:
    """Volunteer applications for review."""
    return await list_applications(session, VolunteerApplication, status_filter, sort_by)


@router.get("/volunteer-applications/{application_id}", response_model=Dict[str, Any])
async def get_volunteer_application(
    application_id: int,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    application = await session.get(VolunteerApplication, application_id)
    if application is None:
        raise NotFoundError("Volunteer application", application_id)
    return format_application(application)


@router.put("/volunteer-applications/{application_id}", response_model=Dict[str, Any])
async def update_volunteer_application(
    application_id: int,
    request: ApplicationReviewRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """Review a volunteer application."""
    return await apply_review(session, VolunteerApplication, application_id, request, current_user)
