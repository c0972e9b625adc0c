"""
Email API Endpoints

Adoption contract emails and free-form staff emails. ``/send-email`` is the
legacy endpoint; its errors are rendered as ``{"message": ...}`` by the
application's exception handlers.
"""

from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field

from app.core.security import require_staff
from app.models.database import User
from app.services.email import EmailAddress, EmailMessage, EmailService, get_email_service

# =============================================================================
# Logger
# =============================================================================

logger = structlog.get_logger(__name__)
router = APIRouter()

LEGACY_EMAIL_PATH = "/send-email"


class SendContractRequest(BaseModel):
    recipient_email: EmailStr
    animal_name: str = Field(..., min_length=1, max_length=100)
    species: str = Field(..., min_length=1, max_length=50)
    breed: str = Field(..., min_length=1, max_length=100)
    gender: str = Field(..., min_length=1, max_length=10)
    scars_id: str = Field(..., min_length=1, max_length=50)


class SendEmailRequest(BaseModel):
    to_email: EmailStr
    subject: str = Field(..., min_length=1, max_length=255)
    body: str = Field(..., min_length=1)


@router.post("/send-contract", response_model=Dict[str, Any], status_code=status.HTTP_200_OK)
async def send_contract(
    request: SendContractRequest,
    email_service: EmailService = Depends(get_email_service),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """Email an adopter the link to their pre-filled adoption contract."""
    await email_service.send_adoption_contract(
        recipient_email=request.recipient_email,
        animal_name=request.animal_name,
        species=request.species,
        breed=request.breed,
        gender=request.gender,
        scars_id=request.scars_id,
    )
    logger.info(
        "Adoption contract sent",
        animal_name=request.animal_name,
        scars_id=request.scars_id,
        user_id=str(current_user.id),
    )
    return {"message": f"Adoption contract sent to {request.recipient_email}."}


@router.post(LEGACY_EMAIL_PATH, response_model=Dict[str, Any], status_code=status.HTTP_200_OK)
async def send_email(
    request: SendEmailRequest,
    email_service: EmailService = Depends(get_email_service),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """Send a plain-text email on behalf of staff."""
    await email_service.send_email(EmailMessage(
        to=[EmailAddress(email=request.to_email)],
        subject=request.subject,
        body_text=request.body,
    ))
    logger.info("Staff email sent", subject=request.subject, user_id=str(current_user.id))
    return {"message": "Email sent successfully."}
