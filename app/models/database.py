"""
Database Models and ORM Setup

This module contains all database models using SQLAlchemy 2.0 with async support.
Column types are kept dialect-neutral; PostgreSQL (asyncpg) is the production
target.
"""

import asyncio
import enum
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column, relationship

from app.core.config import settings

logger = structlog.get_logger(__name__).bind(component="database")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums for Type Safety
# =============================================================================

class UserRole(str, enum.Enum):
    """User role enumeration, lowest privilege first."""
    GUEST = "Guest"
    FOSTER = "Foster"
    STAFF = "Staff"
    ADMIN = "Admin"


class AdoptionStatus(str, enum.Enum):
    """Adoption/foster status of an animal."""
    NOT_YET_AVAILABLE = "Not Yet Available"
    AVAILABLE = "Available"
    AVAILABLE_IN_FOSTER = "Available - In Foster"
    ADOPTION_PENDING = "Adoption Pending"
    ADOPTED = "Adopted"
    MEDICAL_HOLD = "Medical Hold"
    MEDICAL_HOLD_IN_FOSTER = "Medical Hold - In Foster"
    BEHAVIORAL_HOLD = "Behavioral Hold"
    BEHAVIORAL_HOLD_WITH_TRAINER = "Behavioral Hold - With Trainer"
    STRAY_HOLD = "Stray Hold"
    RETURNED_TO_OWNER = "Returned to Owner"
    TRANSFERRED = "Transferred"
    LOST_IN_CARE = "Lost in Care"
    DIED_IN_CARE = "Died in Care"
    EUTHANIZED = "Euthanized"


class ApplicationStatus(str, enum.Enum):
    """Review status shared by all intake applications."""
    PENDING_REVIEW = "Pending Review"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    WAITLISTED = "Waitlisted"
    WITHDRAWN = "Withdrawn"


def _enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    # Store the human-readable value ("Available - In Foster"), not the member name
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=50,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# =============================================================================
# Base Model with Common Fields
# =============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all database models.

    Provides async attribute loading and timezone-aware datetimes.
    """

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class TimestampMixin:
    """Mixin for date_created and date_updated timestamps."""

    date_created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        doc="Record creation timestamp"
    )

    date_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        doc="Last update timestamp"
    )


class ReviewMixin:
    """Intake form review metadata."""

    submission_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        doc="When the form was submitted"
    )

    @declared_attr
    def status(cls) -> Mapped[ApplicationStatus]:
        return mapped_column(
            _enum_column(ApplicationStatus, "application_status"),
            default=ApplicationStatus.PENDING_REVIEW,
            nullable=False,
            doc="Review status"
        )

    @declared_attr
    def reviewed_by_user_id(cls) -> Mapped[Optional[uuid.UUID]]:
        return mapped_column(
            Uuid,
            ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
            doc="Staff member who last reviewed the application"
        )

    review_date: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    internal_notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Timestamped reviewer notes, newest last"
    )


class ContactMixin:
    """Applicant contact block shared by the intake forms."""

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    spouse_partner_roommate: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    street_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    apt_unit: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state_province: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    zip_postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    primary_phone: Mapped[str] = mapped_column(String(30), nullable=False)
    primary_phone_type: Mapped[str] = mapped_column(String(10), nullable=False)
    secondary_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    secondary_phone_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    primary_email: Mapped[str] = mapped_column(String(255), nullable=False)
    secondary_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    how_heard: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


# =============================================================================
# User Management Models
# =============================================================================

class User(Base, TimestampMixin):
    """
    Local user record linked to an identity-provider subject.

    Created lazily by the login-time sync, or ahead of time (without a
    subject) when a foster application is approved.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        doc="Primary key UUID"
    )

    external_provider_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
        doc="Identity provider subject ('sub' claim)"
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        doc="Email address"
    )

    primary_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    primary_phone_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    role: Mapped[UserRole] = mapped_column(
        _enum_column(UserRole, "user_role"),
        default=UserRole.GUEST,
        nullable=False,
        doc="User role and permissions"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        doc="Inactive users are rejected on every protected endpoint"
    )

    last_login_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Last login timestamp"
    )

    foster_profile: Mapped[Optional["FosterProfile"]] = relationship(
        "FosterProfile",
        back_populates="user",
        uselist=False,
    )

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    __table_args__ = (
        Index("ix_users_role", "role"),
    )


# =============================================================================
# Animals
# =============================================================================

class Animal(Base):
    """An animal in the rescue's care (or adopted out)."""

    __tablename__ = "animals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    animal_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        doc="Species, e.g. Dog or Cat"
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    breed: Mapped[str] = mapped_column(String(100), nullable=False)
    date_of_birth: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    gender: Mapped[str] = mapped_column(String(10), nullable=False)
    weight: Mapped[Optional[float]] = mapped_column(Numeric(6, 2, asdecimal=False), nullable=True)
    story: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    adoption_status: Mapped[AdoptionStatus] = mapped_column(
        _enum_column(AdoptionStatus, "adoption_status"),
        default=AdoptionStatus.NOT_YET_AVAILABLE,
        nullable=False,
        doc="Lifecycle status; transitions are guarded in app.services.lifecycle"
    )

    current_foster_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        doc="Foster currently caring for the animal"
    )

    created_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    updated_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    date_added: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    date_updated: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    images: Mapped[List["AnimalImage"]] = relationship(
        "AnimalImage",
        back_populates="animal",
        cascade="all, delete-orphan",
        order_by="AnimalImage.display_order",
    )

    documents: Mapped[List["AnimalDocument"]] = relationship(
        "AnimalDocument",
        back_populates="animal",
        cascade="all, delete-orphan",
    )

    current_foster: Mapped[Optional["User"]] = relationship(
        "User",
        foreign_keys=[current_foster_user_id],
    )

    __table_args__ = (
        Index("ix_animals_adoption_status", "adoption_status"),
        Index("ix_animals_animal_type", "animal_type"),
        Index("ix_animals_current_foster_user_id", "current_foster_user_id"),
    )


class Adopter(Base, TimestampMixin):
    """Adopter contact details, matched case-insensitively by email."""

    __tablename__ = "adopters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    adopter_first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    adopter_last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    adopter_email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    adopter_primary_phone: Mapped[str] = mapped_column(String(30), nullable=False)
    adopter_primary_phone_type: Mapped[str] = mapped_column(String(10), nullable=False)
    adopter_secondary_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    adopter_secondary_phone_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    adopter_street_address: Mapped[str] = mapped_column(String(255), nullable=False)
    adopter_apt_unit: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    adopter_city: Mapped[str] = mapped_column(String(100), nullable=False)
    adopter_state_province: Mapped[str] = mapped_column(String(100), nullable=False)
    adopter_zip_postal_code: Mapped[str] = mapped_column(String(20), nullable=False)
    spouse_partner_roommate: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    updated_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )


class AdoptionHistory(Base):
    """
    One adoption of one animal.

    A row with ``return_date`` NULL is the animal's active adoption; at most
    one such row exists per animal.
    """

    __tablename__ = "adoption_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    animal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("animals.id", ondelete="RESTRICT"),
        nullable=False,
    )
    adopter_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("adopters.id", ondelete="RESTRICT"),
        nullable=False,
    )

    adoption_date: Mapped[datetime] = mapped_column(nullable=False)
    return_date: Mapped[Optional[datetime]] = mapped_column(
        nullable=True,
        doc="NULL while the adoption is active"
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    updated_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    date_created: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    date_updated: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    animal: Mapped["Animal"] = relationship("Animal")
    adopter: Mapped["Adopter"] = relationship("Adopter")

    __table_args__ = (
        Index("ix_adoption_history_animal_id", "animal_id"),
        Index("ix_adoption_history_adopter_id", "adopter_id"),
    )


# =============================================================================
# Media Attachments
# =============================================================================

class AnimalImage(Base):
    """Image metadata; the bytes live in the images container."""

    __tablename__ = "animal_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    animal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("animals.id", ondelete="CASCADE"),
        nullable=False,
    )
    image_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    blob_name: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        doc="Object key inside the images container"
    )
    file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    caption: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_primary: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        doc="At most one primary image per animal"
    )
    date_uploaded: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    uploaded_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    animal: Mapped["Animal"] = relationship("Animal", back_populates="images")

    __table_args__ = (
        Index("ix_animal_images_animal_id", "animal_id"),
    )


class AnimalDocument(Base):
    """Document metadata; the bytes live in the documents container."""

    __tablename__ = "animal_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    animal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("animals.id", ondelete="CASCADE"),
        nullable=False,
    )
    document_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="e.g. Vaccination Record, Vet Record, Adoption Contract"
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    blob_name: Mapped[str] = mapped_column(String(500), unique=True, nullable=False)
    blob_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    date_uploaded: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    uploaded_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    animal: Mapped["Animal"] = relationship("Animal", back_populates="documents")

    __table_args__ = (
        Index("ix_animal_documents_animal_id", "animal_id"),
    )


# =============================================================================
# Fosters
# =============================================================================

class FosterProfile(Base, TimestampMixin):
    """Approved-foster details, one-to-one with a User."""

    __tablename__ = "foster_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    foster_application_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("foster_applications.id", ondelete="SET NULL"),
        nullable=True,
        doc="Application that led to the approval"
    )
    approval_date: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    is_active_foster: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    availability_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    capacity_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    home_visit_date: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    home_visit_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="foster_profile")


# =============================================================================
# Intake Applications
# =============================================================================

class FosterApplication(Base, ContactMixin, ReviewMixin):
    """Public foster intake form."""

    __tablename__ = "foster_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    adults_in_home: Mapped[str] = mapped_column(String(255), nullable=False)
    children_in_home: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    has_allergies: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    household_aware_foster: Mapped[str] = mapped_column(String(10), nullable=False)
    dwelling_type: Mapped[str] = mapped_column(String(50), nullable=False)
    rent_or_own: Mapped[str] = mapped_column(String(10), nullable=False)
    landlord_permission: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    yard_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    separation_plan: Mapped[str] = mapped_column(Text, nullable=False)
    has_current_pets: Mapped[str] = mapped_column(String(10), nullable=False)
    current_pets_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    current_pets_spayed_neutered: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    current_pets_vaccinations: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    vet_clinic_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    vet_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    has_fostered_before: Mapped[str] = mapped_column(String(10), nullable=False)
    previous_foster_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    why_foster: Mapped[str] = mapped_column(Text, nullable=False)
    foster_animal_types: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    willing_medical: Mapped[str] = mapped_column(String(10), nullable=False)
    willing_behavioral: Mapped[str] = mapped_column(String(10), nullable=False)
    commitment_length: Mapped[str] = mapped_column(String(50), nullable=False)
    can_transport: Mapped[str] = mapped_column(String(10), nullable=False)
    transport_explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    previous_pets_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    waiver_agreed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    e_signature_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    waiver_agreement_timestamp: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    __table_args__ = (
        Index("ix_foster_applications_status", "status"),
        Index("ix_foster_applications_primary_email", "primary_email"),
    )


class VolunteerApplication(Base, ContactMixin, ReviewMixin):
    """Public volunteer intake form."""

    __tablename__ = "volunteer_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    age_confirmation: Mapped[str] = mapped_column(String(10), nullable=False)
    previous_volunteer_experience: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    previous_experience_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    comfort_level_special_needs: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    areas_of_interest: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    other_skills: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location_acknowledgement: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    volunteer_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    emergency_contact_name: Mapped[str] = mapped_column(String(255), nullable=False)
    emergency_contact_phone: Mapped[str] = mapped_column(String(30), nullable=False)
    crime_conviction_check: Mapped[str] = mapped_column(String(10), nullable=False)
    policy_acknowledgement: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    waiver_agreed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    e_signature_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    waiver_agreement_timestamp: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    __table_args__ = (
        Index("ix_volunteer_applications_status", "status"),
    )


class AdoptionApplication(Base, ContactMixin, ReviewMixin):
    """Public adoption intake form; optionally tied to a specific animal."""

    __tablename__ = "adoption_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    animal_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("animals.id", ondelete="SET NULL"),
        nullable=True,
    )
    which_animal_text: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    dwelling_type: Mapped[str] = mapped_column(String(50), nullable=False)
    rent_or_own: Mapped[str] = mapped_column(String(10), nullable=False)
    landlord_permission: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    yard_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    adults_in_home: Mapped[str] = mapped_column(String(255), nullable=False)
    children_in_home: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    has_allergies: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    household_aware: Mapped[str] = mapped_column(String(10), nullable=False)
    has_current_pets: Mapped[str] = mapped_column(String(10), nullable=False)
    current_pets_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    current_pets_spayed_neutered: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    current_pets_vaccinations: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    has_previous_pets: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    previous_pets_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vet_clinic_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    vet_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    why_adopt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    primary_caregiver: Mapped[str] = mapped_column(String(255), nullable=False)
    hours_alone_per_day: Mapped[str] = mapped_column(String(20), nullable=False)
    pet_alone_location: Mapped[str] = mapped_column(Text, nullable=False)
    pet_sleep_location: Mapped[str] = mapped_column(Text, nullable=False)
    moving_plan: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prepared_for_costs: Mapped[str] = mapped_column(String(10), nullable=False)
    waiver_agreed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    e_signature_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    waiver_agreement_timestamp: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    __table_args__ = (
        Index("ix_adoption_applications_status", "status"),
    )


class PartnershipSponsorshipApplication(Base, ContactMixin, ReviewMixin):
    """Public partnership / sponsorship inquiry."""

    __tablename__ = "partnership_sponsorship_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    organization_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_title: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    website_url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    interest_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    details_of_interest: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


# =============================================================================
# Database Engine and Session Management
# =============================================================================

engine = create_async_engine(
    str(settings.DATABASE_URL),
    **settings.DATABASE_ENGINE_OPTIONS,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=True,
)


# =============================================================================
# Database Session Dependency
# =============================================================================

async def get_db_session() -> AsyncIterator[AsyncSession]:
    """
    Get async database session.

    This function provides a database session for dependency injection
    in FastAPI endpoints. Uncommitted work is rolled back on error.
    """
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# =============================================================================
# Database Initialization
# =============================================================================

async def create_tables() -> None:
    """Create all database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def wait_for_database(
    max_attempts: int = 10,
    initial_delay_seconds: float = 0.5,
    max_delay_seconds: float = 5.0,
) -> None:
    """Wait for database to become available with exponential backoff.

    Raises last exception if database is not reachable after all attempts.
    """
    attempt = 0
    delay = float(initial_delay_seconds)
    last_error: Optional[Exception] = None

    while attempt < max_attempts:
        try:
            async with async_session_maker() as session:
                await session.execute(text("SELECT 1"))
            if attempt > 0:
                logger.info("Database became available", attempts=attempt + 1)
            return
        except Exception as exc:
            last_error = exc
            logger.warning(
                "Database not reachable yet",
                attempt=attempt + 1,
                delay_seconds=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)
            delay = min(max_delay_seconds, delay * 2)
            attempt += 1

    logger.error(
        "Database not reachable after retries",
        attempts=max_attempts,
        error=str(last_error) if last_error else None,
    )
    if last_error:
        raise last_error


# =============================================================================
# Health Check Queries
# =============================================================================

async def check_database_health() -> Dict[str, Any]:
    """Check database connectivity."""
    try:
        async with async_session_maker() as session:
            result = await session.execute(text("SELECT 1"))
            test_value = result.scalar()

            animals = await session.execute(text("SELECT COUNT(*) FROM animals"))

            return {
                "status": "healthy",
                "test_query": test_value == 1,
                "animals_total": animals.scalar(),
            }

    except Exception as e:
        logger.warning("Database health check failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
        }


__all__ = [
    "Base",
    "UserRole",
    "AdoptionStatus",
    "ApplicationStatus",
    "User",
    "Animal",
    "Adopter",
    "AdoptionHistory",
    "AnimalImage",
    "AnimalDocument",
    "FosterProfile",
    "FosterApplication",
    "VolunteerApplication",
    "AdoptionApplication",
    "PartnershipSponsorshipApplication",
    "engine",
    "async_session_maker",
    "get_db_session",
    "create_tables",
    "wait_for_database",
    "check_database_health",
    "utcnow",
]
