"""
User synchronization with the identity provider.

``sync_user`` is called by the frontend after every successful login and is
idempotent: the same payload twice yields one row and only refreshes
``last_login_date`` the second time.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database import User, UserRole, utcnow

logger = structlog.get_logger(__name__)


@dataclass
class SyncResult:
    user: User
    created: bool
    linked: bool = False
    changed_fields: tuple[str, ...] = ()


def derive_names(
    email: str,
    given_name: Optional[str],
    family_name: Optional[str],
    full_name: Optional[str],
) -> tuple[str, Optional[str]]:
    """First/last name for a new user, falling back to the email local part."""
    first = (given_name or "").strip() or None
    last = (family_name or "").strip() or None

    if first is None and full_name and full_name.strip():
        parts = full_name.strip().split(" ", 1)
        first = parts[0]
        if last is None and len(parts) > 1:
            last = parts[1].strip() or None

    if first is None:
        first = email.split("@", 1)[0]
    return first, last


def _apply_profile(user: User, email: str, given_name: Optional[str], family_name: Optional[str]) -> list[str]:
    changed = []
    if user.email != email:
        user.email = email
        changed.append("email")
    if given_name and user.first_name != given_name:
        user.first_name = given_name
        changed.append("first_name")
    if family_name and user.last_name != family_name:
        user.last_name = family_name
        changed.append("last_name")
    if not user.is_active:
        user.is_active = True
        changed.append("is_active")
    return changed


async def sync_user(
    session: AsyncSession,
    *,
    subject: str,
    email: str,
    given_name: Optional[str] = None,
    family_name: Optional[str] = None,
    full_name: Optional[str] = None,
) -> SyncResult:
    """
    Find-or-create the local user for an identity-provider subject.

    Lookup order: by subject, then a local-only user (no subject yet) with
    the same email, then create a new active Guest.
    """
    email = email.strip()
    given_name = (given_name or "").strip() or None
    family_name = (family_name or "").strip() or None
    now = utcnow()

    try:
        result = await session.execute(
            select(User).where(User.external_provider_id == subject)
        )
        user = result.scalar_one_or_none()
        linked = False
        created = False

        if user is None:
            result = await session.execute(
                select(User).where(
                    func.lower(User.email) == email.lower(),
                    User.external_provider_id.is_(None),
                )
            )
            user = result.scalar_one_or_none()
            if user is not None:
                user.external_provider_id = subject
                linked = True

        if user is None:
            first_name, last_name = derive_names(email, given_name, family_name, full_name)
            user = User(
                external_provider_id=subject,
                email=email,
                first_name=first_name,
                last_name=last_name,
                role=UserRole.GUEST,
                is_active=True,
                date_created=now,
                date_updated=now,
                last_login_date=now,
            )
            session.add(user)
            created = True
            changed: list[str] = []
        else:
            changed = _apply_profile(user, email, given_name, family_name)
            if linked:
                changed.append("external_provider_id")
            if changed:
                user.date_updated = now
            user.last_login_date = now

        await session.commit()

    except Exception:
        await session.rollback()
        raise

    logger.info(
        "User synced",
        user_id=str(user.id),
        created=created,
        linked=linked,
        changed_fields=changed,
    )
    return SyncResult(user=user, created=created, linked=linked, changed_fields=tuple(changed))


async def update_profile(
    session: AsyncSession,
    user: User,
    *,
    first_name: str,
    last_name: str,
) -> User:
    """Update the caller's own display name."""
    try:
        user.first_name = first_name.strip()
        user.last_name = last_name.strip()
        user.date_updated = utcnow()
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("User profile updated", user_id=str(user.id))
    return user
