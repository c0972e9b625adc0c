"""
Security and Authentication Module

Bearer-token authentication against the identity provider (OpenID Connect
discovery + JWKS), local user resolution and role-based access control.
Every protected route goes through ``require_roles`` (or
``require_active_user``); nothing else validates tokens.
"""

import asyncio
from functools import lru_cache
from typing import Any, Dict, Optional, Sequence

import httpx
import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ExternalServiceError,
    PermissionDeniedError,
)
from app.models.database import User, UserRole, get_db_session

# =============================================================================
# Logger Setup
# =============================================================================

logger = structlog.get_logger(__name__)

# =============================================================================
# Security Configuration
# =============================================================================

# Identity provider signs access tokens with RS256
ALGORITHMS = ("RS256",)

# HTTP Bearer token scheme; missing or non-Bearer headers yield None
security = HTTPBearer(auto_error=False)

# Roles allowed on the back-office endpoints
STAFF_ROLES = [UserRole.ADMIN, UserRole.STAFF]


# =============================================================================
# Token Validation
# =============================================================================

class TokenValidator:
    """
    Validates identity-provider access tokens.

    The signing-key set is fetched once per process through the issuer's
    OpenID Connect discovery document and kept for the lifetime of the
    validator. Initialization is guarded by an ``asyncio.Lock`` so concurrent
    first requests trigger a single fetch.
    """

    def __init__(
        self,
        issuer: Optional[str],
        audience: Optional[str],
        clock_skew_seconds: int = 60,
        timeout_seconds: float = 10.0,
    ):
        self.issuer = issuer
        self.audience = audience
        self.clock_skew_seconds = clock_skew_seconds
        self.timeout_seconds = timeout_seconds

        self._lock = asyncio.Lock()
        self._key_set: Optional[jwt.PyJWKSet] = None
        self._expected_issuer: Optional[str] = None
        self._missing_setting: Optional[str] = None

    @classmethod
    def from_settings(cls, config: Settings) -> "TokenValidator":
        return cls(
            issuer=config.AUTH0_ISSUER_BASE_URL,
            audience=config.AUTH0_AUDIENCE,
            clock_skew_seconds=config.AUTH_CLOCK_SKEW_SECONDS,
            timeout_seconds=config.AUTH_DISCOVERY_TIMEOUT_SECONDS,
        )

    @property
    def is_initialized(self) -> bool:
        return self._key_set is not None

    @property
    def discovery_url(self) -> str:
        return f"{(self.issuer or '').rstrip('/')}/.well-known/openid-configuration"

    async def _fetch_json(self, url: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.json()

    async def initialize(self) -> None:
        """Load the signing keys once; later calls return immediately."""
        if self._key_set is not None:
            return

        async with self._lock:
            if self._key_set is not None:
                return

            if self._missing_setting is None:
                if not self.issuer:
                    self._missing_setting = "AUTH0_ISSUER_BASE_URL"
                elif not self.audience:
                    self._missing_setting = "AUTH0_AUDIENCE"

            # Missing configuration can't fix itself at runtime
            if self._missing_setting is not None:
                logger.error("Token validation is not configured", setting=self._missing_setting)
                raise ConfigurationError(
                    self._missing_setting,
                    message="Authentication is not configured on the server.",
                )

            try:
                discovery = await self._fetch_json(self.discovery_url)
                jwks_uri = discovery.get("jwks_uri")
                if not jwks_uri:
                    raise ValueError("discovery document has no jwks_uri")
                key_set = jwt.PyJWKSet.from_dict(await self._fetch_json(jwks_uri))
            except (httpx.HTTPError, ValueError, jwt.PyJWTError) as e:
                # Not memoized: the next request retries the fetch
                logger.error(
                    "Failed to load identity provider signing keys",
                    discovery_url=self.discovery_url,
                    error=str(e),
                )
                raise ExternalServiceError(
                    service_name="Identity Provider",
                    message="Unable to validate tokens at this time.",
                    status_code=500,
                )

            self._expected_issuer = discovery.get("issuer") or self.issuer
            self._key_set = key_set
            logger.info(
                "Identity provider signing keys loaded",
                issuer=self._expected_issuer,
                key_count=len(key_set.keys),
            )

    def _signing_key(self, kid: Optional[str]) -> jwt.PyJWK:
        keys = self._key_set.keys if self._key_set else []
        if kid is None and len(keys) == 1:
            return keys[0]
        for key in keys:
            if key.key_id == kid:
                return key
        raise jwt.InvalidTokenError(f"No signing key matches kid '{kid}'")

    async def validate(self, token: str) -> Dict[str, Any]:
        """
        Validate signature, issuer, audience and expiry of ``token``.

        Returns:
            The verified claims.

        Raises:
            AuthenticationError: for any token defect (401)
            ConfigurationError / ExternalServiceError: when keys are unavailable
        """
        await self.initialize()

        try:
            header = jwt.get_unverified_header(token)
            signing_key = self._signing_key(header.get("kid"))
            return jwt.decode(
                token,
                signing_key.key,
                algorithms=list(ALGORITHMS),
                audience=self.audience,
                issuer=self._expected_issuer,
                leeway=self.clock_skew_seconds,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.PyJWTError as e:
            logger.info("Token rejected", reason=str(e))
            raise AuthenticationError()


@lru_cache()
def get_token_validator() -> TokenValidator:
    """Process-wide validator, built from settings on first use."""
    return TokenValidator.from_settings(settings)


# =============================================================================
# Authentication Dependencies
# =============================================================================

async def get_token_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    validator: TokenValidator = Depends(get_token_validator),
) -> Dict[str, Any]:
    """
    Require a valid bearer token without requiring a local user.

    Used by the login-time user sync, which runs before the user exists.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()
    return await validator.validate(credentials.credentials)


async def require_active_user(
    claims: Dict[str, Any] = Depends(get_token_claims),
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """
    Resolve the token subject to an active local user.

    Raises:
        PermissionDeniedError: 403 when the subject is missing, unknown or
            the user is inactive
    """
    subject = claims.get("sub")
    if not subject:
        logger.warning("Token has no subject claim")
        raise PermissionDeniedError("User identifier missing from token.")

    result = await session.execute(
        select(User).where(User.external_provider_id == subject)
    )
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        logger.warning(
            "Access denied - unknown or inactive user",
            subject=subject,
            user_id=str(user.id) if user else None,
        )
        raise PermissionDeniedError("User not authorized or inactive.")

    structlog.contextvars.bind_contextvars(user_id=str(user.id))
    return user


def require_roles(allowed_roles: Sequence[UserRole]):
    """
    Create dependency that requires specific user roles.

    Args:
        allowed_roles: Roles allowed to call the endpoint

    Returns:
        FastAPI dependency resolving to the authorized User
    """
    allowed = frozenset(allowed_roles)

    async def role_checker(
        current_user: User = Depends(require_active_user)
    ) -> User:
        if current_user.role not in allowed:
            logger.warning(
                "Access denied - insufficient role",
                user_id=str(current_user.id),
                user_role=current_user.role.value,
                required_roles=sorted(role.value for role in allowed),
            )
            raise PermissionDeniedError(
                "Permission denied.",
                required_roles=sorted(role.value for role in allowed),
            )
        return current_user

    return role_checker


# Shortcut dependencies
require_staff = require_roles(STAFF_ROLES)
require_admin = require_roles([UserRole.ADMIN])


# =============================================================================
# Export Public Interface
# =============================================================================

__all__ = [
    "TokenValidator",
    "get_token_validator",
    "get_token_claims",
    "require_active_user",
    "require_roles",
    "require_staff",
    "require_admin",
    "STAFF_ROLES",
]
