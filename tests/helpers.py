"""
Shared test helpers: tokens, payloads and database setup.

The environment is set before any ``app`` module is imported because settings
are read at import time. Tests run against an in-memory SQLite database and a
locally generated RSA key pair standing in for the identity provider's
signing keys.
"""

import json
import os
import time
import uuid
from unittest.mock import AsyncMock

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("DATABASE_CREATE_TABLES", "false")
os.environ.setdefault("AUTH0_ISSUER_BASE_URL", "https://rescue-test.example.com/")
os.environ.setdefault("AUTH0_AUDIENCE", "https://api.rescue-test.example.com")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import jwt
from jwt.algorithms import RSAAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.security import TokenValidator
from app.models.database import Base, User, UserRole, utcnow

ISSUER = os.environ["AUTH0_ISSUER_BASE_URL"]
AUDIENCE = os.environ["AUTH0_AUDIENCE"]
KEY_ID = "test-key-1"

PRIVATE_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
OTHER_PRIVATE_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)


def build_jwks() -> dict:
    jwk = json.loads(RSAAlgorithm.to_jwk(PRIVATE_KEY.public_key()))
    jwk.update({"kid": KEY_ID, "alg": "RS256", "use": "sig"})
    return {"keys": [jwk]}


DISCOVERY = {
    "issuer": ISSUER,
    "jwks_uri": f"{ISSUER}.well-known/jwks.json",
}
JWKS = build_jwks()


async def fake_fetch_json(url: str) -> dict:
    if url.endswith("openid-configuration"):
        return DISCOVERY
    return JWKS


def make_token(sub="auth0|staff", key=None, kid=KEY_ID, **overrides) -> str:
    """Signed access token; ``overrides`` replace (or with None, drop) claims."""
    now = int(time.time())
    claims = {
        "iss": ISSUER,
        "aud": AUDIENCE,
        "sub": sub,
        "iat": now,
        "exp": now + 3600,
    }
    for name, value in overrides.items():
        if value is None:
            claims.pop(name, None)
        else:
            claims[name] = value
    if sub is None:
        claims.pop("sub")
    return jwt.encode(claims, key or PRIVATE_KEY, algorithm="RS256", headers={"kid": kid})


def auth_headers(sub="auth0|staff", **overrides) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, **overrides)}"}


ADOPTER = {
    "adopter_first_name": "Dana",
    "adopter_last_name": "Levi",
    "adopter_email": "dana@example.com",
    "adopter_primary_phone": "555-0100",
    "adopter_primary_phone_type": "Cell",
    "adopter_street_address": "1 Main St",
    "adopter_city": "Springfield",
    "adopter_state_province": "IL",
    "adopter_zip_postal_code": "62701",
}


def animal_payload(**overrides) -> dict:
    payload = {"animal_type": "Dog", "name": "Rex", "breed": "Labrador", "gender": "Male"}
    payload.update(overrides)
    return payload


def create_animal(client, **overrides) -> dict:
    response = client.post("/api/v1/animals", json=animal_payload(**overrides), headers=auth_headers())
    assert response.status_code == 201, response.text
    return response.json()


def make_validator() -> TokenValidator:
    validator = TokenValidator(issuer=ISSUER, audience=AUDIENCE)
    validator._fetch_json = AsyncMock(side_effect=fake_fetch_json)
    return validator


# =============================================================================
# Database
# =============================================================================

def make_engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


async def create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def new_user(role=UserRole.STAFF, sub="auth0|staff", email=None, is_active=True, **fields) -> User:
    now = utcnow()
    return User(
        id=uuid.uuid4(),
        external_provider_id=sub,
        email=email or f"{(sub or uuid.uuid4().hex).split('|')[-1]}@rescue.example.com",
        first_name=fields.pop("first_name", role.value),
        last_name=fields.pop("last_name", "Tester"),
        role=role,
        is_active=is_active,
        date_created=now,
        date_updated=now,
        **fields,
    )
