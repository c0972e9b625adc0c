import asyncio
import time

import httpx
import pytest

from app.core.exceptions import AuthenticationError, ConfigurationError, ExternalServiceError
from app.core.security import TokenValidator, get_token_validator
from app.models.database import Animal, UserRole
from helpers import (
    AUDIENCE,
    DISCOVERY,
    ISSUER,
    JWKS,
    OTHER_PRIVATE_KEY,
    auth_headers,
    make_token,
    make_validator,
)

from unittest.mock import AsyncMock


# =============================================================================
# TokenValidator
# =============================================================================

@pytest.mark.asyncio
async def test_valid_token_returns_claims():
    validator = make_validator()
    claims = await validator.validate(make_token("auth0|abc"))
    assert claims["sub"] == "auth0|abc"
    assert claims["aud"] == AUDIENCE


@pytest.mark.asyncio
async def test_concurrent_first_requests_fetch_keys_once():
    validator = make_validator()
    token = make_token()

    results = await asyncio.gather(*(validator.validate(token) for _ in range(10)))

    assert all(claims["sub"] == "auth0|staff" for claims in results)
    # one discovery document + one key set
    assert validator._fetch_json.await_count == 2
    assert validator.is_initialized


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"exp": int(time.time()) - 3600},
    {"aud": "https://someone-else.example.com"},
    {"iss": "https://evil.example.com/"},
    {"exp": None},
])
async def test_invalid_claims_are_rejected(overrides):
    validator = make_validator()
    with pytest.raises(AuthenticationError):
        await validator.validate(make_token(**overrides))


@pytest.mark.asyncio
async def test_clock_skew_is_tolerated():
    validator = make_validator()
    claims = await validator.validate(make_token(exp=int(time.time()) - 30))
    assert claims["sub"] == "auth0|staff"


@pytest.mark.asyncio
async def test_token_signed_with_unknown_key_is_rejected():
    validator = make_validator()
    with pytest.raises(AuthenticationError):
        await validator.validate(make_token(key=OTHER_PRIVATE_KEY))
    with pytest.raises(AuthenticationError):
        await validator.validate(make_token(kid="rotated-away"))


@pytest.mark.asyncio
async def test_malformed_token_is_rejected():
    validator = make_validator()
    with pytest.raises(AuthenticationError):
        await validator.validate("not-a-jwt")


@pytest.mark.asyncio
async def test_missing_configuration_fails_permanently():
    validator = TokenValidator(issuer=None, audience=AUDIENCE)
    validator._fetch_json = AsyncMock()

    for _ in range(2):
        with pytest.raises(ConfigurationError) as exc_info:
            await validator.validate(make_token())
        assert exc_info.value.status_code == 500

    validator._fetch_json.assert_not_awaited()


@pytest.mark.asyncio
async def test_discovery_failure_is_retried_on_next_request():
    validator = TokenValidator(issuer=ISSUER, audience=AUDIENCE)
    validator._fetch_json = AsyncMock(side_effect=[httpx.ConnectError("down"), DISCOVERY, JWKS])

    with pytest.raises(ExternalServiceError) as exc_info:
        await validator.validate(make_token())
    assert exc_info.value.status_code == 500
    assert not validator.is_initialized

    claims = await validator.validate(make_token())
    assert claims["sub"] == "auth0|staff"


def test_discovery_url_is_derived_from_issuer():
    validator = TokenValidator(issuer="https://tenant.example.com/", audience="aud")
    assert validator.discovery_url == "https://tenant.example.com/.well-known/openid-configuration"


# =============================================================================
# Auth Gate over HTTP
# =============================================================================

def test_missing_token_is_401(api):
    response = api.client.get("/api/v1/users/me")
    assert response.status_code == 401
    assert response.json() == {"error": {"code": "Unauthorized", "message": "Invalid or missing token."}}
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.parametrize("header", ["Basic dXNlcjpwYXNz", "Bearer not-a-jwt"])
def test_malformed_authorization_is_401(api, staff, header):
    response = api.client.get("/api/v1/users/me", headers={"Authorization": header})
    assert response.status_code == 401


def test_expired_token_never_reaches_handler(api, staff):
    payload = {"animal_type": "Dog", "name": "Rex", "breed": "Mixed", "gender": "Male"}
    response = api.client.post(
        "/api/v1/animals",
        json=payload,
        headers=auth_headers(exp=int(time.time()) - 3600),
    )
    assert response.status_code == 401

    async def count(session):
        from sqlalchemy import func, select
        return (await session.execute(select(func.count(Animal.id)))).scalar_one()

    assert api.db.run(count) == 0


def test_token_without_subject_is_403(api):
    response = api.client.get("/api/v1/users/me", headers=auth_headers(sub=None))
    assert response.status_code == 403
    assert response.json()["error"]["message"] == "User identifier missing from token."


def test_unknown_user_is_403(api):
    response = api.client.get("/api/v1/users/me", headers=auth_headers("auth0|stranger"))
    assert response.status_code == 403
    assert response.json() == {
        "error": {"code": "Forbidden", "message": "User not authorized or inactive."}
    }


@pytest.mark.parametrize("role", list(UserRole))
def test_inactive_user_is_403_regardless_of_role(api, role):
    api.db.add_user(role, sub="auth0|inactive", is_active=False)
    response = api.client.get("/api/v1/users/me", headers=auth_headers("auth0|inactive"))
    assert response.status_code == 403
    assert response.json()["error"]["message"] == "User not authorized or inactive."


@pytest.mark.parametrize("role", [UserRole.GUEST, UserRole.FOSTER])
def test_role_mismatch_is_403(api, role):
    api.db.add_user(role, sub="auth0|someone")
    response = api.client.post(
        "/api/v1/animals",
        json={"animal_type": "Dog", "name": "Rex", "breed": "Mixed", "gender": "Male"},
        headers=auth_headers("auth0|someone"),
    )
    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Permission denied."


def test_staff_cannot_delete_animals(api, staff):
    response = api.client.delete("/api/v1/animals/1", headers=auth_headers())
    assert response.status_code == 403


def test_unconfigured_identity_provider_is_500(api, staff):
    from app.main import app

    app.dependency_overrides[get_token_validator] = lambda: TokenValidator(issuer=None, audience=None)
    response = api.client.get("/api/v1/users/me", headers=auth_headers())

    assert response.status_code == 500
    assert response.json() == {
        "error": {
            "code": "InternalServerError",
            "message": "Authentication is not configured on the server.",
        }
    }
