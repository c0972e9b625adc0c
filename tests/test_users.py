from datetime import datetime

import pytest
from sqlalchemy import func, select

from app.models.database import User, UserRole
from app.services.users import derive_names, sync_user
from helpers import auth_headers

SUB = "auth0|new-user"


def sync_payload(**overrides):
    payload = {
        "sub": SUB,
        "email": "new.user@example.com",
        "given_name": "Noa",
        "family_name": "Cohen",
        "name": "Noa Cohen",
    }
    payload.update(overrides)
    return payload


def as_naive(timestamp):
    return datetime.fromisoformat(timestamp).replace(tzinfo=None)


def user_count(api):
    async def _count(session):
        return (await session.execute(select(func.count(User.id)))).scalar_one()
    return api.db.run(_count)


# =============================================================================
# Sync
# =============================================================================

def test_first_sync_creates_guest(api):
    response = api.client.post("/api/v1/users/sync", json=sync_payload(), headers=auth_headers(SUB))

    assert response.status_code == 201
    body = response.json()
    assert body["external_provider_id"] == SUB
    assert body["role"] == "Guest"
    assert body["is_active"] is True
    assert body["first_name"] == "Noa"
    assert body["last_name"] == "Cohen"
    assert body["last_login_date"] is not None


def test_sync_is_idempotent(api):
    first = api.client.post("/api/v1/users/sync", json=sync_payload(), headers=auth_headers(SUB)).json()
    response = api.client.post("/api/v1/users/sync", json=sync_payload(), headers=auth_headers(SUB))

    assert response.status_code == 200
    second = response.json()
    assert second["id"] == first["id"]
    assert as_naive(second["date_updated"]) == as_naive(first["date_updated"])
    assert second["last_login_date"] != first["last_login_date"]
    assert user_count(api) == 1


def test_sync_refreshes_changed_profile(api):
    api.client.post("/api/v1/users/sync", json=sync_payload(), headers=auth_headers(SUB))
    response = api.client.post(
        "/api/v1/users/sync",
        json=sync_payload(email="noa@example.com", family_name="Levi"),
        headers=auth_headers(SUB),
    )
    body = response.json()
    assert response.status_code == 200
    assert body["email"] == "noa@example.com"
    assert body["last_name"] == "Levi"


def test_sync_ignores_role_in_payload(api):
    response = api.client.post(
        "/api/v1/users/sync",
        json=sync_payload(role="Admin"),
        headers=auth_headers(SUB),
    )
    assert response.json()["role"] == "Guest"


def test_sync_links_user_created_ahead_of_login(api):
    foster = api.db.add_user(UserRole.FOSTER, sub=None, email="new.user@example.com")

    response = api.client.post(
        "/api/v1/users/sync",
        json=sync_payload(email="New.User@example.com"),
        headers=auth_headers(SUB),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == str(foster.id)
    assert body["role"] == "Foster"
    assert body["external_provider_id"] == SUB
    assert user_count(api) == 1


def test_sync_subject_mismatch_is_403(api):
    response = api.client.post(
        "/api/v1/users/sync",
        json=sync_payload(sub="auth0|someone-else"),
        headers=auth_headers(SUB),
    )
    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Token subject does not match the user being synced."
    assert user_count(api) == 0


def test_sync_requires_token(api):
    response = api.client.post("/api/v1/users/sync", json=sync_payload())
    assert response.status_code == 401


def test_sync_reactivates_inactive_user(api):
    api.db.add_user(UserRole.STAFF, sub=SUB, is_active=False)
    response = api.client.post("/api/v1/users/sync", json=sync_payload(), headers=auth_headers(SUB))
    assert response.status_code == 200
    assert response.json()["is_active"] is True


# =============================================================================
# Profile
# =============================================================================

def test_get_my_profile(api, staff):
    response = api.client.get("/api/v1/users/me", headers=auth_headers())
    assert response.status_code == 200
    body = response.json()
    assert body["id"] == str(staff.id)
    assert body["role"] == "Staff"


def test_update_my_profile(api, staff):
    response = api.client.put(
        "/api/v1/users/me",
        json={"first_name": "  Avi ", "last_name": "Ben-David"},
        headers=auth_headers(),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["first_name"] == "Avi"
    assert body["full_name"] == "Avi Ben-David"
    assert api.db.get(User, staff.id).first_name == "Avi"


def test_update_my_profile_rejects_blank_names(api, staff):
    response = api.client.put(
        "/api/v1/users/me",
        json={"first_name": " ", "last_name": "Ben-David"},
        headers=auth_headers(),
    )
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "first_name: Value error, must not be empty"


# =============================================================================
# Service
# =============================================================================

@pytest.mark.parametrize("given, family, full, expected", [
    ("Noa", "Cohen", "ignored", ("Noa", "Cohen")),
    (None, None, "Noa Bat Cohen", ("Noa", "Bat Cohen")),
    ("", None, None, ("noa.cohen", None)),
])
def test_derive_names(given, family, full, expected):
    assert derive_names("noa.cohen@example.com", given, family, full) == expected


async def test_sync_user_reports_changed_fields(session):
    await sync_user(session, subject=SUB, email="a@example.com", given_name="A")
    result = await sync_user(session, subject=SUB, email="b@example.com", given_name="A")

    assert not result.created
    assert result.changed_fields == ("email",)
