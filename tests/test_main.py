from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from app.core.config import Settings
from app.core.exceptions import StorageError, error_body, status_code_name
from app.models.database import get_db_session
from app.services.file_storage import BlobStorageService, sanitize_filename


# =============================================================================
# System Endpoints
# =============================================================================

def test_health_check(api):
    response = api.client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["services"]["database"]["status"] == "healthy"
    assert body["services"]["email"] == {"status": "disabled"}


def test_health_check_reports_unhealthy_database(api):
    unhealthy = AsyncMock(return_value={"status": "unhealthy", "error": "connection refused"})
    with patch("app.main.check_database_health", unhealthy):
        response = api.client.get("/health")

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


def test_version_and_root(api):
    version = api.client.get("/version").json()
    assert version["name"] == "Rescue App Backend"
    assert version["environment"] == "testing"

    root = api.client.get("/").json()
    assert root["status"] == "running"
    assert root["api_prefix"] == "/api/v1"


def test_api_info(api):
    body = api.client.get("/api/v1/info").json()
    assert body["api_version"] == "v1"


def test_metrics_count_requests(api):
    api.client.get("/api/v1/animals")
    response = api.client.get("/metrics")
    assert response.status_code == 200
    assert 'endpoint="/api/v1/animals"' in response.text


def test_request_id_is_echoed(api):
    response = api.client.get("/version", headers={"X-Request-ID": "abc123"})
    assert response.headers["X-Request-ID"] == "abc123"
    assert api.client.get("/version").headers["X-Request-ID"]


# =============================================================================
# Error Rendering
# =============================================================================

def test_unknown_route_is_404(api):
    response = api.client.get("/api/v1/kennels")
    assert response.status_code == 404
    assert response.json() == {"error": {"code": "NotFound", "message": "Not Found"}}


def test_wrong_method_is_405(api):
    response = api.client.patch("/api/v1/animals")
    assert response.status_code == 405
    assert response.json()["error"]["code"] == "MethodNotAllowed"


def test_unexpected_errors_are_hidden(api):
    from app.main import app

    async def broken_session():
        raise RuntimeError("password=hunter2 leaked in driver error")
        yield

    app.dependency_overrides[get_db_session] = broken_session
    response = api.client.get("/api/v1/animals")

    assert response.status_code == 500
    assert response.json() == {
        "error": {"code": "InternalServerError", "message": "An internal server error occurred."}
    }


@pytest.mark.parametrize("status_code, name", [
    (400, "BadRequest"),
    (401, "Unauthorized"),
    (403, "Forbidden"),
    (404, "NotFound"),
    (409, "Conflict"),
    (503, "ServiceUnavailable"),
    (999, "Error"),
])
def test_status_code_name(status_code, name):
    assert status_code_name(status_code) == name


def test_error_body():
    assert error_body(409, "Busy") == {"error": {"code": "Conflict", "message": "Busy"}}


# =============================================================================
# Blob Storage
# =============================================================================

@pytest.mark.parametrize("filename, expected", [
    ("My Dog (1).jpg", "My-Dog-1-.jpg"),
    ("../../etc/passwd", "passwd"),
    ("C:\\photos\\cat.png", "cat.png"),
    ("...", "file"),
])
def test_sanitize_filename(filename, expected):
    assert sanitize_filename(filename) == expected


def test_signing_failure_is_storage_error():
    client = MagicMock()
    client.generate_presigned_url.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GeneratePresignedUrl"
    )
    service = BlobStorageService(Settings(), client=client)

    with pytest.raises(StorageError) as exc_info:
        service.image_upload_url("a.jpg", "image/jpeg")

    assert exc_info.value.status_code == 503


async def test_failed_blob_delete_returns_false():
    client = MagicMock()
    client.delete_object.side_effect = ClientError(
        {"Error": {"Code": "NoSuchBucket", "Message": "missing"}}, "DeleteObject"
    )
    service = BlobStorageService(Settings(), client=client)

    assert await service.delete_blob("animal-images", "a.jpg") is False
    assert await service.delete_blob("animal-images", "") is False
    client.delete_object.assert_called_once()


def test_public_url_prefers_configured_base():
    service = BlobStorageService(Settings(PUBLIC_BLOB_BASE_URL="https://cdn.example.com/"), client=MagicMock())
    assert service.public_url("animal-images", "a b.jpg") == "https://cdn.example.com/animal-images/a%20b.jpg"
