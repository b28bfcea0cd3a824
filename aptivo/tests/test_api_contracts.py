"""
Tests for the health endpoints and the shared error envelope.
"""
from aptivo import __version__
from aptivo.errors import ErrorCode, NotFoundError
from aptivo.tests.conftest import auth_headers


async def test_health(client, service_key):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service_role_configured"] is True
    assert data["version"] == __version__


async def test_health_reports_missing_service_key(client, no_service_key):
    response = await client.get("/health")

    assert response.json()["service_role_configured"] is False


async def test_root(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["message"] == "Aptivo API"


async def test_error_summary_lists_codes(client):
    response = await client.get("/api/errors/health")

    assert response.status_code == 200
    data = response.json()
    assert "SCOPE_VIOLATION" in data["error_codes"]
    assert set(data["response_structure"]) == {"success", "error", "message", "code", "details"}


async def test_unknown_route_uses_error_envelope(client):
    response = await client.get("/api/does-not-exist")

    assert response.status_code == 404
    data = response.json()
    assert data["success"] is False
    assert data["code"] == ErrorCode.NOT_FOUND


async def test_missing_token_uses_error_envelope(client):
    response = await client.get("/api/notifications")

    assert response.status_code == 401
    data = response.json()
    assert data["success"] is False
    assert data["code"] == ErrorCode.AUTH_REQUIRED


async def test_invalid_token_is_rejected(client):
    response = await client.get("/api/notifications", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json()["success"] is False


async def test_validation_error_envelope(client, super_admin):
    response = await client.post(
        "/api/notifications/broadcast",
        json={"message": "no title"},
        headers=auth_headers(super_admin),
    )

    assert response.status_code == 422
    data = response.json()
    assert data["code"] == ErrorCode.VALIDATION_ERROR
    assert any(e["loc"][-1] == "title" for e in data["details"]["errors"])


def test_not_found_error_message():
    error = NotFoundError("Exam", 7)

    assert error.status_code == 404
    assert error.message == "Exam with id '7' not found"
