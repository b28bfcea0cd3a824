"""
Sign-up, sign-in status rules and token handling.
"""
import pytest

from aptivo.config import feature_flags
from aptivo.orm.institution import InstitutionAdmin, InstitutionStatus
from aptivo.orm.user import UserRole, UserStatus
from aptivo.security.rbac import create_email_verification_token
from aptivo.tests.conftest import TEST_PASSWORD, auth_headers, make_institution, make_user


async def login(client, email, password=TEST_PASSWORD):
    return await client.post("/api/auth/login/json", json={"email": email, "password": password})


class TestRegister:

    async def test_student_registration_returns_user_not_tokens(self, client):
        response = await client.post("/api/auth/register", json={
            "email": "new@example.com", "password": "password123", "full_name": "  New Student ",
        })
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["success"] is True
        assert body["user"]["full_name"] == "New Student"
        assert body["user"]["role"] == "student"
        assert body["requires_email_verification"] is False
        assert "access_token" not in body

        response = await login(client, "new@example.com", "password123")
        assert response.status_code == 200
        assert response.json()["role"] == "student"

    async def test_short_password_is_validation_error(self, client):
        response = await client.post("/api/auth/register", json={
            "email": "new@example.com", "password": "short", "full_name": "X",
        })
        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"]["errors"]

    async def test_super_admin_cannot_self_register(self, client):
        response = await client.post("/api/auth/register", json={
            "email": "boss@example.com", "password": "password123", "full_name": "Boss", "role": "super_admin",
        })
        assert response.status_code == 403

    async def test_institution_admin_registration_is_pending(self, client):
        response = await client.post("/api/auth/register", json={
            "email": "head@school.example.com", "password": "password123", "full_name": "Head",
            "role": "institution_admin", "institution_name": "Green Valley School",
        })
        assert response.status_code == 201, response.text

        response = await login(client, "head@school.example.com", "password123")
        assert response.status_code == 403
        body = response.json()
        assert body["code"] == "INSTITUTION_NOT_APPROVED"
        assert body["details"]["institution_status"] == "pending"
        assert "pending approval" in body["message"]

    async def test_joining_existing_institution_waits_for_activation(self, client, institution, super_admin):
        response = await client.post("/api/auth/register", json={
            "email": "newcomer@example.com", "password": "password123", "full_name": "Newcomer",
            "role": "institution_admin", "institution_id": institution.id,
        })
        assert response.status_code == 201, response.text
        assert response.json()["user"]["status"] == "pending"
        admin_id = response.json()["user"]["id"]

        response = await login(client, "newcomer@example.com", "password123")
        assert response.status_code == 403
        assert response.json()["code"] == "ACCOUNT_PENDING"
        assert "access_token" not in response.json()

        response = await client.patch(
            f"/api/users/{admin_id}/status", json={"status": "active"}, headers=auth_headers(super_admin)
        )
        assert response.status_code == 200

        response = await login(client, "newcomer@example.com", "password123")
        assert response.status_code == 200
        assert response.json()["institution_id"] == institution.id

    async def test_disabled_self_registration(self, client, monkeypatch):
        monkeypatch.setattr(feature_flags, "FEATURE_SELF_REGISTRATION", False)
        response = await client.post("/api/auth/register", json={
            "email": "new@example.com", "password": "password123", "full_name": "X",
        })
        assert response.status_code == 403


class TestLoginStatusChecks:

    async def test_wrong_password(self, client, student):
        response = await login(client, student.email, "wrong-password")
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_CREDENTIALS"

    async def test_form_login(self, client, student):
        response = await client.post(
            "/api/auth/login", data={"username": student.email, "password": TEST_PASSWORD}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["institution_id"] == student.institution_id

    @pytest.mark.parametrize("status", [UserStatus.suspended, UserStatus.blocked])
    async def test_suspended_and_blocked_students_refused(self, client, db_session, status):
        await make_user(db_session, "locked@example.com", status=status)
        response = await login(client, "locked@example.com")
        assert response.status_code == 403
        assert response.json()["code"] == "ACCOUNT_SUSPENDED"

    async def test_suspended_super_admin_still_signs_in(self, client, db_session):
        await make_user(db_session, "root@example.com", role=UserRole.super_admin, status=UserStatus.suspended)
        response = await login(client, "root@example.com")
        assert response.status_code == 200

    @pytest.mark.parametrize("status,fragment", [
        (InstitutionStatus.rejected, "rejected"),
        (InstitutionStatus.blocked, "blocked"),
    ])
    async def test_institution_admin_needs_approved_institution(self, client, db_session, status, fragment):
        institution = await make_institution(db_session, status=status)
        await make_user(db_session, "head@example.com", role=UserRole.institution_admin,
                        institution_id=institution.id)
        response = await login(client, "head@example.com")
        assert response.status_code == 403
        assert fragment in response.json()["message"]

    async def test_admin_link_fills_missing_institution(self, client, db_session, institution):
        admin = await make_user(db_session, "head@example.com", role=UserRole.institution_admin)
        db_session.add(InstitutionAdmin(user_id=admin.id, institution_id=institution.id))
        await db_session.flush()

        response = await login(client, "head@example.com")
        assert response.status_code == 200
        assert response.json()["institution_id"] == institution.id
        assert admin.institution_id == institution.id

    async def test_unverified_student_must_verify_first(self, client, db_session, monkeypatch):
        monkeypatch.setattr(feature_flags, "FEATURE_EMAIL_VERIFICATION", True)
        response = await client.post("/api/auth/register", json={
            "email": "fresh@example.com", "password": "password123", "full_name": "Fresh",
        })
        assert response.json()["requires_email_verification"] is True

        response = await login(client, "fresh@example.com", "password123")
        assert response.status_code == 403
        assert response.json()["code"] == "EMAIL_NOT_VERIFIED"

        token = create_email_verification_token("fresh@example.com")
        response = await client.post("/api/auth/verify-email", json={"token": token})
        assert response.status_code == 200

        response = await login(client, "fresh@example.com", "password123")
        assert response.status_code == 200


class TestTokens:

    async def test_refresh_issues_new_pair(self, client, student):
        tokens = (await login(client, student.email)).json()
        response = await client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200
        assert response.json()["user_id"] == student.id

    async def test_refresh_rejects_garbage(self, client):
        response = await client.post("/api/auth/refresh", json={"refresh_token": "not-a-token"})
        assert response.status_code == 401

    async def test_me_requires_token(self, client):
        response = await client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_REQUIRED"

    async def test_me(self, client, student):
        response = await client.get("/api/auth/me", headers=auth_headers(student))
        assert response.status_code == 200
        assert response.json()["user"]["email"] == student.email

    async def test_change_password(self, client, student):
        headers = auth_headers(student)
        response = await client.post(
            "/api/auth/change-password",
            json={"current_password": TEST_PASSWORD, "new_password": "another-pass-1"},
            headers=headers,
        )
        assert response.status_code == 200
        assert (await login(client, student.email, "another-pass-1")).status_code == 200
