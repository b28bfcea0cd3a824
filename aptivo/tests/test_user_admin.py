"""
Privileged user handlers: create-user, create-student, delete-user.

They accept either the service role key or an admin token; with neither
(and no key configured) the server reports a configuration error.
"""
from sqlalchemy import select

from aptivo.orm.institution import InstitutionAdmin
from aptivo.orm.user import User, UserRole, UserStatus
from aptivo.tests.conftest import auth_headers, make_institution, make_user


def key_header(key: str) -> dict:
    return {"X-Service-Role-Key": key}


class TestCreateUser:

    async def test_service_key_creates_linked_institution_admin(self, client, db_session, service_key, institution):
        response = await client.post(
            "/api/create-user",
            json={
                "email": "New.Admin@College.example.com",
                "password": "s3cretpass",
                "fullName": "New Admin",
                "role": "institution_admin",
                "institutionId": str(institution.id),
            },
            headers=key_header(service_key),
        )
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["success"] is True
        assert data["user"]["email"] == "new.admin@college.example.com"
        assert data["user"]["role"] == "institution_admin"

        link = (await db_session.execute(
            select(InstitutionAdmin).where(InstitutionAdmin.user_id == data["user"]["id"])
        )).scalar_one()
        assert link.institution_id == institution.id
        user = await db_session.get(User, data["user"]["id"])
        assert user.institution_id == institution.id
        assert user.status == UserStatus.active

    async def test_missing_fields(self, client, service_key):
        response = await client.post(
            "/api/create-user",
            json={"email": "x@example.com", "password": "s3cretpass"},
            headers=key_header(service_key),
        )
        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Missing required fields"
        assert body["code"] == "MISSING_FIELD"

    async def test_invalid_role(self, client, service_key):
        response = await client.post(
            "/api/create-user",
            json={"email": "x@example.com", "password": "s3cretpass", "fullName": "X", "role": "moderator"},
            headers=key_header(service_key),
        )
        assert response.status_code == 400

    async def test_duplicate_email(self, client, service_key, student):
        response = await client.post(
            "/api/create-user",
            json={"email": student.email, "password": "s3cretpass", "fullName": "Dup", "role": "student"},
            headers=key_header(service_key),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "EMAIL_EXISTS"

    async def test_wrong_service_key(self, client, service_key):
        response = await client.post(
            "/api/create-user",
            json={"email": "x@example.com", "password": "s3cretpass", "fullName": "X", "role": "student"},
            headers=key_header("not-the-key"),
        )
        assert response.status_code == 401
        assert response.json()["code"] == "SERVICE_KEY_INVALID"

    async def test_unconfigured_key_without_token_is_server_error(self, client, no_service_key):
        response = await client.post(
            "/api/create-user",
            json={"email": "x@example.com", "password": "s3cretpass", "fullName": "X", "role": "student"},
        )
        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Server Configuration Error"
        assert body["code"] == "CONFIGURATION_ERROR"

    async def test_super_admin_token_works_without_key(self, client, no_service_key, super_admin):
        response = await client.post(
            "/api/create-user",
            json={"email": "x@example.com", "password": "s3cretpass", "fullName": "X", "role": "student"},
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 200

    async def test_student_token_is_forbidden(self, client, service_key, student):
        response = await client.post(
            "/api/create-user",
            json={"email": "x@example.com", "password": "s3cretpass", "fullName": "X", "role": "student"},
            headers=auth_headers(student),
        )
        assert response.status_code == 403


class TestCreateStudent:

    async def test_email_is_roll_number_at_institution_domain(self, client, institution_admin, institution):
        response = await client.post(
            "/api/create-student",
            json={"studentId": "CS-101", "name": "Asha", "password": "s3cretpass",
                  "institutionId": institution.id},
            headers=auth_headers(institution_admin),
        )
        assert response.status_code == 200, response.text
        user = response.json()["user"]
        assert user["email"] == "cs-101@college.example.com"
        assert user["role"] == "student"
        assert user["student_id"] == "CS-101"

    async def test_institution_admin_cannot_create_elsewhere(self, client, db_session, institution_admin):
        other = await make_institution(db_session, name="Other", domain="other.example.com")
        response = await client.post(
            "/api/create-student",
            json={"studentId": "7", "name": "B", "password": "s3cretpass", "institutionId": other.id},
            headers=auth_headers(institution_admin),
        )
        assert response.status_code == 403
        assert response.json()["code"] == "SCOPE_VIOLATION"

    async def test_institution_without_domain(self, client, db_session, service_key):
        bare = await make_institution(db_session, name="No Domain", domain=None)
        response = await client.post(
            "/api/create-student",
            json={"studentId": "7", "name": "B", "password": "s3cretpass", "institutionId": bare.id},
            headers=key_header(service_key),
        )
        assert response.status_code == 400
        assert "no domain configured" in response.json()["message"]

    async def test_non_numeric_institution_id(self, client, service_key):
        response = await client.post(
            "/api/create-student",
            json={"studentId": "7", "name": "B", "password": "s3cretpass", "institutionId": "abc"},
            headers=key_header(service_key),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FORMAT"


class TestDeleteUser:

    async def test_unknown_user_is_not_an_error(self, client, service_key):
        response = await client.post("/api/delete-user", json={"userId": 9999}, headers=key_header(service_key))
        assert response.status_code == 200
        assert response.json() == {"success": True, "deleted": False}

    async def test_service_key_deletes_user(self, client, db_session, service_key, student):
        student_id = student.id
        response = await client.post("/api/delete-user", json={"userId": student_id}, headers=key_header(service_key))
        assert response.json()["deleted"] is True
        assert await db_session.get(User, student_id) is None

    async def test_institution_admin_only_deletes_students(self, client, db_session, institution_admin, institution):
        colleague = await make_user(
            db_session, "colleague@college.example.com",
            role=UserRole.institution_admin, institution_id=institution.id,
        )
        response = await client.post(
            "/api/delete-user", json={"userId": colleague.id}, headers=auth_headers(institution_admin)
        )
        assert response.status_code == 403

    async def test_institution_admin_deletes_own_student(self, client, institution_admin, student):
        response = await client.post(
            "/api/delete-user", json={"userId": student.id}, headers=auth_headers(institution_admin)
        )
        assert response.json()["deleted"] is True

    async def test_missing_user_id(self, client, service_key):
        response = await client.post("/api/delete-user", json={}, headers=key_header(service_key))
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_FIELD"


class TestUserStatus:

    async def test_institution_admin_suspends_own_student(self, client, institution_admin, student):
        response = await client.patch(
            f"/api/users/{student.id}/status", json={"status": "suspended"}, headers=auth_headers(institution_admin)
        )
        assert response.status_code == 200
        assert response.json()["user"]["status"] == "suspended"

        # the suspended student's token no longer works
        response = await client.get("/api/auth/me", headers=auth_headers(student))
        assert response.status_code == 403
        assert response.json()["code"] == "ACCOUNT_SUSPENDED"

    async def test_super_admin_cannot_be_suspended(self, client, db_session, super_admin):
        other_root = await make_user(db_session, "root2@example.com", role=UserRole.super_admin)
        response = await client.patch(
            f"/api/users/{other_root.id}/status", json={"status": "blocked"}, headers=auth_headers(super_admin)
        )
        assert response.status_code == 403
