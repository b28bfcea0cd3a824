"""
Tests for institution governance, university access and student enrollment.
"""
import pytest_asyncio

from aptivo.orm.institution import InstitutionStatus
from aptivo.orm.university import InstitutionUniversityAccess
from aptivo.tests.conftest import auth_headers, make_institution, make_university, make_user


@pytest_asyncio.fixture
async def universities(db_session, institution):
    """Two active universities, only the first granted to the institution, plus an inactive one."""
    granted = await make_university(db_session, "Alpha University")
    other = await make_university(db_session, "Beta University")
    closed = await make_university(db_session, "Closed University", status="inactive")
    db_session.add(InstitutionUniversityAccess(institution_id=institution.id, university_id=granted.id))
    await db_session.flush()
    return granted, other, closed


# ================= INSTITUTIONS =================


async def test_created_institution_is_approved(client, super_admin):
    response = await client.post(
        "/api/institutions",
        json={"name": "North College", "domain": "north.example.com"},
        headers=auth_headers(super_admin),
    )

    assert response.status_code == 201
    institution = response.json()["institution"]
    assert institution["status"] == "approved"
    assert institution["is_active"] is True


async def test_list_filters_and_pending_count(client, db_session, super_admin, institution):
    await make_institution(db_session, "Pending Academy", InstitutionStatus.pending, domain="academy.example.com")
    headers = auth_headers(super_admin)

    pending = await client.get("/api/institutions?status=pending", headers=headers)
    assert [i["name"] for i in pending.json()["institutions"]] == ["Pending Academy"]

    by_domain = await client.get("/api/institutions?search=college.example", headers=headers)
    assert [i["name"] for i in by_domain.json()["institutions"]] == ["Test College"]

    count = await client.get("/api/institutions/pending-count", headers=headers)
    assert count.json()["count"] == 1


async def test_status_change_drives_activation(client, super_admin, institution):
    headers = auth_headers(super_admin)

    rejected = await client.patch(
        f"/api/institutions/{institution.id}/status", json={"status": "rejected"}, headers=headers
    )
    assert rejected.status_code == 200
    assert rejected.json()["institution"]["is_active"] is False

    approved = await client.patch(
        f"/api/institutions/{institution.id}/status", json={"status": "approved"}, headers=headers
    )
    assert approved.json()["institution"]["is_active"] is True

    invalid = await client.patch(
        f"/api/institutions/{institution.id}/status", json={"status": "archived"}, headers=headers
    )
    assert invalid.status_code == 400


async def test_institution_admin_sees_only_own_institution(client, db_session, institution, institution_admin):
    other = await make_institution(db_session, "Other College", domain="other.example.com")
    headers = auth_headers(institution_admin)

    own = await client.get(f"/api/institutions/{institution.id}", headers=headers)
    assert own.status_code == 200
    assert own.json()["institution"]["name"] == "Test College"

    foreign = await client.get(f"/api/institutions/{other.id}", headers=headers)
    assert foreign.status_code == 403

    governance = await client.get("/api/institutions", headers=headers)
    assert governance.status_code == 403


async def test_unknown_institution(client, super_admin):
    response = await client.get("/api/institutions/999", headers=auth_headers(super_admin))

    assert response.status_code == 404
    assert response.json()["code"] == "INSTITUTION_NOT_FOUND"


async def test_replace_university_access(client, super_admin, institution_admin, institution, universities):
    granted, other, _ = universities
    headers = auth_headers(super_admin)

    missing = await client.put(
        f"/api/institutions/{institution.id}/universities",
        json={"university_ids": [other.id, 999]},
        headers=headers,
    )
    assert missing.status_code == 404

    replaced = await client.put(
        f"/api/institutions/{institution.id}/universities",
        json={"university_ids": [other.id, other.id]},
        headers=headers,
    )
    assert replaced.json()["university_ids"] == [other.id]

    listed = await client.get(
        f"/api/institutions/{institution.id}/universities", headers=auth_headers(institution_admin)
    )
    assert [u["name"] for u in listed.json()["universities"]] == ["Beta University"]


async def test_institution_students_search(client, db_session, institution, institution_admin, student):
    await make_user(db_session, "zara@college.example.com", institution_id=institution.id, full_name="Zara Khan")

    response = await client.get(
        f"/api/institutions/{institution.id}/students?search=zara", headers=auth_headers(institution_admin)
    )

    assert response.status_code == 200
    assert response.json()["total"] == 1
    assert response.json()["students"][0]["full_name"] == "Zara Khan"


# ================= UNIVERSITIES =================


async def test_student_sees_granted_universities(client, student, universities):
    response = await client.get("/api/universities", headers=auth_headers(student))

    assert [u["name"] for u in response.json()["universities"]] == ["Alpha University"]


async def test_solo_student_sees_every_active_university(client, db_session, universities):
    solo = await make_user(db_session, "solo@example.com")

    response = await client.get("/api/universities", headers=auth_headers(solo))

    assert [u["name"] for u in response.json()["universities"]] == ["Alpha University", "Beta University"]


async def test_admin_sees_whole_catalogue(client, super_admin, universities):
    response = await client.get("/api/universities", headers=auth_headers(super_admin))

    assert len(response.json()["universities"]) == 3


async def test_enrollment_lifecycle(client, student, universities):
    granted, other, closed = universities
    headers = auth_headers(student)

    denied = await client.post(f"/api/universities/{other.id}/enroll", headers=headers)
    assert denied.status_code == 403
    assert denied.json()["code"] == "SCOPE_VIOLATION"

    not_open = await client.post(f"/api/universities/{closed.id}/enroll", headers=headers)
    assert not_open.status_code == 400

    enrolled = await client.post(f"/api/universities/{granted.id}/enroll", headers=headers)
    assert enrolled.status_code == 201

    again = await client.post(f"/api/universities/{granted.id}/enroll", headers=headers)
    assert again.status_code == 409

    mine = await client.get("/api/universities/my", headers=headers)
    assert [u["name"] for u in mine.json()["universities"]] == ["Alpha University"]
    assert mine.json()["universities"][0]["enrolled_at"] is not None

    left = await client.delete(f"/api/universities/{granted.id}/enroll", headers=headers)
    assert left.status_code == 200

    gone = await client.delete(f"/api/universities/{granted.id}/enroll", headers=headers)
    assert gone.status_code == 404

    back = await client.post(f"/api/universities/{granted.id}/enroll", headers=headers)
    assert back.status_code == 201
    assert back.json()["enrollment_id"] == enrolled.json()["enrollment_id"]


async def test_university_crud_requires_super_admin(client, super_admin, institution_admin):
    denied = await client.post(
        "/api/universities", json={"name": "Gamma University"}, headers=auth_headers(institution_admin)
    )
    assert denied.status_code == 403

    created = await client.post(
        "/api/universities", json={"name": "Gamma University", "city": "Pune"}, headers=auth_headers(super_admin)
    )
    assert created.status_code == 201
    university_id = created.json()["university"]["id"]

    updated = await client.patch(
        f"/api/universities/{university_id}", json={"status": "inactive"}, headers=auth_headers(super_admin)
    )
    assert updated.json()["university"]["status"] == "inactive"

    deleted = await client.delete(f"/api/universities/{university_id}", headers=auth_headers(super_admin))
    assert deleted.status_code == 200
