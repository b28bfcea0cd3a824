"""
Feedback moderation and the profile endpoints.
"""
import pytest

from aptivo.orm.user import UserRole
from aptivo.tests.conftest import auth_headers, make_user


# ================= FEEDBACK =================


async def test_feedback_moderation(client, super_admin, student):
    submitted = await client.post(
        "/api/feedback", json={"rating": 5, "message": "  Great practice sets  "}, headers=auth_headers(student)
    )
    assert submitted.status_code == 201
    feedback = submitted.json()["feedback"]
    assert feedback["message"] == "Great practice sets"
    assert feedback["is_published"] is False

    public = await client.get("/api/feedback/published")
    assert public.json()["feedback"] == []

    listed = await client.get("/api/feedback", headers=auth_headers(super_admin))
    assert listed.json()["feedback"][0]["author"]["full_name"] == "Student"

    published = await client.patch(
        f"/api/feedback/{feedback['id']}/publish", json={"is_published": True}, headers=auth_headers(super_admin)
    )
    assert published.json()["feedback"]["is_published"] is True

    public = await client.get("/api/feedback/published")
    assert [f["id"] for f in public.json()["feedback"]] == [feedback["id"]]


@pytest.mark.parametrize("rating", [0, 6])
async def test_feedback_rating_range(client, student, rating):
    response = await client.post(
        "/api/feedback", json={"rating": rating, "message": "ok"}, headers=auth_headers(student)
    )

    assert response.status_code == 422


async def test_feedback_list_is_super_admin_only(client, institution_admin):
    response = await client.get("/api/feedback", headers=auth_headers(institution_admin))

    assert response.status_code == 403


async def test_publish_unknown_feedback(client, super_admin):
    response = await client.patch(
        "/api/feedback/999/publish", json={"is_published": True}, headers=auth_headers(super_admin)
    )

    assert response.status_code == 404


# ================= PROFILE =================


async def test_update_profile(client, student):
    headers = auth_headers(student)

    updated = await client.patch(
        "/api/profile",
        json={"full_name": "  Asha Rao ", "avatar_url": "https://cdn.example.com/a.png"},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["user"]["full_name"] == "Asha Rao"

    profile = await client.get("/api/profile", headers=headers)
    assert profile.json()["user"]["avatar_url"] == "https://cdn.example.com/a.png"


async def test_institution_profile(client, institution_admin, student):
    own = await client.get("/api/profile/institution", headers=auth_headers(institution_admin))
    assert own.status_code == 200
    assert own.json()["institution"]["name"] == "Test College"

    denied = await client.get("/api/profile/institution", headers=auth_headers(student))
    assert denied.status_code == 403


async def test_institution_profile_without_link(client, db_session):
    orphan = await make_user(db_session, "orphan-admin@example.com", role=UserRole.institution_admin)

    response = await client.get("/api/profile/institution", headers=auth_headers(orphan))

    assert response.status_code == 404


async def test_learning_stats_for_new_student(client, student):
    response = await client.get("/api/profile/stats", headers=auth_headers(student))

    assert response.status_code == 200
    assert response.json()["stats"]["questionsSolved"] == 0
    assert response.json()["stats"]["enrolledUniversities"] == 0


async def test_my_activity_is_empty(client, student):
    response = await client.get("/api/profile/activity", headers=auth_headers(student))

    assert response.json()["activities"] == []
